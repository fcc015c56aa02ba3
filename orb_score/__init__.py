"""Orb Score: setup-status aggregation, zone calibration and forward-return validation."""

__version__ = "1.0.0"
