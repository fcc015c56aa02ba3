from .bundle import (
    SCHEMA_VERSION,
    build_config_artifact,
    build_validation_report,
    jsonable,
    transitions_frame,
    weights_frame,
    zone_statistics_frame,
)
from .render import load_report, render_validation_html
from .table import format_money_table

__all__ = [
    "SCHEMA_VERSION",
    "build_config_artifact",
    "build_validation_report",
    "format_money_table",
    "jsonable",
    "load_report",
    "render_validation_html",
    "transitions_frame",
    "weights_frame",
    "zone_statistics_frame",
]
