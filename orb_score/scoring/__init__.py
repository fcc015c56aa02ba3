from .compose import compose_daily_scores, compose_score
from .zones import (
    ZoneDisplay,
    ZoneThresholds,
    assign_zone,
    assign_zones,
    calibrate_thresholds,
    zone_display,
    zone_distribution,
)

__all__ = [
    "ZoneDisplay",
    "ZoneThresholds",
    "assign_zone",
    "assign_zones",
    "calibrate_thresholds",
    "compose_daily_scores",
    "compose_score",
    "zone_display",
    "zone_distribution",
]
