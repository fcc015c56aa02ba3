from .alpha import AlphaResult, SetupAlpha, estimate_alphas
from .weights import SetupWeight, calibrate_weights, weight_table

__all__ = [
    "AlphaResult",
    "SetupAlpha",
    "SetupWeight",
    "calibrate_weights",
    "estimate_alphas",
    "weight_table",
]
