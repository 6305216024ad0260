"""
Card-Calibrated PD (Pupillary Distance) Estimator

Estimates PD from a single photo using a standard ID-1 card as the scale
reference and four user-correctable markers.
"""

from .markers import MarkerKey, MarkerSet, MarkerSuggestions, create_default_markers, merge_suggestions
from .measurement import MeasurementResult, PDCalculator, calculate_pd
from .utils import Point

__version__ = "0.1.0"
__all__ = [
    "MarkerKey",
    "MarkerSet",
    "MarkerSuggestions",
    "MeasurementResult",
    "PDCalculator",
    "Point",
    "calculate_pd",
    "create_default_markers",
    "merge_suggestions",
]
