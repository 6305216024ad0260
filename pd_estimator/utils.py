"""
Utility functions and constants for the PD estimator.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional


# ISO/IEC 7810 ID-1 Standard Card Dimensions (mm)
CARD_WIDTH_MM = 85.60
CARD_HEIGHT_MM = 53.98

# Measurement thresholds
MIN_CARD_PIXEL_WIDTH = 90.0  # Card span below this is too small to scale from
MIN_PD_MM = 45.0  # Plausible adult PD range
MAX_PD_MM = 80.0
MAX_CARD_TILT_RATIO = 0.2  # |dy| / card width
CONFIDENCE_RAMP_PX = 220.0  # Card span above the minimum that earns full scale confidence

# Marker picking radius, in image pixels (not scaled with the display)
PICK_RADIUS_PX = 26.0

# MediaPipe FaceLandmarker indices (refined landmarks)
LEFT_IRIS_INDICES = (468, 469, 470, 471, 472)
RIGHT_IRIS_INDICES = (473, 474, 475, 476, 477)
LEFT_EYE_FALLBACK_INDICES = (33, 133, 159, 145)
RIGHT_EYE_FALLBACK_INDICES = (362, 263, 386, 374)
FOREHEAD_INDEX = 10


@dataclass(frozen=True)
class Point:
    """A 2D point. Image-pixel space unless noted otherwise."""
    x: float
    y: float
    
    def __post_init__(self):
        if not (math.isfinite(self.x) and math.isfinite(self.y)):
            raise ValueError(f"Point coordinates must be finite, got ({self.x}, {self.y})")
    
    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}
    
    @classmethod
    def from_dict(cls, data: dict) -> "Point":
        return cls(x=float(data["x"]), y=float(data["y"]))


def distance(a: Point, b: Point) -> float:
    """Calculate Euclidean distance between two 2D points."""
    return math.hypot(a.x - b.x, a.y - b.y)


def clamp(value: float, lo: float, hi: float) -> float:
    """
    Restrict value to the closed interval [lo, hi].
    
    Raises:
        ValueError: If lo > hi
    """
    if lo > hi:
        raise ValueError(f"Invalid clamp bounds: {lo} > {hi}")
    return min(hi, max(lo, value))


def average_points(points: Iterable[Point]) -> Optional[Point]:
    """
    Arithmetic mean of a sequence of points.
    
    Returns:
        Mean point, or None if no points were given
    """
    points = list(points)
    if not points:
        return None
    
    sum_x = sum(p.x for p in points)
    sum_y = sum(p.y for p in points)
    return Point(sum_x / len(points), sum_y / len(points))


def round_to_half(value: float) -> float:
    """Round to the nearest 0.5, ties toward positive infinity."""
    return math.floor(value * 2 + 0.5) / 2
