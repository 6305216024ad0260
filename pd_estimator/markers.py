"""
Markers Module - The Four Measurement Points

A MarkerSet is the single source of truth for marker positions. It is
immutable: every edit (drag, auto-suggest merge) produces a new snapshot,
so a reader always sees a consistent set of four points.
"""

from dataclasses import dataclass, replace as dc_replace
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from .utils import Point


class MarkerKey(str, Enum):
    """Identity of a marker. Enumeration order is also the hit-test priority."""
    LEFT_PUPIL = "leftPupil"
    RIGHT_PUPIL = "rightPupil"
    LEFT_CARD = "leftCard"
    RIGHT_CARD = "rightCard"
    
    @property
    def attr(self) -> str:
        return _ATTRS[self]


_ATTRS = {
    MarkerKey.LEFT_PUPIL: "left_pupil",
    MarkerKey.RIGHT_PUPIL: "right_pupil",
    MarkerKey.LEFT_CARD: "left_card",
    MarkerKey.RIGHT_CARD: "right_card",
}

MARKER_LABELS: Dict[MarkerKey, str] = {
    MarkerKey.LEFT_PUPIL: "Left pupil",
    MarkerKey.RIGHT_PUPIL: "Right pupil",
    MarkerKey.LEFT_CARD: "Card left corner",
    MarkerKey.RIGHT_CARD: "Card right corner",
}

# BGR, for cv2 drawing
PUPIL_COLOR = (238, 211, 34)
CARD_COLOR = (60, 146, 251)

MARKER_COLORS: Dict[MarkerKey, Tuple[int, int, int]] = {
    MarkerKey.LEFT_PUPIL: PUPIL_COLOR,
    MarkerKey.RIGHT_PUPIL: PUPIL_COLOR,
    MarkerKey.LEFT_CARD: CARD_COLOR,
    MarkerKey.RIGHT_CARD: CARD_COLOR,
}


@dataclass(frozen=True)
class MarkerSet:
    """Total mapping of every MarkerKey to a point in image-pixel space."""
    left_pupil: Point
    right_pupil: Point
    left_card: Point
    right_card: Point
    
    def get(self, key: MarkerKey) -> Point:
        return getattr(self, MarkerKey(key).attr)
    
    def replace(self, key: MarkerKey, point: Point) -> "MarkerSet":
        """Return a new snapshot with a single marker moved."""
        return dc_replace(self, **{MarkerKey(key).attr: point})
    
    def items(self) -> Iterator[Tuple[MarkerKey, Point]]:
        for key in MarkerKey:
            yield key, self.get(key)
    
    def to_dict(self) -> dict:
        return {key.value: point.to_dict() for key, point in self.items()}
    
    @classmethod
    def from_dict(cls, data: dict) -> "MarkerSet":
        """
        Build a MarkerSet from a {markerKey: {x, y}} mapping.
        
        Raises:
            ValueError: If any of the four markers is missing
        """
        missing = [key.value for key in MarkerKey if key.value not in data]
        if missing:
            raise ValueError(f"Missing markers: {', '.join(missing)}")
        return cls(**{key.attr: Point.from_dict(data[key.value]) for key in MarkerKey})


def create_default_markers(width: float, height: float) -> MarkerSet:
    """
    Deterministic starting layout, proportional to the image size.
    
    Pupils sit near mid-height, card corners near the top where the card
    is held against the forehead.
    """
    return MarkerSet(
        left_pupil=Point(width * 0.4, height * 0.48),
        right_pupil=Point(width * 0.6, height * 0.48),
        left_card=Point(width * 0.3, height * 0.2),
        right_card=Point(width * 0.7, height * 0.2),
    )


@dataclass(frozen=True)
class MarkerSuggestions:
    """
    Partial marker placement from a detector.
    
    Every key is always an attribute; None means the detector did not
    address that marker.
    """
    left_pupil: Optional[Point] = None
    right_pupil: Optional[Point] = None
    left_card: Optional[Point] = None
    right_card: Optional[Point] = None
    
    def get(self, key: MarkerKey) -> Optional[Point]:
        return getattr(self, MarkerKey(key).attr)
    
    def present(self) -> Iterator[Tuple[MarkerKey, Point]]:
        """Yield (key, point) for each supplied suggestion, in key order."""
        for key in MarkerKey:
            point = self.get(key)
            if point is not None:
                yield key, point
    
    @property
    def is_empty(self) -> bool:
        return next(self.present(), None) is None
    
    def to_dict(self) -> dict:
        return {key.value: point.to_dict() for key, point in self.present()}


def merge_suggestions(current: MarkerSet, suggestions: MarkerSuggestions) -> MarkerSet:
    """
    Merge detector suggestions into the current markers.
    
    A present suggestion replaces the marker outright; absent ones leave
    the current marker untouched.
    
    Args:
        current: Current marker snapshot
        suggestions: Per-key optional suggestions
        
    Returns:
        New marker snapshot
    """
    merged = current
    for key, point in suggestions.present():
        merged = merged.replace(key, point)
    return merged
