"""
Annotation Module - Interactive Marker Editing

Markers live in image pixels; the photo may be shown at any size. This
module maps pointer positions between the two spaces, picks the marker
under the pointer and runs the drag state machine that moves it.
"""

from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

from .markers import MARKER_COLORS, MARKER_LABELS, CARD_COLOR, PUPIL_COLOR, MarkerKey, MarkerSet
from .utils import PICK_RADIUS_PX, Point, clamp, distance


MIN_SCALE = 1e-4  # Guards against a zero-sized display


class DisplayMapping:
    """
    Per-axis scale between image pixels and display pixels.
    
    scale.x = display_width / image_width, scale.y = display_height / image_height
    """
    
    def __init__(
        self,
        image_width: float,
        image_height: float,
        display_width: Optional[float] = None,
        display_height: Optional[float] = None
    ):
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Invalid image size: {image_width}x{image_height}")
        
        self.image_width = float(image_width)
        self.image_height = float(image_height)
        self.display_width = float(image_width if display_width is None else display_width)
        self.display_height = float(image_height if display_height is None else display_height)
    
    @property
    def scale(self) -> Tuple[float, float]:
        return (
            self.display_width / self.image_width,
            self.display_height / self.image_height,
        )
    
    def resize(self, display_width: float, display_height: float) -> None:
        self.display_width = float(display_width)
        self.display_height = float(display_height)
    
    def to_display(self, point: Point) -> Point:
        sx, sy = self.scale
        return Point(point.x * sx, point.y * sy)
    
    def to_image_unclamped(self, point: Point) -> Point:
        sx, sy = self.scale
        return Point(point.x / max(sx, MIN_SCALE), point.y / max(sy, MIN_SCALE))
    
    def to_image(self, point: Point) -> Point:
        """Map a display point to image pixels, clamped to the photo bounds."""
        raw = self.to_image_unclamped(point)
        return Point(
            clamp(raw.x, 0.0, self.image_width),
            clamp(raw.y, 0.0, self.image_height),
        )


def nearest_marker(
    point: Point,
    markers: MarkerSet,
    pick_radius: float = PICK_RADIUS_PX
) -> Optional[MarkerKey]:
    """
    Find the marker closest to an image-space point.
    
    Ties go to the earlier key in MarkerKey order (strict comparison).
    
    Args:
        point: Point in image pixels
        markers: Current markers
        pick_radius: Maximum pick distance in image pixels
        
    Returns:
        MarkerKey of the nearest marker within the radius, or None
    """
    nearest = None
    nearest_distance = float("inf")
    
    for key, marker in markers.items():
        d = distance(point, marker)
        if d < nearest_distance:
            nearest_distance = d
            nearest = key
    
    return nearest if nearest_distance < pick_radius else None


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


class DragSession:
    """
    Drag state machine: idle <-> dragging(marker).
    
    pointer_up and capture_lost always return to idle, so a fast
    down/up sequence can never leave an active marker behind.
    """
    
    def __init__(self):
        self.active: Optional[MarkerKey] = None
    
    @property
    def state(self) -> DragState:
        return DragState.DRAGGING if self.active is not None else DragState.IDLE
    
    def pointer_down(self, key: Optional[MarkerKey]) -> bool:
        """Start dragging key. A miss (None) starts nothing and ends any stale drag."""
        self.active = key
        return key is not None
    
    def pointer_up(self) -> Optional[MarkerKey]:
        released, self.active = self.active, None
        return released
    
    def capture_lost(self) -> Optional[MarkerKey]:
        return self.pointer_up()


class AnnotationSurface:
    """
    Pointer-driven marker editor.
    
    Holds the current MarkerSet snapshot and swaps it wholesale on every
    move, touching only the dragged marker.
    
    Usage:
        surface = AnnotationSurface(markers, DisplayMapping(1280, 720, 640, 360))
        surface.pointer_down(Point(320, 170))
        surface.pointer_move(Point(330, 172))
        surface.pointer_up()
    """
    
    def __init__(
        self,
        markers: MarkerSet,
        mapping: DisplayMapping,
        pick_radius: float = PICK_RADIUS_PX
    ):
        self.markers = markers
        self.mapping = mapping
        self.pick_radius = pick_radius
        self.drag = DragSession()
    
    @property
    def active_marker(self) -> Optional[MarkerKey]:
        return self.drag.active
    
    def set_markers(self, markers: MarkerSet) -> None:
        self.markers = markers
    
    def resize(self, display_width: float, display_height: float) -> None:
        self.mapping.resize(display_width, display_height)
    
    def pointer_down(self, display_point: Point) -> Optional[MarkerKey]:
        """
        Hit-test the pointer and start a drag.

        A miss starts no drag and also ends any drag still active, so a
        later pointer_move moves nothing.

        Returns:
            The picked marker, or None when nothing is within the pick radius
        """
        hit = self.mapping.to_image(display_point)
        key = nearest_marker(hit, self.markers, self.pick_radius)
        self.drag.pointer_down(key)
        return key
    
    def pointer_move(self, display_point: Point) -> bool:
        """
        Move the active marker to the pointer.
        
        Returns:
            True if the markers changed
        """
        if self.drag.active is None:
            return False
        self.markers = self.markers.replace(self.drag.active, self.mapping.to_image(display_point))
        return True
    
    def pointer_up(self) -> None:
        self.drag.pointer_up()
    
    def capture_lost(self) -> None:
        self.drag.capture_lost()


def _int_point(point: Point) -> Tuple[int, int]:
    return int(round(point.x)), int(round(point.y))


def draw_markers(
    canvas: np.ndarray,
    markers: MarkerSet,
    mapping: Optional[DisplayMapping] = None,
    radius: int = 8,
    font_scale: float = 0.5
) -> np.ndarray:
    """
    Draw card line, pupil line and labelled marker handles onto canvas in place.
    
    Args:
        canvas: BGR image to draw on
        markers: Marker positions in image pixels
        mapping: Image-to-canvas mapping (identity when None)
        radius: Handle radius in canvas pixels
        font_scale: cv2 font scale for labels
        
    Returns:
        The same canvas
    """
    to_canvas = mapping.to_display if mapping else (lambda p: p)
    
    cv2.line(canvas, _int_point(to_canvas(markers.left_card)),
             _int_point(to_canvas(markers.right_card)), CARD_COLOR, 3)
    cv2.line(canvas, _int_point(to_canvas(markers.left_pupil)),
             _int_point(to_canvas(markers.right_pupil)), PUPIL_COLOR, 3)
    
    for key, marker in markers.items():
        x, y = _int_point(to_canvas(marker))
        cv2.circle(canvas, (x, y), radius, MARKER_COLORS[key], -1)
        cv2.circle(canvas, (x, y), radius, (255, 255, 255), 2)
        cv2.putText(
            canvas,
            MARKER_LABELS[key],
            (x + radius + 2, y - radius - 2),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (38, 20, 16),
            1,
            cv2.LINE_AA
        )
    
    return canvas


def render_annotations(
    image: np.ndarray,
    markers: MarkerSet,
    display_size: Optional[Tuple[int, int]] = None
) -> np.ndarray:
    """
    Render the annotation view: photo scaled to the display, lines and handles.
    
    Args:
        image: Original BGR photo
        markers: Marker positions in image pixels
        display_size: (width, height) of the display surface; original size when None
        
    Returns:
        New BGR image of the display size
    """
    h, w = image.shape[:2]
    display_w, display_h = display_size or (w, h)
    mapping = DisplayMapping(w, h, display_w, display_h)
    
    if (display_w, display_h) == (w, h):
        canvas = image.copy()
    else:
        canvas = cv2.resize(image, (int(display_w), int(display_h)), interpolation=cv2.INTER_AREA)
    
    return draw_markers(canvas, markers, mapping)
