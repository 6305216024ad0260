"""
PNG export of a measurement: the annotated photo with a summary footer.
"""

from datetime import datetime
from typing import Optional

import cv2
import numpy as np

from .annotation import draw_markers
from .errors import ExportError
from .markers import MarkerSet
from .measurement import MeasurementResult


FOOTER_HEIGHT = 220
FOOTER_COLOR = (255, 246, 240)  # BGR
TEXT_COLOR = (38, 20, 16)
MUTED_COLOR = (99, 85, 75)
DISCLAIMER = "Estimation tool only. Not a medical device. Verify with an eye care professional."


def render_measurement_image(
    image: np.ndarray,
    markers: MarkerSet,
    measurement: MeasurementResult,
    now: Optional[datetime] = None
) -> np.ndarray:
    """
    Draw markers on the full-resolution photo and append a summary footer.
    
    Args:
        image: Original BGR photo
        markers: Marker positions in image pixels
        measurement: Measurement for those markers
        now: Timestamp to print (defaults to the current time)
        
    Returns:
        BGR image, FOOTER_HEIGHT pixels taller than the photo
    """
    h, w = image.shape[:2]
    now = now or datetime.now()
    
    canvas = np.empty((h + FOOTER_HEIGHT, w, 3), dtype=np.uint8)
    canvas[:] = FOOTER_COLOR
    canvas[:h] = image if image.ndim == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    
    draw_markers(canvas, markers, radius=7, font_scale=0.55)
    
    lines = [
        (f"Estimated PD: {measurement.pd_mm_rounded:.1f} mm", 1.2, 2, TEXT_COLOR, 60),
        (f"{now:%Y-%m-%d %H:%M} | Confidence: {measurement.confidence * 100:.0f}%", 0.7, 1, TEXT_COLOR, 102),
        (measurement.quality_message, 0.7, 1, TEXT_COLOR, 140),
        (DISCLAIMER, 0.55, 1, MUTED_COLOR, 184),
    ]
    for text, scale, thickness, color, offset in lines:
        cv2.putText(canvas, text, (36, h + offset), cv2.FONT_HERSHEY_SIMPLEX,
                    scale, color, thickness, cv2.LINE_AA)
    
    return canvas


def render_measurement_png(
    image: np.ndarray,
    markers: MarkerSet,
    measurement: MeasurementResult,
    now: Optional[datetime] = None
) -> bytes:
    """
    Render the export image and encode it as PNG.
    
    Raises:
        ExportError: If the image cannot be encoded
    """
    rendered = render_measurement_image(image, markers, measurement, now)
    ok, buffer = cv2.imencode(".png", rendered)
    if not ok:
        raise ExportError("Unable to create PNG.")
    return buffer.tobytes()


def export_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"pd-reading-{now:%Y-%m-%dT%H-%M-%S}.png"
