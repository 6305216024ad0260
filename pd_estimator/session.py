"""
Session Module - One Photo's Measurement Workflow

A MeasurementSession owns the captured photo, the marker store (through
its annotation surface), the derived measurement and the auto-detect
status. Auto-detect runs are sequence-numbered: a result is only applied
if no later run (or retake) has started since, so a slow first detection
can never overwrite a newer one.
"""

import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

import cv2
import numpy as np

from .annotation import AnnotationSurface, DisplayMapping
from .errors import InvalidMeasurementError
from .landmarks import AutoSuggester, AutoSuggestResult, DetectionStatus
from .markers import MarkerSet, create_default_markers, merge_suggestions
from .measurement import MeasurementResult, PDCalculator, calculate_pd


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def decode_data_url(data_url: str) -> np.ndarray:
    """Decode a base64 (optionally data-URL prefixed) image to a BGR array."""
    if ',' in data_url:
        data_url = data_url.split(',', 1)[1]
    
    try:
        img_bytes = base64.b64decode(data_url, validate=False)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid base64 image: {e}")
    
    nparr = np.frombuffer(img_bytes, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
    
    if image is None:
        raise ValueError("Failed to decode image")
    
    return image


def encode_data_url(image: np.ndarray, ext: str = ".jpg") -> str:
    ok, buffer = cv2.imencode(ext, image)
    if not ok:
        raise ValueError(f"Failed to encode image as {ext}")
    mime = "image/png" if ext == ".png" else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(buffer.tobytes()).decode('ascii')}"


@dataclass
class CapturedPhoto:
    """A captured still. width/height define the marker coordinate space."""
    data_url: str
    width: int
    height: int
    captured_at: str = field(default_factory=_now_iso)
    
    @classmethod
    def from_image(cls, image: np.ndarray, captured_at: Optional[str] = None) -> "CapturedPhoto":
        h, w = image.shape[:2]
        return cls(
            data_url=encode_data_url(image),
            width=w,
            height=h,
            captured_at=captured_at or _now_iso()
        )
    
    @classmethod
    def from_data_url(cls, data_url: str, captured_at: Optional[str] = None) -> "CapturedPhoto":
        image = decode_data_url(data_url)
        h, w = image.shape[:2]
        return cls(data_url=data_url, width=w, height=h, captured_at=captured_at or _now_iso())
    
    def decode(self) -> np.ndarray:
        return decode_data_url(self.data_url)
    
    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height, "capturedAt": self.captured_at}


class AutoDetectState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    NO_FACE = "no-face"
    ERROR = "error"


@dataclass
class SavedReading:
    """Value snapshot of a measurement and the markers it came from."""
    id: str
    saved_at: str
    source_captured_at: str
    pd_mm: float
    confidence: float
    quality_message: str
    valid: bool
    issues: List[str]
    markers: MarkerSet
    pupil_pixel_distance: float
    card_pixel_width: float
    mm_per_pixel: float
    
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "savedAt": self.saved_at,
            "sourceCapturedAt": self.source_captured_at,
            "pdMm": self.pd_mm,
            "confidence": self.confidence,
            "qualityMessage": self.quality_message,
            "valid": self.valid,
            "issues": list(self.issues),
            "markers": self.markers.to_dict(),
            "pupilPixelDistance": self.pupil_pixel_distance,
            "cardPixelWidth": self.card_pixel_width,
            "mmPerPixel": self.mm_per_pixel,
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> "SavedReading":
        return cls(
            id=data["id"],
            saved_at=data["savedAt"],
            source_captured_at=data["sourceCapturedAt"],
            pd_mm=float(data["pdMm"]),
            confidence=float(data["confidence"]),
            quality_message=data["qualityMessage"],
            valid=bool(data["valid"]),
            issues=list(data.get("issues", [])),
            markers=MarkerSet.from_dict(data["markers"]),
            pupil_pixel_distance=float(data["pupilPixelDistance"]),
            card_pixel_width=float(data["cardPixelWidth"]),
            mm_per_pixel=float(data["mmPerPixel"]),
        )
    
    def share_text(self) -> str:
        """Plain-text summary for sharing."""
        saved = datetime.fromisoformat(self.saved_at).strftime("%Y-%m-%d %H:%M:%S")
        return "\n".join([
            f"Estimated PD: {self.pd_mm:.1f} mm",
            f"Confidence: {self.confidence * 100:.0f}%",
            f"Timestamp: {saved}",
            "Generated by the card-calibrated PD estimator.",
        ])


class MeasurementSession:
    """
    Measurement workflow for a single captured photo.
    
    Usage:
        session = MeasurementSession(CapturedPhoto.from_image(frame))
        await session.run_auto_detect(suggester)
        session.surface.pointer_down(Point(410, 300))
        print(session.measurement)
    """
    
    def __init__(
        self,
        photo: CapturedPhoto,
        calculator: Optional[PDCalculator] = None,
        session_id: Optional[str] = None
    ):
        self.id = session_id or uuid.uuid4().hex
        self.calculator = calculator
        self.auto_state = AutoDetectState.IDLE
        self.auto_message = ""
        self._ticket = 0
        self._measured_for: Optional[MarkerSet] = None
        self._measurement: Optional[MeasurementResult] = None
        self._reset(photo)
    
    def _reset(self, photo: CapturedPhoto) -> None:
        self.photo = photo
        self.surface = AnnotationSurface(
            create_default_markers(photo.width, photo.height),
            DisplayMapping(photo.width, photo.height)
        )
    
    @property
    def markers(self) -> MarkerSet:
        return self.surface.markers
    
    def set_markers(self, markers: MarkerSet) -> None:
        self.surface.set_markers(markers)
    
    @property
    def measurement(self) -> MeasurementResult:
        """Measurement for the current markers, recomputed whenever they change."""
        if self._measured_for is not self.markers:
            markers = self.markers
            if self.calculator is not None:
                self._measurement = self.calculator.calculate(markers)
            else:
                self._measurement = calculate_pd(markers)
            self._measured_for = markers
        return self._measurement
    
    def should_auto_detect(self) -> bool:
        return self.auto_state == AutoDetectState.IDLE
    
    def begin_auto_detect(self) -> int:
        """Enter loading and return the ticket identifying this run."""
        self._ticket += 1
        self.auto_state = AutoDetectState.LOADING
        self.auto_message = ""
        return self._ticket
    
    def complete_auto_detect(self, ticket: int, result: AutoSuggestResult) -> bool:
        """
        Apply a detection result if its run is still the latest one.
        
        Args:
            ticket: Value returned by begin_auto_detect for this run
            result: Detector outcome
            
        Returns:
            False if the result was stale and discarded
        """
        if ticket != self._ticket:
            print(f"[Session {self.id[:8]}] Discarding stale auto-detect result (run {ticket})")
            return False
        
        self.auto_state = AutoDetectState(result.status.value)
        self.auto_message = result.message
        if self.auto_state == AutoDetectState.SUCCESS:
            self.set_markers(merge_suggestions(self.markers, result.suggestions))
        return True
    
    async def run_auto_detect(self, suggester: AutoSuggester, force: bool = False) -> bool:
        """
        Run auto-detection for the current photo.
        
        Args:
            suggester: Auto-suggest component
            force: Re-run from any state (manual re-run); otherwise only from idle
            
        Returns:
            True if a result was applied
        """
        if not force and not self.should_auto_detect():
            return False
        
        ticket = self.begin_auto_detect()
        photo = self.photo
        try:
            image = photo.decode()
        except ValueError as e:
            print(f"[Session {self.id[:8]}] Could not decode photo: {e}")
            return self.complete_auto_detect(ticket, AutoSuggestResult(
                status=DetectionStatus.ERROR,
                message="Auto-detection unavailable on this device. Manual mode is still available."
            ))
        
        result = await suggester.suggest(image, photo.width, photo.height)
        return self.complete_auto_detect(ticket, result)
    
    def retake(self, photo: CapturedPhoto) -> None:
        """Replace the photo: default markers, idle auto-detect, in-flight runs invalidated."""
        self._ticket += 1
        self.auto_state = AutoDetectState.IDLE
        self.auto_message = ""
        self._reset(photo)
    
    def to_saved_reading(self) -> SavedReading:
        """
        Snapshot the current measurement for saving.
        
        Raises:
            InvalidMeasurementError: If the measurement has validation issues
        """
        measurement = self.measurement
        if not measurement.valid:
            raise InvalidMeasurementError(measurement.issues)
        
        return SavedReading(
            id=str(uuid.uuid4()),
            saved_at=_now_iso(),
            source_captured_at=self.photo.captured_at,
            pd_mm=measurement.pd_mm_rounded,
            confidence=measurement.confidence,
            quality_message=measurement.quality_message,
            valid=measurement.valid,
            issues=list(measurement.issues),
            markers=self.markers,
            pupil_pixel_distance=measurement.pupil_pixel_distance,
            card_pixel_width=measurement.card_pixel_width,
            mm_per_pixel=measurement.mm_per_pixel,
        )
    
    def to_dict(self) -> dict:
        surface = self.surface
        return {
            "id": self.id,
            "photo": self.photo.to_dict(),
            "markers": self.markers.to_dict(),
            "measurement": self.measurement.to_dict(),
            "autoDetect": {"status": self.auto_state.value, "message": self.auto_message},
            "activeMarker": surface.active_marker.value if surface.active_marker else None,
            "display": {
                "width": surface.mapping.display_width,
                "height": surface.mapping.display_height,
            },
        }
