"""
PD Estimator Service - Session-owning backend for marker annotation.

Keeps one MeasurementSession per captured photo, runs auto-detection
through an owned FaceLandmarker handle and persists saved readings.
"""

import os
from typing import Dict, List, Optional

import cv2
from dotenv import load_dotenv

from pd_estimator.annotation import render_annotations
from pd_estimator.errors import ExportError, SessionNotFoundError
from pd_estimator.export import render_measurement_png
from pd_estimator.landmarks import AutoSuggester, FaceLandmarkerHandle
from pd_estimator.markers import MarkerSet
from pd_estimator.measurement import PDCalculator
from pd_estimator.session import CapturedPhoto, MeasurementSession, SavedReading
from pd_estimator.storage import ReadingHistory
from pd_estimator.utils import Point

load_dotenv()

DEFAULT_MODEL_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "face_landmarker.task")
DEFAULT_HISTORY_PATH = os.path.join("readings", "history.json")


class PDService:
    """Annotation sessions, auto-suggest and reading history."""
    
    def __init__(
        self,
        landmarker: Optional[FaceLandmarkerHandle] = None,
        history: Optional[ReadingHistory] = None,
        calculator: Optional[PDCalculator] = None
    ):
        """
        Args:
            landmarker: Detector handle (built from PD_FACE_LANDMARKER_MODEL if None)
            history: Reading store (at PD_HISTORY_PATH if None)
            calculator: Measurement calculator (default thresholds if None)
        """
        print("[PDService] Initializing PD estimator service...")
        if landmarker is None:
            landmarker = FaceLandmarkerHandle(
                model_path=os.getenv("PD_FACE_LANDMARKER_MODEL", DEFAULT_MODEL_PATH)
            )
        if history is None:
            history = ReadingHistory(os.getenv("PD_HISTORY_PATH", DEFAULT_HISTORY_PATH))
        
        self.landmarker = landmarker
        self.suggester = AutoSuggester(landmarker)
        self.history = history
        self.calculator = calculator
        self.sessions: Dict[str, MeasurementSession] = {}
    
    def get_session(self, session_id: str) -> MeasurementSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session
    
    async def create_session(self, photo: CapturedPhoto, auto_detect: bool = True) -> MeasurementSession:
        """
        Start annotating a captured photo.
        
        Markers start at the default layout; the first auto-detect run
        then merges in whatever the detector finds.
        """
        session = MeasurementSession(photo, calculator=self.calculator)
        self.sessions[session.id] = session
        print(f"[PDService] Session {session.id[:8]} created ({photo.width}x{photo.height})")
        
        if auto_detect:
            await session.run_auto_detect(self.suggester)
        return session
    
    def close_session(self, session_id: str) -> None:
        self.get_session(session_id)
        del self.sessions[session_id]
    
    async def rerun_auto_detect(self, session_id: str) -> MeasurementSession:
        session = self.get_session(session_id)
        await session.run_auto_detect(self.suggester, force=True)
        return session
    
    async def retake(self, session_id: str, photo: CapturedPhoto, auto_detect: bool = True) -> MeasurementSession:
        session = self.get_session(session_id)
        session.retake(photo)
        if auto_detect:
            await session.run_auto_detect(self.suggester)
        return session
    
    def set_markers(self, session_id: str, markers: MarkerSet) -> MeasurementSession:
        session = self.get_session(session_id)
        session.set_markers(markers)
        return session
    
    def pointer_event(
        self,
        session_id: str,
        event: str,
        point: Optional[Point] = None,
        display_width: Optional[float] = None,
        display_height: Optional[float] = None
    ) -> MeasurementSession:
        """
        Feed one pointer event (display pixels) to the session's surface.
        
        Args:
            event: "down", "move", "up" or "cancel" (pointer capture lost)
            point: Pointer position, required for down/move
            display_width: Current display width, if it changed
            display_height: Current display height, if it changed
        """
        session = self.get_session(session_id)
        surface = session.surface
        
        if display_width is not None or display_height is not None:
            if not (display_width and display_height and display_width > 0 and display_height > 0):
                raise ValueError(f"Display size must be positive, got {display_width}x{display_height}")
            surface.resize(display_width, display_height)
        
        if event in ("down", "move") and point is None:
            raise ValueError(f"Pointer event '{event}' needs a position")
        
        if event == "down":
            surface.pointer_down(point)
        elif event == "move":
            surface.pointer_move(point)
        elif event == "up":
            surface.pointer_up()
        elif event == "cancel":
            surface.capture_lost()
        else:
            raise ValueError(f"Unknown pointer event: {event}")
        
        return session
    
    def save_reading(self, session_id: str) -> SavedReading:
        """
        Save the session's measurement to history.
        
        Raises:
            InvalidMeasurementError: If the measurement has issues
        """
        session = self.get_session(session_id)
        reading = session.to_saved_reading()
        self.history.save(reading)
        print(f"[PDService] Saved reading {reading.id[:8]}: PD={reading.pd_mm:.1f}mm")
        return reading
    
    def list_readings(self) -> List[SavedReading]:
        return self.history.load()
    
    def clear_readings(self) -> None:
        self.history.clear()
    
    def export_png(self, session_id: str) -> bytes:
        session = self.get_session(session_id)
        return render_measurement_png(session.photo.decode(), session.markers, session.measurement)
    
    def preview_png(self, session_id: str) -> bytes:
        """Annotated view at the session's current display size."""
        session = self.get_session(session_id)
        mapping = session.surface.mapping
        rendered = render_annotations(
            session.photo.decode(),
            session.markers,
            (int(mapping.display_width), int(mapping.display_height))
        )
        ok, buffer = cv2.imencode(".png", rendered)
        if not ok:
            raise ExportError("Failed to encode preview")
        return buffer.tobytes()
    
    def close(self):
        """Release resources."""
        self.landmarker.close()


# Singleton instance
_pd_service = None

def get_pd_service() -> PDService:
    global _pd_service
    if _pd_service is None:
        _pd_service = PDService()
    return _pd_service
