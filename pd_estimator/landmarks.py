"""
Landmarks Module - Auto-Suggested Marker Placement

Turns MediaPipe FaceLandmarker output into marker suggestions. Pupils come
from the refined iris landmarks (eye-corner average as fallback). The
detector knows nothing about the card, so card corners are a heuristic
placed above the forehead landmark at 70% of the detected face width.
"""

import asyncio
import os
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np

from .markers import MarkerSuggestions
from .utils import (
    FOREHEAD_INDEX,
    LEFT_EYE_FALLBACK_INDICES,
    LEFT_IRIS_INDICES,
    RIGHT_EYE_FALLBACK_INDICES,
    RIGHT_IRIS_INDICES,
    Point,
    average_points,
)


CARD_TO_FACE_WIDTH = 0.7
CARD_ABOVE_FOREHEAD = 0.05  # Fraction of face height

MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/latest/face_landmarker.task"
)


class DetectionStatus(str, Enum):
    SUCCESS = "success"
    NO_FACE = "no-face"
    ERROR = "error"


@dataclass
class AutoSuggestResult:
    """Outcome of one auto-detection attempt."""
    status: DetectionStatus
    suggestions: MarkerSuggestions = field(default_factory=MarkerSuggestions)
    message: str = ""
    
    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "suggestions": self.suggestions.to_dict(),
            "message": self.message,
        }


def _to_point(landmark, width: float, height: float) -> Point:
    return Point(landmark.x * width, landmark.y * height)


def _collect(landmarks: Sequence, indices: Sequence[int], width: float, height: float) -> List[Point]:
    return [
        _to_point(landmarks[i], width, height)
        for i in indices
        if i < len(landmarks) and landmarks[i] is not None
    ]


def estimate_card_corners(
    landmarks: Sequence,
    width: float,
    height: float
) -> Optional[MarkerSuggestions]:
    """
    Estimate card corner positions from the face landmark bounding box.
    
    Args:
        landmarks: Normalized face landmarks (objects with .x and .y)
        width: Image width in pixels
        height: Image height in pixels
        
    Returns:
        Suggestions carrying only the two card corners, or None without landmarks
    """
    if len(landmarks) == 0:
        return None
    
    points = np.array([[lm.x * width, lm.y * height] for lm in landmarks], dtype=np.float64)
    min_x, min_y = points.min(axis=0)
    max_x, max_y = points.max(axis=0)
    face_width = max_x - min_x
    face_height = max_y - min_y
    
    forehead = None
    if FOREHEAD_INDEX < len(landmarks):
        forehead = _to_point(landmarks[FOREHEAD_INDEX], width, height)
    
    center_x = forehead.x if forehead else (min_x + max_x) / 2
    anchor_y = forehead.y if forehead else min_y + face_height * 0.2
    card_y = anchor_y - face_height * CARD_ABOVE_FOREHEAD
    half_card = face_width * CARD_TO_FACE_WIDTH / 2
    
    return MarkerSuggestions(
        left_card=Point(float(center_x - half_card), float(card_y)),
        right_card=Point(float(center_x + half_card), float(card_y)),
    )


def suggest_from_landmarks(
    landmarks: Optional[Sequence],
    width: float,
    height: float
) -> AutoSuggestResult:
    """
    Build marker suggestions from a single face's landmarks.
    
    Args:
        landmarks: Normalized landmarks of the first detected face, or None
        width: Image width in pixels
        height: Image height in pixels
        
    Returns:
        AutoSuggestResult; pupils are always present on success
    """
    if not landmarks:
        return AutoSuggestResult(
            status=DetectionStatus.NO_FACE,
            message="No face found. Place markers manually."
        )
    
    left_pupil = average_points(_collect(landmarks, LEFT_IRIS_INDICES, width, height))
    right_pupil = average_points(_collect(landmarks, RIGHT_IRIS_INDICES, width, height))
    if left_pupil is None:
        left_pupil = average_points(_collect(landmarks, LEFT_EYE_FALLBACK_INDICES, width, height))
    if right_pupil is None:
        right_pupil = average_points(_collect(landmarks, RIGHT_EYE_FALLBACK_INDICES, width, height))
    
    if left_pupil is None or right_pupil is None:
        return AutoSuggestResult(
            status=DetectionStatus.NO_FACE,
            message="Face found, but eyes were unclear. Please set pupils manually."
        )
    
    card = estimate_card_corners(landmarks, width, height)
    suggestions = MarkerSuggestions(
        left_pupil=left_pupil,
        right_pupil=right_pupil,
        left_card=card.left_card if card else None,
        right_card=card.right_card if card else None,
    )
    
    return AutoSuggestResult(
        status=DetectionStatus.SUCCESS,
        suggestions=suggestions,
        message="Auto-suggested markers loaded. Fine-tune points for best accuracy."
    )


class MediaPipeFaceLandmarker:
    """
    Thin wrapper over the MediaPipe FaceLandmarker Tasks API.
    
    detect() takes a BGR image and returns the landmark list of every
    detected face (normalized coordinates).
    """
    
    def __init__(self, model_path: str):
        import mediapipe as mp
        
        if not os.path.exists(model_path):
            raise FileNotFoundError(
                f"Face landmarker model not found at {model_path}. "
                f"Download from: {MODEL_URL}"
            )
        
        base_options = mp.tasks.BaseOptions(model_asset_path=model_path)
        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.IMAGE,
            num_faces=1,
            min_face_detection_confidence=0.5,
            min_face_presence_confidence=0.5,
            min_tracking_confidence=0.5,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False
        )
        self.mp = mp
        self.face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
    
    def detect(self, image: np.ndarray) -> list:
        import cv2
        
        rgb_image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = self.mp.Image(image_format=self.mp.ImageFormat.SRGB, data=rgb_image)
        results = self.face_landmarker.detect(mp_image)
        return list(results.face_landmarks or [])
    
    def close(self):
        self.face_landmarker.close()


class FaceLandmarkerHandle:
    """
    Owned, lazily constructed detector.
    
    The detector is expensive to build, so construction happens on first
    use in a worker thread. Concurrent callers share the single pending
    construction; a failed construction is forgotten so a later call can
    retry.
    """
    
    def __init__(
        self,
        model_path: Optional[str] = None,
        factory: Optional[Callable[[str], object]] = None
    ):
        """
        Args:
            model_path: Path to face_landmarker.task
            factory: Builds the detector from model_path (defaults to MediaPipe)
        """
        self.model_path = model_path
        self._factory = factory or MediaPipeFaceLandmarker
        self._landmarker = None
        self._pending: Optional[asyncio.Future] = None
    
    @property
    def ready(self) -> bool:
        return self._landmarker is not None
    
    @property
    def initializing(self) -> bool:
        return self._pending is not None
    
    async def get(self):
        """Return the detector, constructing it once if needed."""
        if self._landmarker is not None:
            return self._landmarker
        
        if self._pending is None:
            loop = asyncio.get_running_loop()
            pending = loop.run_in_executor(None, self._factory, self.model_path)
            pending.add_done_callback(self._on_constructed)
            self._pending = pending

        # A cancelled caller must not cancel construction for the others
        return await asyncio.shield(self._pending)

    def _on_constructed(self, future: asyncio.Future):
        if self._pending is future:
            self._pending = None
        if future.cancelled() or future.exception() is not None:
            return
        self._landmarker = future.result()

    async def detect(self, image: np.ndarray) -> list:
        """Run detection off the event loop and return per-face landmark lists."""
        landmarker = await self.get()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, landmarker.detect, image)
    
    def close(self):
        """Release resources."""
        if self._landmarker is not None and hasattr(self._landmarker, "close"):
            self._landmarker.close()
        self._landmarker = None


class AutoSuggester:
    """
    Best-effort marker auto-placement.
    
    Never raises: every failure becomes an "error" result so the caller
    can fall back to manual placement.
    """
    
    def __init__(self, handle: FaceLandmarkerHandle):
        self.handle = handle
    
    async def suggest(self, image: np.ndarray, width: float, height: float) -> AutoSuggestResult:
        """
        Detect a face and suggest marker positions.
        
        Args:
            image: BGR image
            width: Authoritative image width in pixels
            height: Authoritative image height in pixels
            
        Returns:
            AutoSuggestResult
        """
        try:
            faces = await self.handle.detect(image)
            landmarks = faces[0] if faces else None
            result = suggest_from_landmarks(landmarks, width, height)
        except Exception as e:
            print(f"[AutoSuggest] Detection failed: {e}")
            traceback.print_exc()
            return AutoSuggestResult(
                status=DetectionStatus.ERROR,
                message="Auto-detection unavailable on this device. Manual mode is still available."
            )
        
        print(f"[AutoSuggest] {result.status.value}: {result.message}")
        return result
