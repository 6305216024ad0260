import sys
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pd_estimator.landmarks import FaceLandmarkerHandle
from pd_estimator.markers import MarkerSet
from pd_estimator.session import CapturedPhoto
from pd_estimator.utils import Point


NUM_LANDMARKS = 478


def make_landmarks(count=NUM_LANDMARKS, iris=True):
    """
    Synthetic normalized face landmarks.
    
    Bounding box (0.3, 0.2)-(0.7, 0.8), forehead (index 10) at (0.5, 0.3),
    irises at (0.4, 0.5) and (0.6, 0.5), eye corners around the same centres.
    """
    landmarks = [SimpleNamespace(x=0.5, y=0.5, z=0.0) for _ in range(count)]

    def put(index, x, y):
        if index < count:
            landmarks[index] = SimpleNamespace(x=x, y=y, z=0.0)

    put(0, 0.3, 0.2)
    put(1, 0.7, 0.8)
    put(10, 0.5, 0.3)

    for i, dx in zip((33, 133, 159, 145), (-0.02, 0.02, 0.0, 0.0)):
        put(i, 0.41 + dx, 0.5)
    for i, dx in zip((362, 263, 386, 374), (-0.02, 0.02, 0.0, 0.0)):
        put(i, 0.59 + dx, 0.5)

    if iris:
        for i in range(468, 473):
            put(i, 0.4, 0.5)
        for i in range(473, 478):
            put(i, 0.6, 0.5)

    return landmarks


class FakeLandmarker:
    def __init__(self, faces):
        self.faces = faces
        self.calls = 0
        self.closed = False
    
    def detect(self, image):
        self.calls += 1
        return self.faces
    
    def close(self):
        self.closed = True


class BrokenLandmarker:
    def detect(self, image):
        raise RuntimeError("GPU delegate unavailable")


def fake_handle(faces=None, landmarker=None):
    landmarker = landmarker or FakeLandmarker([make_landmarks()] if faces is None else faces)
    return FaceLandmarkerHandle("face_landmarker.task", factory=lambda path: landmarker)


def markers_from(left_pupil, right_pupil, left_card, right_card):
    return MarkerSet(
        left_pupil=Point(*left_pupil),
        right_pupil=Point(*right_pupil),
        left_card=Point(*left_card),
        right_card=Point(*right_card),
    )


@pytest.fixture
def image():
    frame = np.full((1000, 1000, 3), 90, dtype=np.uint8)
    frame[200:700, 300:700] = (140, 160, 190)
    return frame


@pytest.fixture
def photo(image):
    return CapturedPhoto.from_image(image, captured_at="2026-10-17T09:30:00+00:00")
