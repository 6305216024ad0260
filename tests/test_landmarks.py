import asyncio
import time

import numpy as np
import pytest

from pd_estimator.landmarks import (
    AutoSuggester,
    DetectionStatus,
    FaceLandmarkerHandle,
    estimate_card_corners,
    suggest_from_landmarks,
)

from conftest import BrokenLandmarker, FakeLandmarker, fake_handle, make_landmarks


IMAGE = np.zeros((1000, 1000, 3), dtype=np.uint8)


class TestSuggestFromLandmarks:
    def test_iris_centres_become_pupils(self):
        result = suggest_from_landmarks(make_landmarks(), 1000, 1000)
        
        assert result.status == DetectionStatus.SUCCESS
        assert result.suggestions.left_pupil.x == pytest.approx(400)
        assert result.suggestions.left_pupil.y == pytest.approx(500)
        assert result.suggestions.right_pupil.x == pytest.approx(600)
        assert "Fine-tune" in result.message
    
    def test_coordinates_scale_per_axis(self):
        result = suggest_from_landmarks(make_landmarks(), 1280, 720)
        assert result.suggestions.left_pupil.x == pytest.approx(512)
        assert result.suggestions.left_pupil.y == pytest.approx(360)
    
    def test_eye_corner_fallback_without_iris(self):
        result = suggest_from_landmarks(make_landmarks(count=468), 1000, 1000)
        
        assert result.status == DetectionStatus.SUCCESS
        assert result.suggestions.left_pupil.x == pytest.approx(410)
        assert result.suggestions.right_pupil.x == pytest.approx(590)
    
    def test_card_corners_above_forehead(self):
        result = suggest_from_landmarks(make_landmarks(), 1000, 1000)
        left, right = result.suggestions.left_card, result.suggestions.right_card
        
        # Face box is 400x600px, forehead at (500, 300)
        assert right.x - left.x == pytest.approx(280)
        assert (left.x + right.x) / 2 == pytest.approx(500)
        assert left.y == pytest.approx(270)
        assert right.y == pytest.approx(270)
    
    def test_no_landmarks_is_no_face(self):
        for landmarks in (None, []):
            result = suggest_from_landmarks(landmarks, 1000, 1000)
            assert result.status == DetectionStatus.NO_FACE
            assert result.suggestions.is_empty
            assert result.message == "No face found. Place markers manually."
    
    def test_unresolvable_eyes_is_no_face(self):
        result = suggest_from_landmarks(make_landmarks(count=20), 1000, 1000)
        assert result.status == DetectionStatus.NO_FACE
        assert "eyes were unclear" in result.message
    
    def test_to_dict(self):
        data = suggest_from_landmarks(make_landmarks(), 1000, 1000).to_dict()
        assert data["status"] == "success"
        assert set(data["suggestions"]) == {"leftPupil", "rightPupil", "leftCard", "rightCard"}


def test_card_corners_without_forehead_use_box():
    landmarks = make_landmarks(count=8)
    corners = estimate_card_corners(landmarks, 1000, 1000)
    
    # Box (300,200)-(700,800): centre x 500, y = 200 + 0.2*600 - 0.05*600
    assert corners.left_card.x == pytest.approx(360)
    assert corners.left_card.y == pytest.approx(290)
    assert corners.right_card.x == pytest.approx(640)
    assert corners.left_pupil is None


def test_card_corners_need_landmarks():
    assert estimate_card_corners([], 100, 100) is None


class TestFaceLandmarkerHandle:
    def test_concurrent_callers_share_one_construction(self):
        built = []
        
        def factory(path):
            time.sleep(0.05)
            landmarker = FakeLandmarker([])
            built.append((path, landmarker))
            return landmarker
        
        handle = FaceLandmarkerHandle("model.task", factory=factory)
        
        async def run():
            return await asyncio.gather(handle.get(), handle.get(), handle.get())
        
        results = asyncio.run(run())
        
        assert len(built) == 1
        assert built[0][0] == "model.task"
        assert all(r is results[0] for r in results)
        assert handle.ready
        assert not handle.initializing
    
    def test_failed_construction_can_be_retried(self):
        attempts = []
        
        def factory(path):
            attempts.append(path)
            if len(attempts) == 1:
                raise FileNotFoundError(path)
            return FakeLandmarker([])
        
        handle = FaceLandmarkerHandle("model.task", factory=factory)
        
        with pytest.raises(FileNotFoundError):
            asyncio.run(handle.get())
        assert not handle.ready
        assert not handle.initializing
        
        asyncio.run(handle.get())
        assert handle.ready
        assert len(attempts) == 2

    def test_cancelled_caller_does_not_cancel_other_callers(self):
        built = []

        def factory(path):
            time.sleep(0.2)
            landmarker = FakeLandmarker([])
            built.append(landmarker)
            return landmarker

        handle = FaceLandmarkerHandle("model.task", factory=factory)

        async def run():
            first = asyncio.ensure_future(handle.get())
            second = asyncio.ensure_future(handle.get())
            await asyncio.sleep(0.05)
            first.cancel()
            with pytest.raises(asyncio.CancelledError):
                await first
            return await second

        landmarker = asyncio.run(run())

        assert built == [landmarker]
        assert handle.ready

    def test_construction_survives_cancelled_sole_caller(self):
        built = []

        def factory(path):
            time.sleep(0.2)
            landmarker = FakeLandmarker([])
            built.append(landmarker)
            return landmarker

        handle = FaceLandmarkerHandle("model.task", factory=factory)

        async def run():
            task = asyncio.ensure_future(handle.get())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            assert handle.initializing
            return await handle.get()

        landmarker = asyncio.run(run())

        assert built == [landmarker]
        assert handle.ready
        assert not handle.initializing

    def test_close_releases_detector(self):
        landmarker = FakeLandmarker([])
        handle = fake_handle(landmarker=landmarker)
        asyncio.run(handle.get())
        
        handle.close()
        assert landmarker.closed
        assert not handle.ready


class TestAutoSuggester:
    def test_success(self):
        suggester = AutoSuggester(fake_handle())
        result = asyncio.run(suggester.suggest(IMAGE, 1000, 1000))
        assert result.status == DetectionStatus.SUCCESS
    
    def test_no_face(self):
        suggester = AutoSuggester(fake_handle(faces=[]))
        result = asyncio.run(suggester.suggest(IMAGE, 1000, 1000))
        assert result.status == DetectionStatus.NO_FACE
    
    def test_detector_exception_becomes_error(self):
        suggester = AutoSuggester(fake_handle(landmarker=BrokenLandmarker()))
        result = asyncio.run(suggester.suggest(IMAGE, 1000, 1000))
        
        assert result.status == DetectionStatus.ERROR
        assert result.suggestions.is_empty
        assert "Manual mode is still available" in result.message
    
    def test_missing_model_becomes_error(self, tmp_path):
        def factory(path):
            raise FileNotFoundError(path)
        
        handle = FaceLandmarkerHandle(str(tmp_path / "missing.task"), factory=factory)
        result = asyncio.run(AutoSuggester(handle).suggest(IMAGE, 1000, 1000))
        assert result.status == DetectionStatus.ERROR
