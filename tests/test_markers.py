import pytest

from pd_estimator.markers import (
    MarkerKey,
    MarkerSet,
    MarkerSuggestions,
    create_default_markers,
    merge_suggestions,
)
from pd_estimator.utils import Point

from conftest import markers_from


def test_default_layout_is_proportional():
    markers = create_default_markers(1000, 500)
    assert markers.left_pupil == Point(400, 240)
    assert markers.right_pupil == Point(600, 240)
    assert markers.left_card == Point(300, 100)
    assert markers.right_card == Point(700, 100)


def test_items_follow_key_order():
    markers = create_default_markers(100, 100)
    assert [key for key, _ in markers.items()] == list(MarkerKey)


def test_replace_returns_new_snapshot():
    markers = create_default_markers(100, 100)
    moved = markers.replace(MarkerKey.LEFT_CARD, Point(1, 2))
    
    assert moved is not markers
    assert moved.left_card == Point(1, 2)
    assert markers.left_card == Point(30, 20)
    assert moved.right_card == markers.right_card


def test_marker_set_is_frozen():
    markers = create_default_markers(100, 100)
    with pytest.raises(AttributeError):
        markers.left_pupil = Point(0, 0)


def test_get_accepts_wire_names():
    markers = create_default_markers(100, 100)
    assert markers.get("rightPupil") == markers.right_pupil


def test_dict_round_trip():
    markers = markers_from((1, 2), (3, 4), (5, 6), (7, 8))
    data = markers.to_dict()
    assert set(data) == {"leftPupil", "rightPupil", "leftCard", "rightCard"}
    assert MarkerSet.from_dict(data) == markers


def test_from_dict_requires_all_markers():
    data = markers_from((1, 2), (3, 4), (5, 6), (7, 8)).to_dict()
    del data["rightCard"]
    with pytest.raises(ValueError, match="rightCard"):
        MarkerSet.from_dict(data)


class TestMergeSuggestions:
    current = markers_from((400, 480), (600, 480), (300, 200), (700, 200))
    
    def test_present_keys_overwrite_absent_keys_keep(self):
        suggestions = MarkerSuggestions(left_pupil=Point(410, 470), right_pupil=Point(590, 475))
        merged = merge_suggestions(self.current, suggestions)
        
        assert merged.left_pupil == Point(410, 470)
        assert merged.right_pupil == Point(590, 475)
        assert merged.left_card == self.current.left_card
        assert merged.right_card == self.current.right_card
    
    def test_empty_suggestions_keep_everything(self):
        suggestions = MarkerSuggestions()
        assert suggestions.is_empty
        assert merge_suggestions(self.current, suggestions) == self.current
    
    def test_full_suggestions_replace_everything(self):
        target = markers_from((1, 1), (2, 2), (3, 3), (4, 4))
        suggestions = MarkerSuggestions(**{key.attr: target.get(key) for key in MarkerKey})
        assert merge_suggestions(self.current, suggestions) == target
    
    @pytest.mark.parametrize("key", list(MarkerKey))
    def test_single_key(self, key):
        suggestions = MarkerSuggestions(**{key.attr: Point(-1, -1)})
        merged = merge_suggestions(self.current, suggestions)
        for other, point in merged.items():
            expected = Point(-1, -1) if other == key else self.current.get(other)
            assert point == expected
    
    def test_suggestion_is_not_blended(self):
        suggestions = MarkerSuggestions(left_card=Point(0, 0))
        merged = merge_suggestions(self.current, suggestions)
        assert merged.left_card == Point(0, 0)
