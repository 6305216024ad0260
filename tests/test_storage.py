from pd_estimator.session import SavedReading
from pd_estimator.storage import ReadingHistory

from conftest import markers_from


def make_reading(i):
    return SavedReading(
        id=f"reading-{i}",
        saved_at=f"2026-10-17T10:{i % 60:02d}:00+00:00",
        source_captured_at="2026-10-17T09:30:00+00:00",
        pd_mm=60.0 + i * 0.5,
        confidence=0.9,
        quality_message="Good quality capture. Manual marker check still recommended.",
        valid=True,
        issues=[],
        markers=markers_from((410, 480), (670, 480), (300, 200), (700, 200)),
        pupil_pixel_distance=260.0,
        card_pixel_width=400.0,
        mm_per_pixel=0.214,
    )


def test_missing_file_is_empty(tmp_path):
    assert ReadingHistory(str(tmp_path / "history.json")).load() == []


def test_save_prepends(tmp_path):
    history = ReadingHistory(str(tmp_path / "nested" / "history.json"))
    history.save(make_reading(1))
    saved = history.save(make_reading(2))
    
    assert [r.id for r in saved] == ["reading-2", "reading-1"]
    assert history.load() == saved


def test_history_is_capped(tmp_path):
    history = ReadingHistory(str(tmp_path / "history.json"))
    for i in range(30):
        history.save(make_reading(i))
    
    readings = history.load()
    assert len(readings) == 25
    assert readings[0].id == "reading-29"
    assert readings[-1].id == "reading-5"


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{not json")
    assert ReadingHistory(str(path)).load() == []


def test_non_list_reads_as_empty(tmp_path):
    path = tmp_path / "history.json"
    path.write_text('{"id": "x"}')
    assert ReadingHistory(str(path)).load() == []


def test_write_failure_keeps_previous(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    history = ReadingHistory(str(blocker / "history.json"))
    assert history.save(make_reading(1)) == []


def test_clear(tmp_path):
    history = ReadingHistory(str(tmp_path / "history.json"))
    history.save(make_reading(1))
    history.clear()
    history.clear()
    assert history.load() == []
