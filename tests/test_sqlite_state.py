from __future__ import annotations

from datetime import datetime, timezone

from adapters.sqlite_state import SQLiteStateStore
from core.models import Detection
from core.watermark import Watermark


def _store(tmp_path) -> SQLiteStateStore:
    store = SQLiteStateStore(str(tmp_path / "state" / "otpwatch.db"))
    store.init_db()
    return store


def _detection(source_message: int, code: str) -> Detection:
    return Detection(
        code=code,
        sender="+15550001111",
        source_message=source_message,
        detected_at=datetime(2024, 1, 1, 12, 0, 5, tzinfo=timezone.utc),
        message_timestamp=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        rule_name="digits_6",
    )


def test_values_survive_reopen(tmp_path) -> None:
    store = _store(tmp_path)
    assert store.get_value("last-processed-sequence-id") is None

    store.set_value("last-processed-sequence-id", 10)
    store.set_value("last-processed-sequence-id", 12)

    reopened = SQLiteStateStore(str(tmp_path / "state" / "otpwatch.db"))
    reopened.init_db()
    assert reopened.get_value("last-processed-sequence-id") == 12


def test_watermark_over_sqlite_is_monotone(tmp_path) -> None:
    watermark = Watermark(_store(tmp_path))

    watermark.advance(8)
    watermark.advance(3)

    assert watermark.read() == 8


def test_seen_fingerprints(tmp_path) -> None:
    store = _store(tmp_path)

    assert not store.is_seen("abc")
    store.mark_seen("abc")
    store.mark_seen("abc")
    assert store.is_seen("abc")


def test_cleanup_seen_removes_old_rows(tmp_path) -> None:
    store = _store(tmp_path)
    store.mark_seen("abc")

    assert store.cleanup_seen(30) == 0
    assert store.cleanup_seen(-1) == 1
    assert not store.is_seen("abc")


def test_detections_are_listed_newest_first(tmp_path) -> None:
    store = _store(tmp_path)
    store.save_detection(_detection(1, "111222"))
    store.save_detection(_detection(2, "333444"))

    recent = store.recent_detections(5)

    assert [d.code for d in recent] == ["333444", "111222"]
    assert recent[0] == _detection(2, "333444")
    assert store.recent_detections(1) == [_detection(2, "333444")]
