from __future__ import annotations

import pytest

from statement_ingest.events import EventLog


def test_ring_buffer_discards_oldest() -> None:
    log = EventLog(maxlen=3)
    for i in range(5):
        log.record("file_upload", n=i)

    assert len(log) == 3
    assert log.maxlen == 3
    assert [e.details["n"] for e in log.recent()] == [4, 3, 2]


def test_recent_and_by_kind_are_newest_first() -> None:
    log = EventLog()
    log.record("file_upload", filename="a.csv")
    log.record("parse_completed", filename="a.csv", transactions=2)
    log.record("file_upload", filename="b.csv")

    assert [e.kind for e in log.recent(limit=2)] == ["file_upload", "parse_completed"]
    uploads = log.by_kind("file_upload")
    assert [e.details["filename"] for e in uploads] == ["b.csv", "a.csv"]
    assert log.recent(limit=0) == []


def test_to_dict_flattens_details() -> None:
    event = EventLog().record("import_completed", account_id="acct", added=3)
    payload = event.to_dict()
    assert payload["kind"] == "import_completed"
    assert payload["added"] == 3
    assert payload["timestamp"].endswith("+00:00")


def test_unknown_kind_and_bad_capacity() -> None:
    log = EventLog()
    with pytest.raises(ValueError):
        log.record("something_else")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        EventLog(maxlen=0)


def test_clear() -> None:
    log = EventLog()
    log.record("upload_rejected", reason="empty")
    log.clear()
    assert len(log) == 0
