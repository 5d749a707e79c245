"""Tests for the append-only event log — proves tamper detection and replay protection."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from handlepay.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _event(event_id: str = "EVT-00000001", actor: str = "0xabc") -> EventRecord:
    return EventRecord.create(
        event_id=event_id,
        event_kind=EventKind.DEPOSIT,
        actor_id=actor,
        payload={"handle": "alice", "amount": "100"},
        timestamp_utc=_now(),
    )


class TestEventRecord:
    def test_hash_is_sha256_prefixed(self) -> None:
        assert _event().event_hash.startswith("sha256:")

    def test_hash_is_deterministic(self) -> None:
        assert _event().event_hash == _event().event_hash

    def test_hash_covers_payload(self) -> None:
        other = EventRecord.create(
            event_id="EVT-00000001",
            event_kind=EventKind.DEPOSIT,
            actor_id="0xabc",
            payload={"handle": "alice", "amount": "101"},
            timestamp_utc=_now(),
        )
        assert other.event_hash != _event().event_hash


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event("EVT-1"))
        log.append(
            EventRecord.create("EVT-2", EventKind.WITHDRAWAL, "0xdef", {}, _now())
        )
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.WITHDRAWAL)] == ["EVT-2"]
        assert [e.event_id for e in log.events_for_actor("0xabc")] == ["EVT-1"]
        assert log.last_event is not None and log.last_event.event_id == "EVT-2"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event())
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event())

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None


class TestEventLogPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event("EVT-1"))
        log.append(_event("EVT-2"))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[0].event_hash == log.events()[0].event_hash
        assert reloaded.events()[0].event_kind == EventKind.DEPOSIT

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event())
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["amount"] = "1000000"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_on_recovery_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event())
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)
