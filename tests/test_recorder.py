"""Tests for the commitment recorder — journaling and split-brain handling."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest
from eth_utils import keccak

from votecommit.errors import PersistenceFailedAfterPublish
from votecommit.models.commitment import CommitmentRecord, LeafSchema
from votecommit.persistence.recorder import CommitmentRecorder
from votecommit.persistence.vote_store import VoteStore

ROOT = keccak(b"root")
FIXED_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FailingStore(VoteStore):
    """Vote store whose commitment inserts fail until repaired."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    def insert_commitment(self, record: CommitmentRecord) -> None:
        if self.broken:
            raise OSError("database connection lost")
        super().insert_commitment(record)


def _recorder(store: VoteStore, tmp_path: Path) -> CommitmentRecorder:
    return CommitmentRecorder(
        store, journal_path=tmp_path / "journal.jsonl", clock=lambda: FIXED_TIME,
    )


class TestRecord:
    def test_record_persists_and_journals(self, tmp_path: Path) -> None:
        store = VoteStore()
        record = _recorder(store, tmp_path).record("2024", ROOT, "0xtx", 3)
        assert record.merkle_root == "0x" + ROOT.hex()
        assert record.created_utc == "2024-06-01T12:00:00Z"
        assert store.get_commitment("2024") == record

        entry = json.loads((tmp_path / "journal.jsonl").read_text(encoding="utf-8"))
        assert entry["tx_ref"] == "0xtx"
        assert entry["cycle_id"] == "2024"

    def test_same_reference_is_noop(self, tmp_path: Path) -> None:
        store = VoteStore()
        recorder = _recorder(store, tmp_path)
        first = recorder.record("2024", ROOT, "0xtx", 3)
        assert recorder.record("2024", ROOT, "0xtx", 3) == first

    def test_repeat_record_journals_once(self, tmp_path: Path) -> None:
        recorder = _recorder(VoteStore(), tmp_path)
        recorder.record("2024", ROOT, "0xtx", 3)
        recorder.record("2024", ROOT, "0xtx", 3)
        lines = (tmp_path / "journal.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1

    def test_schema_recorded(self, tmp_path: Path) -> None:
        record = _recorder(VoteStore(), tmp_path).record(
            "2024", ROOT, "0xtx", 3, LeafSchema.POSITION_SELECTION,
        )
        assert record.leaf_schema is LeafSchema.POSITION_SELECTION


class TestPersistenceFailure:
    def test_store_failure_escalates_with_reference(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture,
    ) -> None:
        recorder = _recorder(FailingStore(), tmp_path)
        with caplog.at_level(logging.CRITICAL, logger="votecommit.persistence.recorder"):
            with pytest.raises(PersistenceFailedAfterPublish) as exc_info:
                recorder.record("2024", ROOT, "0xtx", 3)

        assert exc_info.value.tx_ref == "0xtx"
        assert exc_info.value.cycle_id == "2024"
        assert exc_info.value.stage == "record"
        assert any("0xtx" in r.getMessage() for r in caplog.records)
        assert recorder.journal_entry("2024")["tx_ref"] == "0xtx"

    def test_conflicting_reference_escalates(self, tmp_path: Path) -> None:
        store = VoteStore()
        recorder = _recorder(store, tmp_path)
        recorder.record("2024", ROOT, "0xfirst", 3)
        with pytest.raises(PersistenceFailedAfterPublish):
            recorder.record("2024", ROOT, "0xsecond", 3)
        assert store.get_commitment("2024").tx_ref == "0xfirst"

    def test_recover_from_journal(self, tmp_path: Path) -> None:
        store = FailingStore()
        recorder = _recorder(store, tmp_path)
        with pytest.raises(PersistenceFailedAfterPublish):
            recorder.record("2024", ROOT, "0xtx", 3)

        store.broken = False
        record = recorder.recover("2024")
        assert record.tx_ref == "0xtx"
        assert store.get_commitment("2024") == record

    def test_recover_without_journal_entry(self, tmp_path: Path) -> None:
        with pytest.raises(LookupError):
            _recorder(VoteStore(), tmp_path).recover("2024")
