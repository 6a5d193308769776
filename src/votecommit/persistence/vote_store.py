"""Vote store — ballots and commitment records with optional file persistence.

The store is the collaborator the commitment pipeline reads ballots
from and writes commitment records to. Both collections are
append-only:
1. Ballots are never modified once added. A closed cycle accepts no
   further ballots, which makes the snapshot read by the pipeline final.
2. At most one commitment record exists per cycle. A second insert for
   the same cycle is rejected here as a storage-level backstop.

Without a storage directory the store is purely in-memory. With one,
ballots and commitments are persisted to JSONL files (one JSON object
per line) and loaded back on construction.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from votecommit.errors import AlreadyCommitted, CycleClosed
from votecommit.models.ballot import BallotRecord
from votecommit.models.commitment import CommitmentRecord

BALLOTS_FILE = "ballots.jsonl"
COMMITMENTS_FILE = "commitments.jsonl"
CLOSED_CYCLES_FILE = "closed_cycles.json"


class VoteStore:
    """Append-only ballot and commitment storage.

    Usage:
        store = VoteStore(storage_dir=Path("data"))
        store.add_ballot(BallotRecord.create("V1", ["C2"], "P1", "2024"))
        store.close_cycle("2024")
        snapshot = store.ballots_for_cycle("2024")
    """

    def __init__(self, storage_dir: Optional[Path] = None) -> None:
        self._storage_dir = storage_dir
        self._ballots: list[BallotRecord] = []
        self._closed: set[str] = set()
        self._commitments: dict[str, CommitmentRecord] = {}

        if storage_dir is not None:
            storage_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    def detached(self) -> VoteStore:
        """An in-memory copy; writes to it never reach this store's files."""
        copy = VoteStore()
        copy._ballots = list(self._ballots)
        copy._closed = set(self._closed)
        copy._commitments = dict(self._commitments)
        return copy

    # ------------------------------------------------------------------
    # Ballots
    # ------------------------------------------------------------------

    def add_ballot(self, record: BallotRecord) -> None:
        """Append a ballot. Raises CycleClosed if its cycle is closed."""
        if record.cycle_id in self._closed:
            raise CycleClosed(
                f"Cycle {record.cycle_id} is closed; ballot from "
                f"{record.voter_id} rejected",
                cycle_id=record.cycle_id,
            )
        self._ballots.append(record)
        if self._storage_dir is not None:
            self._append_line(BALLOTS_FILE, record.to_dict())

    def ballots_for_cycle(self, cycle_id: str) -> tuple[BallotRecord, ...]:
        """Snapshot of every ballot recorded for a cycle."""
        return tuple(b for b in self._ballots if b.cycle_id == cycle_id)

    def close_cycle(self, cycle_id: str) -> None:
        """Stop accepting ballots for a cycle. Idempotent."""
        if cycle_id in self._closed:
            return
        self._closed.add(cycle_id)
        if self._storage_dir is not None:
            path = self._storage_dir / CLOSED_CYCLES_FILE
            path.write_text(json.dumps(sorted(self._closed), indent=2), encoding="utf-8")

    def is_closed(self, cycle_id: str) -> bool:
        return cycle_id in self._closed

    def cycles(self) -> list[str]:
        """All cycle ids with ballots or commitments, sorted."""
        seen = {b.cycle_id for b in self._ballots} | set(self._commitments)
        return sorted(seen)

    # ------------------------------------------------------------------
    # Commitments
    # ------------------------------------------------------------------

    def get_commitment(self, cycle_id: str) -> Optional[CommitmentRecord]:
        return self._commitments.get(cycle_id)

    def insert_commitment(self, record: CommitmentRecord) -> None:
        """Insert the commitment for a cycle.

        Raises AlreadyCommitted if the cycle already has one.
        """
        existing = self._commitments.get(record.cycle_id)
        if existing is not None:
            raise AlreadyCommitted(
                f"Cycle {record.cycle_id} already has a commitment record",
                cycle_id=record.cycle_id,
                existing_tx_ref=existing.tx_ref,
            )
        if self._storage_dir is not None:
            self._append_line(COMMITMENTS_FILE, record.to_dict())
        self._commitments[record.cycle_id] = record

    def commitments(self) -> list[CommitmentRecord]:
        return list(self._commitments.values())

    # ------------------------------------------------------------------
    # File persistence
    # ------------------------------------------------------------------

    def _append_line(self, filename: str, data: dict) -> None:
        with (self._storage_dir / filename).open("a", encoding="utf-8") as f:
            f.write(json.dumps(data, sort_keys=True, ensure_ascii=False) + "\n")

    def _load(self) -> None:
        """Load persisted state.

        Fail-closed: two commitment records for one cycle are rejected.
        """
        for data in _read_jsonl(self._storage_dir / BALLOTS_FILE):
            self._ballots.append(BallotRecord.from_dict(data))

        for line_num, data in enumerate(_read_jsonl(self._storage_dir / COMMITMENTS_FILE), 1):
            record = CommitmentRecord.from_dict(data)
            if record.cycle_id in self._commitments:
                raise ValueError(
                    f"Duplicate commitment for cycle {record.cycle_id} "
                    f"(record {line_num})"
                )
            self._commitments[record.cycle_id] = record

        closed_path = self._storage_dir / CLOSED_CYCLES_FILE
        if closed_path.exists():
            self._closed = set(json.loads(closed_path.read_text(encoding="utf-8")))


def _read_jsonl(path: Path) -> list[dict]:
    if not path.exists():
        return []
    records: list[dict] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(json.loads(line))
    return records
