"""Commitment recorder — persists a confirmed root to the vote store.

Runs only after the ledger has confirmed a transaction. From that point
the transaction reference is the only link between the on-chain value
and the ballots it commits to, so it is written twice:
1. To a write-ahead recovery journal (JSONL), before the store insert.
2. To the vote store as the cycle's CommitmentRecord.

If the store insert fails the reference is logged at CRITICAL and
PersistenceFailedAfterPublish is raised. The cycle must then be
reconciled from the journal; it must never be published again.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from eth_utils import encode_hex

from votecommit.errors import AlreadyCommitted, PersistenceFailedAfterPublish
from votecommit.models.commitment import CommitmentRecord, LeafSchema
from votecommit.persistence.vote_store import VoteStore

logger = logging.getLogger(__name__)


class CommitmentRecorder:
    """Writes CommitmentRecords, journaling references first."""

    def __init__(
        self,
        store: VoteStore,
        journal_path: Optional[Path] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._journal_path = journal_path
        self._clock = clock

    def record(
        self,
        cycle_id: str,
        root: bytes,
        tx_ref: str,
        leaf_count: int,
        leaf_schema: LeafSchema = LeafSchema.BALLOT,
    ) -> CommitmentRecord:
        """Persist the commitment for a cycle.

        Re-recording the identical root and reference is a no-op
        returning the stored record, with nothing journaled.
        """
        root_hex = encode_hex(root)
        existing = self._store.get_commitment(cycle_id)
        if (
            existing is not None
            and existing.tx_ref == tx_ref
            and existing.merkle_root == root_hex
        ):
            return existing

        record = CommitmentRecord(
            cycle_id=cycle_id,
            merkle_root=root_hex,
            tx_ref=tx_ref,
            leaf_count=leaf_count,
            leaf_schema=leaf_schema,
            created_utc=self._clock().strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
        self._write_journal(record)

        try:
            self._store.insert_commitment(record)
        except AlreadyCommitted as exc:
            existing = self._store.get_commitment(cycle_id)
            if existing is not None and existing.tx_ref == tx_ref:
                return existing
            self._escalate(record, exc)
        except Exception as exc:
            self._escalate(record, exc)
        logger.info("Recorded commitment for cycle %s (tx %s)", cycle_id, tx_ref)
        return record

    def recover(self, cycle_id: str) -> CommitmentRecord:
        """Persist a journaled, already-confirmed commitment.

        Used by operators after PersistenceFailedAfterPublish. Does not
        touch the ledger. Raises LookupError if the journal has no entry
        for the cycle.
        """
        existing = self._store.get_commitment(cycle_id)
        if existing is not None:
            return existing
        entry = self.journal_entry(cycle_id)
        if entry is None:
            raise LookupError(f"No journaled commitment for cycle {cycle_id}")
        record = CommitmentRecord.from_dict(entry)
        self._store.insert_commitment(record)
        logger.warning(
            "Reconciled cycle %s from journal (tx %s)", cycle_id, record.tx_ref,
        )
        return record

    def journal_entry(self, cycle_id: str) -> Optional[dict]:
        """Most recent journal entry for a cycle, if any."""
        if self._journal_path is None or not self._journal_path.exists():
            return None
        found: Optional[dict] = None
        with self._journal_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                if data["cycle_id"] == cycle_id:
                    found = data
        return found

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _write_journal(self, record: CommitmentRecord) -> None:
        if self._journal_path is None:
            return
        try:
            self._journal_path.parent.mkdir(parents=True, exist_ok=True)
            with self._journal_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record.to_dict(), sort_keys=True) + "\n")
        except OSError:
            logger.critical(
                "Recovery journal write failed for cycle %s: root=%s tx=%s",
                record.cycle_id, record.merkle_root, record.tx_ref,
                exc_info=True,
            )

    def _escalate(self, record: CommitmentRecord, exc: Exception) -> None:
        logger.critical(
            "PersistenceFailedAfterPublish: cycle=%s root=%s tx=%s; "
            "ledger holds a confirmed root the vote store does not. "
            "Reconcile manually; do not republish.",
            record.cycle_id, record.merkle_root, record.tx_ref,
        )
        raise PersistenceFailedAfterPublish(
            f"Cycle {record.cycle_id} confirmed in tx {record.tx_ref} "
            f"but not recorded: {exc}",
            cycle_id=record.cycle_id,
            root=record.merkle_root,
            tx_ref=record.tx_ref,
        ) from exc
