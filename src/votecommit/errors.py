"""Error taxonomy for the commitment pipeline.

Every failure carries the election cycle and the pipeline stage it
happened in, so an operator can resume or diagnose without re-running
the whole cycle.

- MalformedRecord: a ballot cannot be canonically encoded. The whole
  cycle aborts; a record is never dropped silently.
- EmptyLeafSet: nothing to commit.
- AlreadyCommitted: a different root is already recorded for the cycle.
- LedgerUnavailable: transient, retried with backoff, then fatal.
- LedgerRejected: the ledger refused the transaction. Never retried.
- PersistenceFailedAfterPublish: the ledger holds a confirmed root the
  vote store does not. Requires manual reconciliation, never a republish.
"""

from __future__ import annotations

from typing import Optional


class CommitmentError(Exception):
    """Base class for all pipeline failures."""

    stage = "unknown"

    def __init__(
        self,
        message: str,
        cycle_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cycle_id = cycle_id
        if stage is not None:
            self.stage = stage

    def context(self) -> dict[str, Optional[str]]:
        return {"cycle_id": self.cycle_id, "stage": self.stage}


class MalformedRecord(CommitmentError, ValueError):
    stage = "encode"


class EmptyLeafSet(CommitmentError, ValueError):
    stage = "build"


class CycleClosed(CommitmentError):
    """A ballot arrived for a cycle that has already been closed."""
    stage = "collect"


class AlreadyCommitted(CommitmentError):
    stage = "publish"

    def __init__(
        self,
        message: str,
        cycle_id: Optional[str] = None,
        existing_tx_ref: Optional[str] = None,
    ) -> None:
        super().__init__(message, cycle_id=cycle_id)
        self.existing_tx_ref = existing_tx_ref


class LedgerUnavailable(CommitmentError):
    """Transient ledger failure (connection, timeout)."""
    stage = "publish"

    def __init__(
        self,
        message: str,
        cycle_id: Optional[str] = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, cycle_id=cycle_id)
        self.attempts = attempts


class LedgerRejected(CommitmentError):
    """The ledger refused the transaction (revert, validation, policy)."""
    stage = "publish"


class PersistenceFailedAfterPublish(CommitmentError):
    """Confirmed on the ledger, missing from the vote store."""
    stage = "record"

    def __init__(
        self,
        message: str,
        cycle_id: Optional[str] = None,
        root: Optional[str] = None,
        tx_ref: Optional[str] = None,
    ) -> None:
        super().__init__(message, cycle_id=cycle_id)
        self.root = root
        self.tx_ref = tx_ref

    def context(self) -> dict[str, Optional[str]]:
        ctx = super().context()
        ctx.update({"root": self.root, "tx_ref": self.tx_ref})
        return ctx
