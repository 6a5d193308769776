"""Root publisher — submits a cycle's Merkle root to the ledger exactly once.

Order of checks on every call:
1. Vote store: a commitment already recorded for the cycle with the same
   root short-circuits to its reference; a different root raises
   AlreadyCommitted.
2. Ledger: a confirmed transaction for this root and cycle (for example
   from a run whose confirmation was lost) short-circuits to its reference.
3. Submit, blocking until confirmed.

Transient failures (LedgerUnavailable) are retried with bounded
exponential backoff. Step 2 runs again before every retry so a
submission that landed but timed out is never sent twice.
LedgerRejected is surfaced immediately.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from eth_utils import encode_hex

from votecommit.config import RetryPolicy
from votecommit.crypto.anchor import Ledger
from votecommit.crypto.leaf import DIGEST_SIZE
from votecommit.errors import AlreadyCommitted, LedgerUnavailable
from votecommit.persistence.vote_store import VoteStore

logger = logging.getLogger(__name__)


class RootPublisher:
    """Publishes roots through a Ledger with retry and idempotency.

    Usage:
        publisher = RootPublisher(ledger, store, RetryPolicy(max_attempts=3))
        tx_ref = publisher.publish(root, "2024")
    """

    def __init__(
        self,
        ledger: Ledger,
        store: VoteStore,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 300.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._retry = retry or RetryPolicy()
        self._timeout = timeout
        self._sleep = sleep

    def publish(self, root: bytes, cycle_id: str) -> str:
        """Submit root for cycle_id and return the confirmed reference."""
        if not isinstance(root, bytes) or len(root) != DIGEST_SIZE:
            raise ValueError(f"Root must be {DIGEST_SIZE} bytes")
        root_hex = encode_hex(root)

        existing = self._store.get_commitment(cycle_id)
        if existing is not None:
            if existing.merkle_root == root_hex:
                logger.info(
                    "Cycle %s already committed in tx %s", cycle_id, existing.tx_ref,
                )
                return existing.tx_ref
            raise AlreadyCommitted(
                f"Cycle {cycle_id} already committed to root {existing.merkle_root}",
                cycle_id=cycle_id,
                existing_tx_ref=existing.tx_ref,
            )

        attempt = 0
        while True:
            attempt += 1
            try:
                confirmed = self._ledger.find_commitment(root, cycle_id)
                if confirmed is not None:
                    logger.info(
                        "Root %s for cycle %s already confirmed in tx %s",
                        root_hex, cycle_id, confirmed,
                    )
                    return confirmed
                tx_ref = self._ledger.submit_root(root, cycle_id, self._timeout)
            except LedgerUnavailable as exc:
                if attempt >= self._retry.max_attempts:
                    raise LedgerUnavailable(
                        f"Ledger unavailable after {attempt} attempts: {exc}",
                        cycle_id=cycle_id,
                        attempts=attempt,
                    ) from exc
                delay = self._retry.delay_for(attempt)
                logger.warning(
                    "Ledger unavailable for cycle %s (attempt %d/%d), retrying in %.1fs: %s",
                    cycle_id, attempt, self._retry.max_attempts, delay, exc,
                )
                self._sleep(delay)
                continue

            # Logged before persistence so the reference survives a store failure.
            logger.info(
                "Published root %s for cycle %s in tx %s", root_hex, cycle_id, tx_ref,
            )
            return tx_ref
