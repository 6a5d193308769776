"""Tests for the root publisher — retry, idempotency, one root per cycle."""

import pytest
from eth_utils import encode_hex, keccak

from votecommit.config import RetryPolicy
from votecommit.crypto.anchor import InMemoryLedger
from votecommit.crypto.publisher import RootPublisher
from votecommit.errors import AlreadyCommitted, LedgerRejected, LedgerUnavailable
from votecommit.models.commitment import CommitmentRecord, LeafSchema
from votecommit.persistence.vote_store import VoteStore

ROOT = keccak(b"root-2024")
OTHER_ROOT = keccak(b"another-root")


@pytest.fixture
def store() -> VoteStore:
    return VoteStore()


def _publisher(ledger: InMemoryLedger, store: VoteStore, delays: list[float]) -> RootPublisher:
    return RootPublisher(
        ledger,
        store,
        retry=RetryPolicy(max_attempts=3, initial_delay=1.0, multiplier=2.0, max_delay=10.0),
        timeout=5,
        sleep=delays.append,
    )


def _commitment(root: bytes, tx_ref: str) -> CommitmentRecord:
    return CommitmentRecord(
        cycle_id="2024",
        merkle_root=encode_hex(root),
        tx_ref=tx_ref,
        leaf_count=3,
        leaf_schema=LeafSchema.BALLOT,
        created_utc="2024-06-01T00:00:00Z",
    )


class TestPublish:
    def test_publish_returns_reference(self, store: VoteStore) -> None:
        ledger = InMemoryLedger()
        tx_ref = _publisher(ledger, store, []).publish(ROOT, "2024")
        assert ledger.find_commitment(ROOT, "2024") == tx_ref
        assert ledger.submit_calls == 1

    def test_publish_twice_one_transaction(self, store: VoteStore) -> None:
        ledger = InMemoryLedger()
        publisher = _publisher(ledger, store, [])
        first = publisher.publish(ROOT, "2024")
        second = publisher.publish(ROOT, "2024")
        assert first == second
        assert len(ledger.transactions) == 1

    def test_recorded_commitment_short_circuits(self, store: VoteStore) -> None:
        ledger = InMemoryLedger()
        store.insert_commitment(_commitment(ROOT, "0xabc"))
        assert _publisher(ledger, store, []).publish(ROOT, "2024") == "0xabc"
        assert ledger.submit_calls == 0

    def test_different_root_already_committed(self, store: VoteStore) -> None:
        ledger = InMemoryLedger()
        store.insert_commitment(_commitment(OTHER_ROOT, "0xabc"))
        with pytest.raises(AlreadyCommitted) as exc_info:
            _publisher(ledger, store, []).publish(ROOT, "2024")
        assert exc_info.value.existing_tx_ref == "0xabc"
        assert ledger.submit_calls == 0

    def test_root_size_checked(self, store: VoteStore) -> None:
        with pytest.raises(ValueError):
            _publisher(InMemoryLedger(), store, []).publish(b"\x00" * 20, "2024")


class TestRetry:
    def test_transient_failures_retried_with_backoff(self, store: VoteStore) -> None:
        ledger = InMemoryLedger(fail_times=2)
        delays: list[float] = []
        tx_ref = _publisher(ledger, store, delays).publish(ROOT, "2024")
        assert tx_ref
        assert delays == [1.0, 2.0]
        assert ledger.submit_calls == 3

    def test_exhausted_retries_escalate(self, store: VoteStore) -> None:
        ledger = InMemoryLedger(fail_times=10)
        delays: list[float] = []
        with pytest.raises(LedgerUnavailable) as exc_info:
            _publisher(ledger, store, delays).publish(ROOT, "2024")
        assert exc_info.value.attempts == 3
        assert exc_info.value.cycle_id == "2024"
        assert ledger.submit_calls == 3
        assert len(delays) == 2

    def test_rejection_not_retried(self, store: VoteStore) -> None:
        ledger = InMemoryLedger(reject=True)
        delays: list[float] = []
        with pytest.raises(LedgerRejected):
            _publisher(ledger, store, delays).publish(ROOT, "2024")
        assert ledger.submit_calls == 1
        assert delays == []

    def test_lost_confirmation_not_resubmitted(self, store: VoteStore) -> None:
        """A retry re-checks the ledger before sending again."""
        ledger = InMemoryLedger(lose_confirmations=1)
        tx_ref = _publisher(ledger, store, []).publish(ROOT, "2024")
        assert ledger.submit_calls == 1
        assert len(ledger.transactions) == 1
        assert ledger.transactions[0]["tx_ref"] == tx_ref


class TestRetryPolicy:
    def test_delay_capped(self) -> None:
        policy = RetryPolicy(max_attempts=10, initial_delay=1.0, multiplier=3.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 3.0, 5.0, 5.0]

    def test_at_least_one_attempt(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
