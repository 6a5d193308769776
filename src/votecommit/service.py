"""Commitment service — unified facade for the vote commitment pipeline.

This is the primary interface for programmatic access. It orchestrates:
- Ballot intake (validated against the leaf encoder before storage)
- Cycle commitment (close → snapshot → encode → build → publish → record)
- Proof export for audit and dispute resolution
- Proof verification against a committed or supplied root
- Reconciliation after a publish whose persistence failed

All operations return a ServiceResult. Component failures are raised as
CommitmentError subclasses and converted here, with the cycle id and
pipeline stage in the result data. A failed build never leaves a tree
reachable as if it were valid.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from votecommit.config import CommitmentConfig
from votecommit.crypto.anchor import Ledger
from votecommit.crypto.leaf import leaf_hash
from votecommit.crypto.merkle import MerkleProof, MerkleTree, from_hex, to_hex, verify
from votecommit.crypto.publisher import RootPublisher
from votecommit.errors import CommitmentError, EmptyLeafSet
from votecommit.models.ballot import BallotRecord
from votecommit.models.commitment import LeafSchema
from votecommit.persistence.recorder import CommitmentRecorder
from votecommit.persistence.vote_store import VoteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class CommitmentService:
    """Vote commitment facade.

    Usage:
        service = CommitmentService(VoteStore(), InMemoryLedger())
        service.add_ballot(BallotRecord.create("V1", ["C2"], "P1", "2024"))
        result = service.commit_cycle("2024")
        proof = service.export_proof("2024", ballot)
    """

    def __init__(
        self,
        store: VoteStore,
        ledger: Ledger,
        config: Optional[CommitmentConfig] = None,
        recorder: Optional[CommitmentRecorder] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._config = config or CommitmentConfig()
        self._recorder = recorder or CommitmentRecorder(store)
        self._publisher = RootPublisher(
            ledger,
            store,
            retry=self._config.retry,
            timeout=self._config.confirmation_timeout,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Ballot intake
    # ------------------------------------------------------------------

    def add_ballot(self, ballot: BallotRecord) -> ServiceResult:
        """Validate and store a ballot."""
        try:
            digest = leaf_hash(ballot, self._config.leaf_schema)
            self._store.add_ballot(ballot)
        except CommitmentError as exc:
            return _failure(exc)
        return ServiceResult(
            success=True,
            data={"cycle_id": ballot.cycle_id, "leaf": to_hex(digest)},
        )

    # ------------------------------------------------------------------
    # Commitment pipeline
    # ------------------------------------------------------------------

    def build_tree(
        self,
        cycle_id: str,
        schema: Optional[LeafSchema] = None,
    ) -> MerkleTree:
        """Build the tree over a cycle's current ballot snapshot.

        Raises MalformedRecord if any ballot cannot be encoded and
        EmptyLeafSet if the cycle has no ballots.
        """
        schema = schema or self._config.leaf_schema
        snapshot = self._store.ballots_for_cycle(cycle_id)
        leaves = [leaf_hash(ballot, schema) for ballot in snapshot]
        if not leaves:
            raise EmptyLeafSet(f"Cycle {cycle_id} has no ballots", cycle_id=cycle_id)
        return MerkleTree.build(leaves)

    def commit_cycle(self, cycle_id: str) -> ServiceResult:
        """Close a cycle and commit its ballots to the ledger.

        Re-running a committed cycle returns the existing reference
        without a second ledger transaction.
        """
        schema = self._config.leaf_schema
        existing = self._store.get_commitment(cycle_id)
        if existing is not None:
            schema = existing.leaf_schema

        try:
            if not self._store.ballots_for_cycle(cycle_id):
                raise EmptyLeafSet(f"Cycle {cycle_id} has no ballots", cycle_id=cycle_id)
            self._store.close_cycle(cycle_id)
            tree = self.build_tree(cycle_id, schema)
            logger.info(
                "Built tree for cycle %s: %d leaves, root %s",
                cycle_id, tree.leaf_count, to_hex(tree.root),
            )
            tx_ref = self._publisher.publish(tree.root, cycle_id)
            record = self._recorder.record(
                cycle_id, tree.root, tx_ref, tree.leaf_count, schema,
            )
        except CommitmentError as exc:
            if exc.cycle_id is None:
                exc.cycle_id = cycle_id
            logger.error("Commit of cycle %s failed at %s: %s", cycle_id, exc.stage, exc)
            return _failure(exc)

        return ServiceResult(
            success=True,
            data={
                **record.to_dict(),
                "already_committed": existing is not None,
            },
        )

    def reconcile(self, cycle_id: str) -> ServiceResult:
        """Record a journaled, already-confirmed commitment in the store."""
        try:
            record = self._recorder.recover(cycle_id)
        except LookupError as exc:
            return ServiceResult(success=False, errors=[str(exc)], data={"cycle_id": cycle_id})
        except CommitmentError as exc:
            return _failure(exc)
        return ServiceResult(success=True, data=record.to_dict())

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def export_proof(self, cycle_id: str, ballot: BallotRecord) -> ServiceResult:
        """Inclusion proof for a ballot against the cycle's committed root."""
        record = self._store.get_commitment(cycle_id)
        if record is None:
            return ServiceResult(
                success=False,
                errors=[f"Cycle {cycle_id} has not been committed"],
                data={"cycle_id": cycle_id},
            )

        try:
            tree = self.build_tree(cycle_id, record.leaf_schema)
            digest = leaf_hash(ballot, record.leaf_schema)
        except CommitmentError as exc:
            return _failure(exc)

        if to_hex(tree.root) != record.merkle_root:
            logger.error(
                "Ballots for cycle %s no longer match committed root %s (rebuilt %s)",
                cycle_id, record.merkle_root, to_hex(tree.root),
            )
            return ServiceResult(
                success=False,
                errors=[f"Stored ballots for cycle {cycle_id} do not match the committed root"],
                data={"cycle_id": cycle_id, "stage": "prove"},
            )

        index = tree.index_of(digest)
        if index is None:
            return ServiceResult(
                success=False,
                errors=[f"Ballot is not included in cycle {cycle_id}"],
                data={"cycle_id": cycle_id, "leaf": to_hex(digest)},
            )

        proof = tree.prove(index)
        return ServiceResult(
            success=True,
            data={
                "cycle_id": cycle_id,
                "tx_ref": record.tx_ref,
                "leaf_schema": record.leaf_schema.value,
                "proof": proof.to_dict(),
            },
        )

    def verify_proof(
        self,
        ballot: BallotRecord,
        proof_data: dict[str, Any],
        root: Optional[str] = None,
        cycle_id: Optional[str] = None,
        schema: Optional[LeafSchema] = None,
    ) -> ServiceResult:
        """Check a ballot and exported proof against a root.

        The root is taken from the argument, else from the cycle's
        commitment record, else from the proof itself. When the cycle
        has a commitment record its leaf count fixes the proof shape.
        """
        record = self._store.get_commitment(cycle_id) if cycle_id else None
        if cycle_id and record is None and root is None:
            return ServiceResult(
                success=False,
                errors=[f"Cycle {cycle_id} has not been committed"],
                data={"cycle_id": cycle_id},
            )
        schema = schema or (record.leaf_schema if record else self._config.leaf_schema)

        try:
            proof = MerkleProof.from_dict(proof_data)
            if root is not None:
                expected = from_hex(root)
            elif record is not None:
                expected = from_hex(record.merkle_root)
            else:
                expected = proof.root
            digest = leaf_hash(ballot, schema)
        except (KeyError, ValueError) as exc:
            return ServiceResult(success=False, errors=[f"Invalid proof input: {exc}"])

        committed_count = record.leaf_count if record is not None else None
        valid = verify(digest, proof, expected, leaf_count=committed_count)
        return ServiceResult(
            success=valid,
            errors=[] if valid else ["Proof does not verify against the root"],
            data={"valid": valid, "leaf": to_hex(digest), "root": to_hex(expected)},
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        cycles: dict[str, Any] = {}
        for cycle_id in self._store.cycles():
            record = self._store.get_commitment(cycle_id)
            cycles[cycle_id] = {
                "ballots": len(self._store.ballots_for_cycle(cycle_id)),
                "closed": self._store.is_closed(cycle_id),
                "committed": record is not None,
                "merkle_root": record.merkle_root if record else None,
                "tx_ref": record.tx_ref if record else None,
            }
        return {"leaf_schema": self._config.leaf_schema.value, "cycles": cycles}


def _failure(exc: CommitmentError) -> ServiceResult:
    return ServiceResult(
        success=False,
        errors=[str(exc)],
        data={k: v for k, v in exc.context().items() if v is not None},
    )
