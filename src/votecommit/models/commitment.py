"""Commitment record model.

Every closed election cycle produces exactly one commitment: the Merkle
root over its ballots, anchored on an external ledger. The record
written to the vote store links the root to the confirmed ledger
transaction so that an auditor can later check a ballot's inclusion
against the on-chain value.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class LeafSchema(str, enum.Enum):
    """Which ballot fields are committed into each leaf.

    The schema is recorded with every commitment; proofs must be
    produced and verified with the same schema the root was built with.
    """
    BALLOT = "ballot"  # voter, position, selections, cycle
    POSITION_SELECTION = "position_selection"  # position, selections, cycle

    @property
    def fields(self) -> tuple[str, ...]:
        if self is LeafSchema.BALLOT:
            return ("voter_id", "position_id", "selections", "cycle_id")
        return ("position_id", "selections", "cycle_id")


@dataclass(frozen=True)
class CommitmentRecord:
    """A single cycle commitment.

    Created once, after ledger confirmation. Immutable.
    """
    cycle_id: str
    merkle_root: str  # 0x-prefixed hex, 32 bytes
    tx_ref: str
    leaf_count: int
    leaf_schema: LeafSchema
    created_utc: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "merkle_root": self.merkle_root,
            "tx_ref": self.tx_ref,
            "leaf_count": self.leaf_count,
            "leaf_schema": self.leaf_schema.value,
            "created_utc": self.created_utc,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> CommitmentRecord:
        return CommitmentRecord(
            cycle_id=data["cycle_id"],
            merkle_root=data["merkle_root"],
            tx_ref=data["tx_ref"],
            leaf_count=int(data["leaf_count"]),
            leaf_schema=LeafSchema(data["leaf_schema"]),
            created_utc=data["created_utc"],
        )
