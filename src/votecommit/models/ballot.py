"""Ballot record — one voter's selection(s) for one position in one cycle.

Ballots are owned by the vote store. They are created once when a vote
is submitted and never mutated afterwards. Selections are kept exactly
as submitted; canonicalisation (de-duplication and sorting) happens in
the leaf encoder so that the stored record stays a faithful copy of
what arrived.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


@dataclass(frozen=True)
class BallotRecord:
    """An immutable cast ballot."""
    voter_id: str
    selections: tuple[str, ...]
    position_id: str
    cycle_id: str

    @staticmethod
    def create(
        voter_id: str,
        selections: Iterable[str],
        position_id: str,
        cycle_id: str,
    ) -> BallotRecord:
        """Create a ballot, freezing the selection list into a tuple."""
        return BallotRecord(
            voter_id=voter_id,
            selections=tuple(selections),
            position_id=position_id,
            cycle_id=cycle_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "voter_id": self.voter_id,
            "selections": list(self.selections),
            "position_id": self.position_id,
            "cycle_id": self.cycle_id,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> BallotRecord:
        return BallotRecord.create(
            voter_id=data["voter_id"],
            selections=data["selections"],
            position_id=data["position_id"],
            cycle_id=data["cycle_id"],
        )
