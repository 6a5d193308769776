"""Core data models for the vote commitment subsystem."""

from votecommit.models.ballot import BallotRecord
from votecommit.models.commitment import CommitmentRecord, LeafSchema

__all__ = [
    "BallotRecord",
    "CommitmentRecord",
    "LeafSchema",
]
