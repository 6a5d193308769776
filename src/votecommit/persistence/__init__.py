"""Vote store and commitment persistence."""

from votecommit.persistence.recorder import CommitmentRecorder
from votecommit.persistence.vote_store import VoteStore

__all__ = ["CommitmentRecorder", "VoteStore"]
