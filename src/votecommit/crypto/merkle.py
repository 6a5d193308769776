"""Merkle tree and inclusion proofs for deterministic root computation.

Uses Keccak-256 as the hash function. Leaves are sorted before tree
construction and every sibling pair is sorted before hashing, so the
root depends only on the multiset of leaf hashes, never on the order
ballots were read from the store.

An odd node at the end of a level is promoted unchanged to the next
level. It is never paired with itself.

Interior nodes hash NODE_PREFIX + min + max, while leaves hash
LEAF_PREFIX + bytes, so no node digest doubles as a leaf digest. A
proof also records the leaf's canonical index and the tree's leaf
count. verify() rejects any proof whose shape differs from the path
that index takes through a tree of that many leaves, which rules out
shortened proofs that start part way up the tree.

This module works with pre-hashed leaf values (see votecommit.crypto.leaf).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from eth_utils import decode_hex, encode_hex, keccak

from votecommit.crypto.leaf import DIGEST_SIZE, NODE_PREFIX
from votecommit.errors import EmptyLeafSet


class SiblingPosition(str, enum.Enum):
    """Where the sibling sat relative to the proven node."""
    LEFT = "left"
    RIGHT = "right"
    NONE = "none"  # node was promoted unpaired at this level


@dataclass(frozen=True)
class ProofStep:
    sibling: Optional[bytes]
    position: SiblingPosition


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf."""
    leaf_hash: bytes
    steps: tuple[ProofStep, ...]
    root: bytes
    leaf_index: int
    leaf_count: int

    @property
    def siblings(self) -> list[bytes]:
        """Sibling digests in bottom-up order, promoted levels omitted."""
        return [s.sibling for s in self.steps if s.sibling is not None]

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the audit export format (hex digests)."""
        return {
            "leaf": encode_hex(self.leaf_hash),
            "siblings": [encode_hex(s) for s in self.siblings],
            "positions": [s.position.value for s in self.steps],
            "root": encode_hex(self.root),
            "leaf_index": self.leaf_index,
            "leaf_count": self.leaf_count,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MerkleProof:
        """Parse an exported proof.

        Raises ValueError if a digest is malformed or the sibling list
        does not match the recorded positions.
        """
        siblings = [_digest(h) for h in data["siblings"]]
        positions = [SiblingPosition(p) for p in data["positions"]]
        paired = [p for p in positions if p is not SiblingPosition.NONE]
        if len(paired) != len(siblings):
            raise ValueError(
                f"Proof lists {len(siblings)} siblings for "
                f"{len(paired)} paired levels"
            )
        remaining = iter(siblings)
        steps = tuple(
            ProofStep(
                sibling=None if p is SiblingPosition.NONE else next(remaining),
                position=p,
            )
            for p in positions
        )
        return MerkleProof(
            leaf_hash=_digest(data["leaf"]),
            steps=steps,
            root=_digest(data["root"]),
            leaf_index=int(data["leaf_index"]),
            leaf_count=int(data["leaf_count"]),
        )


class MerkleTree:
    """An immutable, leveled Merkle tree.

    Usage:
        tree = MerkleTree.build([leaf_a, leaf_b, leaf_c])
        root = tree.root
        proof = tree.prove(tree.index_of(leaf_b))
        assert verify(leaf_b, proof, root)
    """

    def __init__(self, levels: list[tuple[bytes, ...]]) -> None:
        self._levels = levels

    @classmethod
    def build(cls, leaves: Sequence[bytes]) -> MerkleTree:
        """Build the tree over a multiset of 32-byte leaf hashes.

        Raises EmptyLeafSet for zero leaves and ValueError for a
        digest of the wrong size.
        """
        if not leaves:
            raise EmptyLeafSet("Cannot build a Merkle tree over zero leaves")
        for leaf in leaves:
            _check_size(leaf)

        # Sort leaves for canonical ordering
        current: tuple[bytes, ...] = tuple(sorted(leaves))
        levels = [current]
        while len(current) > 1:
            next_level: list[bytes] = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    next_level.append(hash_pair(current[i], current[i + 1]))
                else:
                    next_level.append(current[i])  # promote
            current = tuple(next_level)
            levels.append(current)
        return cls(levels)

    @property
    def root(self) -> bytes:
        return self._levels[-1][0]

    @property
    def leaves(self) -> tuple[bytes, ...]:
        """Leaf hashes in canonical (sorted) order."""
        return self._levels[0]

    @property
    def levels(self) -> tuple[tuple[bytes, ...], ...]:
        return tuple(self._levels)

    @property
    def leaf_count(self) -> int:
        return len(self._levels[0])

    def index_of(self, leaf_hash: bytes) -> Optional[int]:
        """Canonical index of a leaf, or None if it is not in the tree."""
        try:
            return self._levels[0].index(leaf_hash)
        except ValueError:
            return None

    def prove(self, leaf_index: int) -> MerkleProof:
        """Generate an inclusion proof for the leaf at a canonical index.

        Raises IndexError if the index is out of range.
        """
        if not 0 <= leaf_index < self.leaf_count:
            raise IndexError(
                f"Leaf index {leaf_index} out of range for {self.leaf_count} leaves"
            )

        steps: list[ProofStep] = []
        idx = leaf_index
        for level in self._levels[:-1]:
            if idx % 2 == 0:
                if idx + 1 < len(level):
                    steps.append(ProofStep(level[idx + 1], SiblingPosition.RIGHT))
                else:
                    steps.append(ProofStep(None, SiblingPosition.NONE))
            else:
                steps.append(ProofStep(level[idx - 1], SiblingPosition.LEFT))
            idx //= 2

        return MerkleProof(
            leaf_hash=self._levels[0][leaf_index],
            steps=tuple(steps),
            root=self.root,
            leaf_index=leaf_index,
            leaf_count=self.leaf_count,
        )


def verify(
    leaf_hash: bytes,
    proof: MerkleProof,
    root: bytes,
    leaf_count: Optional[int] = None,
) -> bool:
    """Check that leaf_hash and proof reconstruct root exactly.

    leaf_count is the number of leaves the root was committed over. It
    defaults to the count the proof claims; pass the committed count
    when one is on record so a proof cannot choose its own tree shape.

    Never raises on malformed digests; they simply fail verification.
    """
    if len(leaf_hash) != DIGEST_SIZE or len(root) != DIGEST_SIZE:
        return False
    count = proof.leaf_count if leaf_count is None else leaf_count
    if proof.leaf_count != count or not 0 <= proof.leaf_index < count:
        return False
    if [s.position for s in proof.steps] != path_shape(proof.leaf_index, count):
        return False

    current = leaf_hash
    for step in proof.steps:
        if step.position is SiblingPosition.NONE:
            if step.sibling is not None:
                return False
            continue
        if step.sibling is None or len(step.sibling) != DIGEST_SIZE:
            return False
        current = hash_pair(current, step.sibling)
    return current == root


def path_shape(leaf_index: int, leaf_count: int) -> list[SiblingPosition]:
    """Sibling positions on the path from a leaf to the root."""
    shape: list[SiblingPosition] = []
    idx, size = leaf_index, leaf_count
    while size > 1:
        if idx % 2 == 1:
            shape.append(SiblingPosition.LEFT)
        elif idx + 1 < size:
            shape.append(SiblingPosition.RIGHT)
        else:
            shape.append(SiblingPosition.NONE)
        idx //= 2
        size = (size + 1) // 2
    return shape


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Hash two sibling digests in byte order, independent of side."""
    if a <= b:
        return keccak(NODE_PREFIX + a + b)
    return keccak(NODE_PREFIX + b + a)


def to_hex(digest: bytes) -> str:
    return encode_hex(digest)


def from_hex(value: str) -> bytes:
    """Parse a 0x-prefixed (or bare) hex digest of exactly 32 bytes."""
    return _digest(value)


def _digest(value: str) -> bytes:
    raw = decode_hex(value)
    _check_size(raw)
    return raw


def _check_size(digest: bytes) -> None:
    if not isinstance(digest, bytes) or len(digest) != DIGEST_SIZE:
        raise ValueError(
            f"Expected a {DIGEST_SIZE}-byte digest, got {digest!r}"
        )
