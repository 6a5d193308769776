"""Cryptographic primitives — leaf encoding, Merkle trees, ledger anchoring."""

from votecommit.crypto.leaf import encode, hash_leaf, leaf_hash
from votecommit.crypto.merkle import MerkleProof, MerkleTree, verify
from votecommit.crypto.publisher import RootPublisher

__all__ = [
    "encode",
    "hash_leaf",
    "leaf_hash",
    "MerkleProof",
    "MerkleTree",
    "verify",
    "RootPublisher",
]
