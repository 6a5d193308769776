"""Tests for Merkle tree construction and inclusion proofs."""

import itertools

import pytest
from eth_utils import keccak

from votecommit.crypto.merkle import (
    MerkleProof,
    MerkleTree,
    ProofStep,
    SiblingPosition,
    from_hex,
    hash_pair,
    path_shape,
    to_hex,
    verify,
)
from votecommit.errors import EmptyLeafSet


def _leaf(n: int) -> bytes:
    """Generate a deterministic test leaf hash."""
    return keccak(f"leaf-{n}".encode("utf-8"))


class TestMerkleTree:
    def test_empty_tree_rejected(self) -> None:
        with pytest.raises(EmptyLeafSet):
            MerkleTree.build([])

    def test_single_leaf_is_root(self) -> None:
        tree = MerkleTree.build([_leaf(1)])
        assert tree.root == _leaf(1)
        assert tree.leaf_count == 1

    def test_two_leaves(self) -> None:
        tree = MerkleTree.build([_leaf(1), _leaf(2)])
        lo, hi = sorted([_leaf(1), _leaf(2)])
        assert tree.root == keccak(b"\x01" + lo + hi)

    def test_odd_node_promoted_not_duplicated(self) -> None:
        leaves = sorted([_leaf(1), _leaf(2), _leaf(3)])
        tree = MerkleTree.build(leaves)
        assert tree.levels[1] == (hash_pair(leaves[0], leaves[1]), leaves[2])
        assert tree.root == hash_pair(hash_pair(leaves[0], leaves[1]), leaves[2])

    def test_deterministic_across_permutations(self) -> None:
        """Same leaves produce same root regardless of insertion order."""
        leaves = [_leaf(i) for i in range(5)]
        roots = {MerkleTree.build(list(p)).root for p in itertools.permutations(leaves)}
        assert len(roots) == 1

    def test_duplicate_leaves_are_a_multiset(self) -> None:
        once = MerkleTree.build([_leaf(1), _leaf(2)])
        twice = MerkleTree.build([_leaf(1), _leaf(1), _leaf(2)])
        assert twice.leaf_count == 3
        assert once.root != twice.root

    def test_different_leaves_different_roots(self) -> None:
        assert MerkleTree.build([_leaf(1)]).root != MerkleTree.build([_leaf(2)]).root

    def test_wrong_digest_size_rejected(self) -> None:
        with pytest.raises(ValueError):
            MerkleTree.build([b"short"])

    def test_hash_pair_is_symmetric(self) -> None:
        assert hash_pair(_leaf(1), _leaf(2)) == hash_pair(_leaf(2), _leaf(1))

    def test_index_of_missing_leaf(self) -> None:
        tree = MerkleTree.build([_leaf(1)])
        assert tree.index_of(_leaf(9)) is None


class TestInclusionProof:
    @pytest.mark.parametrize("count", [1, 2, 3, 4, 5, 7, 8, 9, 16, 17])
    def test_every_leaf_verifies(self, count: int) -> None:
        leaves = [_leaf(i) for i in range(count)]
        tree = MerkleTree.build(leaves)
        for leaf in leaves:
            proof = tree.prove(tree.index_of(leaf))
            assert proof.leaf_hash == leaf
            assert proof.root == tree.root
            assert verify(leaf, proof, tree.root)

    def test_promoted_level_recorded(self) -> None:
        tree = MerkleTree.build([_leaf(1), _leaf(2), _leaf(3)])
        proof = tree.prove(2)
        assert [s.position for s in proof.steps] == [
            SiblingPosition.NONE,
            SiblingPosition.LEFT,
        ]
        assert proof.steps[0].sibling is None
        assert len(proof.siblings) == 1

    def test_single_leaf_proof_is_empty(self) -> None:
        tree = MerkleTree.build([_leaf(1)])
        proof = tree.prove(0)
        assert proof.steps == ()
        assert verify(_leaf(1), proof, tree.root)

    def test_index_out_of_range(self) -> None:
        tree = MerkleTree.build([_leaf(1), _leaf(2)])
        with pytest.raises(IndexError):
            tree.prove(2)

    def test_foreign_leaf_fails(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        proof = tree.prove(0)
        assert not verify(_leaf(99), proof, tree.root)

    def test_tampered_sibling_fails(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        proof = tree.prove(1)
        first = proof.steps[0]
        forged = bytes([first.sibling[0] ^ 1]) + first.sibling[1:]
        tampered = MerkleProof(
            leaf_hash=proof.leaf_hash,
            steps=(ProofStep(forged, first.position),) + proof.steps[1:],
            root=proof.root,
            leaf_index=proof.leaf_index,
            leaf_count=proof.leaf_count,
        )
        assert not verify(proof.leaf_hash, tampered, tree.root)

    def test_proof_from_other_set_fails(self) -> None:
        original = MerkleTree.build([_leaf(i) for i in range(4)])
        other = MerkleTree.build([_leaf(i) for i in range(3)] + [_leaf(50)])
        proof = other.prove(other.index_of(_leaf(50)))
        assert not verify(_leaf(50), proof, original.root)

    def test_malformed_root_fails_without_raising(self) -> None:
        tree = MerkleTree.build([_leaf(1), _leaf(2)])
        assert not verify(_leaf(1), tree.prove(0), b"\x00" * 5)

    def test_root_is_not_a_leaf(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        bare = MerkleProof(tree.root, (), tree.root, leaf_index=0, leaf_count=4)
        assert not verify(tree.root, bare, tree.root)
        # A proof that claims a one-leaf tree is refused against the real count.
        single = MerkleProof(tree.root, (), tree.root, leaf_index=0, leaf_count=1)
        assert not verify(tree.root, single, tree.root, leaf_count=tree.leaf_count)

    def test_interior_node_with_shortened_proof_fails(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        interior = tree.levels[1][0]
        assert interior not in tree.leaves
        full = tree.prove(0)
        shortened = MerkleProof(
            interior, full.steps[1:], tree.root,
            leaf_index=0, leaf_count=full.leaf_count,
        )
        assert not verify(interior, shortened, tree.root)

    def test_interior_node_posing_as_promoted_leaf_fails(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        interior = tree.levels[1][1]
        steps = (
            ProofStep(None, SiblingPosition.NONE),
            ProofStep(tree.levels[1][0], SiblingPosition.LEFT),
        )
        # Consistent with a three-leaf tree, so only the committed count catches it.
        forged = MerkleProof(interior, steps, tree.root, leaf_index=2, leaf_count=3)
        assert not verify(interior, forged, tree.root, leaf_count=tree.leaf_count)

    def test_positions_must_match_index(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        proof = tree.prove(1)
        relabelled = MerkleProof(
            proof.leaf_hash, proof.steps, proof.root,
            leaf_index=0, leaf_count=proof.leaf_count,
        )
        assert not verify(proof.leaf_hash, relabelled, tree.root)

    def test_node_hash_is_domain_separated(self) -> None:
        lo, hi = sorted([_leaf(1), _leaf(2)])
        assert hash_pair(lo, hi) != keccak(lo + hi)


class TestPathShape:
    def test_matches_generated_proofs(self) -> None:
        for count in range(1, 12):
            tree = MerkleTree.build([_leaf(i) for i in range(count)])
            for index in range(count):
                expected = [s.position for s in tree.prove(index).steps]
                assert path_shape(index, count) == expected


class TestProofExport:
    def test_export_format(self) -> None:
        tree = MerkleTree.build([_leaf(1), _leaf(2), _leaf(3)])
        data = tree.prove(2).to_dict()
        assert data["positions"] == ["none", "left"]
        assert len(data["siblings"]) == 1
        assert data["root"] == to_hex(tree.root)
        assert data["leaf_index"] == 2
        assert data["leaf_count"] == 3
        assert all(s.startswith("0x") and len(s) == 66 for s in data["siblings"])

    def test_parsed_export_verifies(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(6)])
        parsed = MerkleProof.from_dict(tree.prove(5).to_dict())
        assert verify(tree.leaves[5], parsed, tree.root)

    def test_sibling_count_mismatch_rejected(self) -> None:
        tree = MerkleTree.build([_leaf(i) for i in range(4)])
        data = tree.prove(0).to_dict()
        data["siblings"] = data["siblings"][:-1]
        with pytest.raises(ValueError, match="siblings"):
            MerkleProof.from_dict(data)

    def test_from_hex_requires_32_bytes(self) -> None:
        assert from_hex(to_hex(_leaf(1))) == _leaf(1)
        with pytest.raises(ValueError):
            from_hex("0xabcd")
