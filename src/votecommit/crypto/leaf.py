"""Leaf encoder — canonical bytes and leaf hashes for ballot records.

Canonical form: compact JSON with sorted keys, Unicode preserved, UTF-8
encoded, restricted to the fields named by the leaf schema. Selections
are de-duplicated and sorted lexicographically, so two ballots with the
same semantic content always produce identical bytes regardless of the
order the options were picked in.

Leaf hashes are Keccak-256, the same function the ledger chain uses,
over the canonical bytes prefixed with LEAF_PREFIX. Interior nodes use
NODE_PREFIX (see votecommit.crypto.merkle), so a node digest can never
be passed off as a leaf digest.
"""

from __future__ import annotations

import json
from typing import Any

from eth_utils import keccak

from votecommit.errors import MalformedRecord
from votecommit.models.ballot import BallotRecord
from votecommit.models.commitment import LeafSchema

DIGEST_SIZE = 32
LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

_IDENTIFIER_FIELDS = ("voter_id", "position_id", "cycle_id")


def encode(record: BallotRecord, schema: LeafSchema = LeafSchema.BALLOT) -> bytes:
    """Encode a ballot into its canonical leaf bytes.

    Raises MalformedRecord if an identifier is empty or the ballot
    carries no selection.
    """
    _validate(record)
    canonical: dict[str, Any] = {}
    for name in schema.fields:
        if name == "selections":
            canonical[name] = sorted(set(record.selections))
        else:
            canonical[name] = getattr(record, name)
    return json.dumps(
        canonical,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    ).encode("utf-8")


def hash_leaf(data: bytes) -> bytes:
    """Keccak-256 of LEAF_PREFIX + canonical leaf bytes."""
    return keccak(LEAF_PREFIX + data)


def leaf_hash(record: BallotRecord, schema: LeafSchema = LeafSchema.BALLOT) -> bytes:
    """Shorthand for hash_leaf(encode(record, schema))."""
    return hash_leaf(encode(record, schema))


def _validate(record: BallotRecord) -> None:
    for name in _IDENTIFIER_FIELDS:
        value = getattr(record, name)
        if not isinstance(value, str) or not value.strip():
            raise MalformedRecord(
                f"Ballot field {name!r} must be a non-empty string "
                f"(voter={record.voter_id!r}, position={record.position_id!r})",
                cycle_id=record.cycle_id if isinstance(record.cycle_id, str) else None,
            )
    if not record.selections:
        raise MalformedRecord(
            f"Ballot for voter {record.voter_id!r} on position "
            f"{record.position_id!r} has no selection",
            cycle_id=record.cycle_id,
        )
    for selection in record.selections:
        if not isinstance(selection, str) or not selection.strip():
            raise MalformedRecord(
                f"Ballot for voter {record.voter_id!r} on position "
                f"{record.position_id!r} has an empty selection identifier",
                cycle_id=record.cycle_id,
            )
