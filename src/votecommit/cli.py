"""votecommit CLI — command-line interface for the commitment pipeline.

Usage:
    python -m votecommit.cli add-ballot --cycle 2024 --voter V1 --position P1 --selection C2
    python -m votecommit.cli commit --cycle 2024
    python -m votecommit.cli prove --cycle 2024 --voter V1 --position P1 --selection C2 --out proof.json
    python -m votecommit.cli verify --proof proof.json --cycle 2024 --voter V1 --position P1 --selection C2
    python -m votecommit.cli reconcile --cycle 2024
    python -m votecommit.cli status

The Ethereum ledger reads VOTECOMMIT_RPC_URL and PRIVATE_KEY from the
environment or .env. `--ledger memory` runs against a throwaway local
ledger. A `commit` in that mode is a dry run: it reports the root but
leaves the cycle open and records no commitment.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from votecommit.config import DEFAULT_CONFIG_DIR, ROOT, CommitmentConfig
from votecommit.crypto.anchor import EthereumLedger, InMemoryLedger, Ledger
from votecommit.models.ballot import BallotRecord
from votecommit.models.commitment import LeafSchema
from votecommit.persistence.recorder import CommitmentRecorder
from votecommit.persistence.vote_store import VoteStore
from votecommit.service import CommitmentService, ServiceResult


DEFAULT_DATA = ROOT / "data"
LEDGER_JOURNAL = "ledger_journal.jsonl"
COMMITMENT_JOURNAL = "commitment_journal.jsonl"


def _make_service(
    args: argparse.Namespace, dry_run: bool = False,
) -> Optional[CommitmentService]:
    """Create a CommitmentService with durable persistence.

    With dry_run the service works on a detached copy of the store, so
    nothing it closes or commits is written under --data.
    """
    config = CommitmentConfig.from_config_dir(args.config)
    store = VoteStore(storage_dir=args.data)
    ledger: Ledger
    if args.ledger == "memory":
        ledger = InMemoryLedger()
    else:
        if not config.ledger.is_configured:
            print(
                "ERROR: Missing VOTECOMMIT_RPC_URL and/or PRIVATE_KEY in environment or .env",
                file=sys.stderr,
            )
            return None
        ledger = EthereumLedger(config.ledger, journal_path=args.data / LEDGER_JOURNAL)
    if dry_run:
        store = store.detached()
        recorder = CommitmentRecorder(store)
    else:
        recorder = CommitmentRecorder(store, journal_path=args.data / COMMITMENT_JOURNAL)
    return CommitmentService(store, ledger, config=config, recorder=recorder)


def _ballot(args: argparse.Namespace) -> BallotRecord:
    return BallotRecord.create(
        voter_id=args.voter,
        selections=args.selection,
        position_id=args.position,
        cycle_id=args.cycle,
    )


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    if result.data:
        print(json.dumps(result.data, indent=2), file=sys.stderr)
    return 1


def cmd_add_ballot(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if service is None:
        return 1
    return _report(service.add_ballot(_ballot(args)))


def cmd_commit(args: argparse.Namespace) -> int:
    dry_run = args.ledger == "memory"
    service = _make_service(args, dry_run=dry_run)
    if service is None:
        return 1
    result = service.commit_cycle(args.cycle)
    if dry_run:
        print("Dry run: nothing was anchored or recorded", file=sys.stderr)
        result.data["dry_run"] = True
    return _report(result)


def cmd_prove(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if service is None:
        return 1
    result = service.export_proof(args.cycle, _ballot(args))
    if result.success and args.out:
        args.out.write_text(json.dumps(result.data, indent=2), encoding="utf-8")
        print(f"Proof written to {args.out}")
        return 0
    return _report(result)


def cmd_verify(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if service is None:
        return 1
    exported = json.loads(args.proof.read_text(encoding="utf-8"))
    proof_data = exported.get("proof", exported)
    schema = LeafSchema(args.schema) if args.schema else None
    if schema is None and "leaf_schema" in exported:
        schema = LeafSchema(exported["leaf_schema"])
    result = service.verify_proof(
        _ballot(args),
        proof_data,
        root=args.root,
        cycle_id=None if args.root else args.cycle,
        schema=schema,
    )
    return _report(result)


def cmd_reconcile(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if service is None:
        return 1
    return _report(service.reconcile(args.cycle))


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if service is None:
        return 1
    print(json.dumps(service.status(), indent=2))
    return 0


def _add_ballot_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--cycle", required=True, help="Election cycle ID (e.g. school year)")
    p.add_argument("--voter", required=True, help="Voter ID")
    p.add_argument("--position", required=True, help="Position ID")
    p.add_argument(
        "--selection", required=True, action="append",
        help="Selected option ID (repeat for multi-select positions)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="votecommit",
        description="Commit election ballots to a Merkle root anchored on a ledger",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory (default: data/)",
    )
    parser.add_argument(
        "--ledger",
        choices=["ethereum", "memory"],
        default="ethereum",
        help="Ledger backend (default: ethereum; memory is a dry run)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # add-ballot
    _add_ballot_args(sub.add_parser("add-ballot", help="Record a cast ballot"))

    # commit
    p_commit = sub.add_parser("commit", help="Close a cycle and anchor its Merkle root")
    p_commit.add_argument("--cycle", required=True, help="Election cycle ID")

    # prove
    p_prove = sub.add_parser("prove", help="Export an inclusion proof for a ballot")
    _add_ballot_args(p_prove)
    p_prove.add_argument("--out", type=Path, help="Write the proof JSON to this file")

    # verify
    p_verify = sub.add_parser("verify", help="Verify a ballot against an exported proof")
    _add_ballot_args(p_verify)
    p_verify.add_argument("--proof", type=Path, required=True, help="Proof JSON file")
    p_verify.add_argument("--root", help="Root to verify against (default: committed root)")
    p_verify.add_argument(
        "--schema", choices=[s.value for s in LeafSchema],
        help="Leaf schema (default: from proof file or commitment)",
    )

    # reconcile
    p_rec = sub.add_parser(
        "reconcile", help="Record a confirmed commitment from the recovery journal",
    )
    p_rec.add_argument("--cycle", required=True, help="Election cycle ID")

    # status
    sub.add_parser("status", help="Show cycles and commitments")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "add-ballot": cmd_add_ballot,
        "commit": cmd_commit,
        "prove": cmd_prove,
        "verify": cmd_verify,
        "reconcile": cmd_reconcile,
        "status": cmd_status,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
