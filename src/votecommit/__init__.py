"""Vote commitment — Merkle roots over election ballots, anchored on a ledger."""

__version__ = "0.1.0"
