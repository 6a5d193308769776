"""Commitment configuration.

Non-secret policy (retry schedule, confirmation timeout, leaf schema,
chain parameters) lives in config/commitment_policy.json. Secrets
(RPC endpoint, signing key, contract address) come from the process
environment, optionally populated from a .env file at the project root.

Environment variables:
    VOTECOMMIT_RPC_URL           Ethereum JSON-RPC endpoint.
    PRIVATE_KEY                  Hex-encoded signing key.
    VOTECOMMIT_CONTRACT_ADDRESS  Optional storeRoot(bytes32) contract.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from votecommit.models.commitment import LeafSchema

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_DIR = ROOT / "config"
POLICY_FILENAME = "commitment_policy.json"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient ledger failures."""
    max_attempts: int = 5
    initial_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


@dataclass(frozen=True)
class LedgerSettings:
    """Connection and transaction parameters for the Ethereum ledger."""
    rpc_url: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    contract_address: Optional[str] = None
    chain_id: int = 11155111  # Sepolia
    gas: int = 60_000
    gas_price_gwei: str = "2"
    explorer_tx_url: str = "https://sepolia.etherscan.io/tx/"

    @property
    def is_configured(self) -> bool:
        return bool(self.rpc_url and self.private_key)


@dataclass(frozen=True)
class CommitmentConfig:
    leaf_schema: LeafSchema = LeafSchema.BALLOT
    confirmation_timeout: float = 300.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        env: Optional[dict[str, str]] = None,
    ) -> CommitmentConfig:
        env = dict(os.environ) if env is None else env
        retry = data.get("retry", {})
        ledger = data.get("ledger", {})
        return cls(
            leaf_schema=LeafSchema(data.get("leaf_schema", LeafSchema.BALLOT.value)),
            confirmation_timeout=float(data.get("confirmation_timeout_seconds", 300)),
            retry=RetryPolicy(
                max_attempts=int(retry.get("max_attempts", 5)),
                initial_delay=float(retry.get("initial_delay_seconds", 2.0)),
                multiplier=float(retry.get("multiplier", 2.0)),
                max_delay=float(retry.get("max_delay_seconds", 60.0)),
            ),
            ledger=LedgerSettings(
                rpc_url=env.get("VOTECOMMIT_RPC_URL") or None,
                private_key=env.get("PRIVATE_KEY") or None,
                contract_address=env.get("VOTECOMMIT_CONTRACT_ADDRESS") or None,
                chain_id=int(ledger.get("chain_id", 11155111)),
                gas=int(ledger.get("gas", 60_000)),
                gas_price_gwei=str(ledger.get("gas_price_gwei", "2")),
                explorer_tx_url=ledger.get(
                    "explorer_tx_url", "https://sepolia.etherscan.io/tx/",
                ),
            ),
        )

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        env_file: Optional[Path] = None,
    ) -> CommitmentConfig:
        """Load policy JSON from config_dir and secrets from the environment.

        A missing policy file falls back to defaults, with a warning,
        which is what happens when the package is installed without its
        config/ directory. The .env file is read without overriding
        variables already set in the process.
        """
        env_path = env_file or ROOT / ".env"
        if env_path.exists():
            load_dotenv(env_path)
        else:
            logger.debug("No .env at %s; using process environment only", env_path)
        policy_path = config_dir / POLICY_FILENAME
        data: dict[str, Any] = {}
        if policy_path.exists():
            data = json.loads(policy_path.read_text(encoding="utf-8"))
        else:
            logger.warning("No policy file at %s; using default policy", policy_path)
        return cls.from_dict(data)
