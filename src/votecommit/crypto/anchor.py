"""Ledger anchoring — embeds a cycle's Merkle root on an append-only ledger.

Blockchain anchoring is the act of embedding a hash into a blockchain
transaction, creating an immutable, timestamped, publicly verifiable
proof that the committed ballot set existed in that exact form at that
exact moment.

Two ledgers are provided behind the Ledger protocol:
- EthereumLedger: either calls storeRoot(bytes32) on a deployed contract
  or sends a 0-ETH self-transaction carrying the root in its data field.
- InMemoryLedger: a local append-only ledger for tests and dry runs.

Every Ethereum transaction hash is journaled before its receipt is
awaited. A submission interrupted by a timeout or crash can therefore
be re-checked against the chain instead of being sent a second time.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from eth_utils import encode_hex, keccak

from votecommit.config import LedgerSettings
from votecommit.crypto.leaf import DIGEST_SIZE
from votecommit.errors import LedgerRejected, LedgerUnavailable

logger = logging.getLogger(__name__)

STORE_ROOT_ABI = [
    {
        "inputs": [{"internalType": "bytes32", "name": "_root", "type": "bytes32"}],
        "name": "storeRoot",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@runtime_checkable
class Ledger(Protocol):
    """Contract for any append-only, externally verifiable ledger."""

    def submit_root(self, root: bytes, cycle_id: str, timeout: float) -> str:
        """Submit a 32-byte root and block until it is durably confirmed.

        Returns an opaque transaction reference. Raises LedgerUnavailable
        for transient failures and LedgerRejected for refusals.
        """
        ...

    def find_commitment(self, root: bytes, cycle_id: str) -> Optional[str]:
        """Return the reference of a confirmed commitment, if one exists."""
        ...


class InMemoryLedger:
    """Process-local ledger.

    fail_times: number of submissions that fail with LedgerUnavailable
        before anything reaches the ledger.
    lose_confirmations: number of submissions that are recorded on the
        ledger but whose confirmation is lost (the caller sees
        LedgerUnavailable).
    reject: every submission fails with LedgerRejected.
    """

    def __init__(
        self,
        fail_times: int = 0,
        lose_confirmations: int = 0,
        reject: bool = False,
    ) -> None:
        self._fail_times = fail_times
        self._lose_confirmations = lose_confirmations
        self._reject = reject
        self._transactions: list[dict[str, str]] = []
        self.submit_calls = 0

    def submit_root(self, root: bytes, cycle_id: str, timeout: float = 0.0) -> str:
        self.submit_calls += 1
        _check_root(root)
        if self._fail_times > 0:
            self._fail_times -= 1
            raise LedgerUnavailable("In-memory ledger unavailable", cycle_id=cycle_id)
        if self._reject:
            raise LedgerRejected("In-memory ledger rejected the root", cycle_id=cycle_id)

        seq = len(self._transactions)
        tx_ref = encode_hex(keccak(f"{cycle_id}|{root.hex()}|{seq}".encode("utf-8")))
        self._transactions.append(
            {"cycle_id": cycle_id, "root": encode_hex(root), "tx_ref": tx_ref}
        )
        if self._lose_confirmations > 0:
            self._lose_confirmations -= 1
            raise LedgerUnavailable(
                "Confirmation lost after submission", cycle_id=cycle_id,
            )
        return tx_ref

    def find_commitment(self, root: bytes, cycle_id: str) -> Optional[str]:
        root_hex = encode_hex(root)
        for tx in self._transactions:
            if tx["cycle_id"] == cycle_id and tx["root"] == root_hex:
                return tx["tx_ref"]
        return None

    @property
    def transactions(self) -> list[dict[str, str]]:
        return list(self._transactions)


class EthereumLedger:
    """Anchors roots on an Ethereum chain through web3.

    Usage:
        ledger = EthereumLedger(settings, journal_path=data_dir / "ledger_journal.jsonl")
        tx_ref = ledger.submit_root(root, "2024", timeout=300)
    """

    def __init__(
        self,
        settings: LedgerSettings,
        journal_path: Path,
        web3: Any = None,
    ) -> None:
        if not settings.private_key:
            raise ValueError("EthereumLedger requires a private key")
        if web3 is None and not settings.rpc_url:
            raise ValueError("EthereumLedger requires an RPC URL")
        self._settings = settings
        self._journal_path = journal_path
        self._w3 = web3

    # ------------------------------------------------------------------
    # Ledger protocol
    # ------------------------------------------------------------------

    def submit_root(self, root: bytes, cycle_id: str, timeout: float = 300.0) -> str:
        from eth_account import Account
        from web3.exceptions import ProviderConnectionError, TimeExhausted, Web3Exception

        _check_root(root)
        w3 = self._web3()
        acct = Account.from_key(self._settings.private_key)

        resumed = self._resume_pending(root, cycle_id, timeout)
        if resumed is not None:
            return resumed

        try:
            nonce = w3.eth.get_transaction_count(acct.address)
            tx = self._build_transaction(w3, root, acct.address, nonce)
            signed = acct.sign_transaction(tx)
            tx_hash = encode_hex(bytes(w3.eth.send_raw_transaction(signed.raw_transaction)))
        except TimeExhausted as exc:
            raise LedgerUnavailable(f"Ledger timed out: {exc}", cycle_id=cycle_id) from exc
        except (OSError, ProviderConnectionError) as exc:
            raise LedgerUnavailable(f"Ledger unreachable: {exc}", cycle_id=cycle_id) from exc
        except (ValueError, Web3Exception) as exc:
            raise LedgerRejected(
                f"Ledger refused transaction: {exc}", cycle_id=cycle_id,
            ) from exc

        self._journal(cycle_id, root, tx_hash)
        logger.info("Sent root for cycle %s in tx %s", cycle_id, tx_hash)
        return self._await_confirmation(tx_hash, cycle_id, timeout)

    def find_commitment(self, root: bytes, cycle_id: str) -> Optional[str]:
        from web3.exceptions import ProviderConnectionError, TransactionNotFound

        w3 = self._web3()
        for tx_hash in reversed(self._journaled(root, cycle_id)):
            try:
                receipt = w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                continue
            except (OSError, ProviderConnectionError) as exc:
                raise LedgerUnavailable(
                    f"Ledger unreachable during status check: {exc}",
                    cycle_id=cycle_id,
                ) from exc
            if receipt.status == 1:
                return tx_hash
        return None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _web3(self) -> Any:
        if self._w3 is None:
            from web3 import Web3, HTTPProvider

            self._w3 = Web3(HTTPProvider(self._settings.rpc_url))
        return self._w3

    def _build_transaction(
        self, w3: Any, root: bytes, address: str, nonce: int,
    ) -> dict[str, Any]:
        from web3 import Web3

        params = {
            "gas": self._settings.gas,
            "gasPrice": Web3.to_wei(self._settings.gas_price_gwei, "gwei"),
            "nonce": nonce,
            "chainId": self._settings.chain_id,
        }
        if self._settings.contract_address:
            contract = w3.eth.contract(
                address=Web3.to_checksum_address(self._settings.contract_address),
                abi=STORE_ROOT_ABI,
            )
            return contract.functions.storeRoot(root).build_transaction(
                {"from": address, **params}
            )
        return {
            "to": address,  # self-send, 0 ETH
            "value": 0,
            "data": root,
            **params,
        }

    def _await_confirmation(self, tx_hash: str, cycle_id: str, timeout: float) -> str:
        from web3.exceptions import ProviderConnectionError, TimeExhausted

        try:
            receipt = self._web3().eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as exc:
            raise LedgerUnavailable(
                f"No confirmation for {tx_hash} within {timeout}s", cycle_id=cycle_id,
            ) from exc
        except (OSError, ProviderConnectionError) as exc:
            raise LedgerUnavailable(
                f"Ledger unreachable while awaiting {tx_hash}: {exc}", cycle_id=cycle_id,
            ) from exc

        if receipt.status != 1:
            raise LedgerRejected(
                f"Transaction {tx_hash} reverted in block {receipt.blockNumber}",
                cycle_id=cycle_id,
            )
        logger.info(
            "Confirmed tx %s in block %s (%s%s)",
            tx_hash, receipt.blockNumber, self._settings.explorer_tx_url, tx_hash,
        )
        return tx_hash

    def _resume_pending(self, root: bytes, cycle_id: str, timeout: float) -> Optional[str]:
        """Wait on a journaled transaction still known to the node."""
        from web3.exceptions import ProviderConnectionError, TransactionNotFound

        w3 = self._web3()
        for tx_hash in reversed(self._journaled(root, cycle_id)):
            try:
                w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                continue
            except (OSError, ProviderConnectionError) as exc:
                raise LedgerUnavailable(
                    f"Ledger unreachable during status check: {exc}",
                    cycle_id=cycle_id,
                ) from exc
            logger.info("Resuming confirmation of journaled tx %s", tx_hash)
            return self._await_confirmation(tx_hash, cycle_id, timeout)
        return None

    def _journal(self, cycle_id: str, root: bytes, tx_hash: str) -> None:
        entry = {
            "cycle_id": cycle_id,
            "root": encode_hex(root),
            "tx_hash": tx_hash,
            "sent_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        self._journal_path.parent.mkdir(parents=True, exist_ok=True)
        with self._journal_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, sort_keys=True) + "\n")

    def _journaled(self, root: bytes, cycle_id: str) -> list[str]:
        if not self._journal_path.exists():
            return []
        root_hex = encode_hex(root)
        hashes: list[str] = []
        with self._journal_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = json.loads(line)
                if entry["cycle_id"] == cycle_id and entry["root"] == root_hex:
                    hashes.append(entry["tx_hash"])
        return hashes


def _check_root(root: bytes) -> None:
    if not isinstance(root, bytes) or len(root) != DIGEST_SIZE:
        raise ValueError(f"Ledger roots must be {DIGEST_SIZE} bytes")
