"""
vaultdrop/protocol/ingestion.py

Trigger ingestion: turns external signals into orchestrator events.

Two trigger kinds:
- OBSERVED: a pushed batch of confirmed transactions (webhook); the vault
  balance is read from the batch itself
- EXPLICIT: an operator poll; the actor reads the vault from the ledger

Transaction records use the ledger's JSON encoding:
    {"transaction": {"message": {"accountKeys": [...]}},
     "meta": {"postTokenBalances": [...], "loadedAddresses": {...}}}
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple

from ..exceptions import BalanceExtractionError, PayloadError

logger = logging.getLogger("vaultdrop.protocol.ingestion")


# ============================================================================
# EVENTS
# ============================================================================

class TriggerKind(Enum):
    """Kinds of trigger events."""
    OBSERVED = "observed"    # Batch of confirmed transactions
    EXPLICIT = "explicit"    # Poll the vault directly


@dataclass(frozen=True)
class TriggerEvent:
    """A single trigger consumed once by the distribution actor."""
    kind: TriggerKind
    transactions: Tuple[dict, ...] = ()
    received_at: float = field(default_factory=time.time)

    @classmethod
    def observed(cls, transactions: Iterable[dict]) -> "TriggerEvent":
        return cls(kind=TriggerKind.OBSERVED, transactions=tuple(transactions))

    @classmethod
    def explicit(cls) -> "TriggerEvent":
        return cls(kind=TriggerKind.EXPLICIT)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "transactions": len(self.transactions),
            "received_at": self.received_at,
        }


def parse_webhook_payload(body: Any) -> List[dict]:
    """
    Validate a decoded webhook body as a transaction batch.

    A JSON array of objects is a batch; a single object is a batch of one.

    Raises:
        PayloadError: For anything else
    """
    if isinstance(body, dict):
        return [body]
    if not isinstance(body, list):
        raise PayloadError(f"Expected a JSON array of transactions, got {type(body).__name__}")
    for position, record in enumerate(body):
        if not isinstance(record, dict):
            raise PayloadError(f"Transaction {position} is not a JSON object")
    return body


# ============================================================================
# BALANCE EXTRACTION
# ============================================================================

def _unwrap(record: dict) -> Tuple[dict, Optional[dict]]:
    """Return (transaction, meta), tolerating the nested getTransaction shape."""
    transaction = record.get("transaction") or {}
    meta = record.get("meta")
    # Some encoders nest {"transaction": {"transaction": ..., "meta": ...}}
    if isinstance(transaction, dict) and "transaction" in transaction:
        meta = meta if meta is not None else transaction.get("meta")
        transaction = transaction.get("transaction") or {}
    return transaction, meta


def account_keys(record: dict) -> List[str]:
    """
    Full account-key list of a transaction record.

    Static keys come first, then addresses loaded from lookup tables
    (writable, then readonly), which is how accountIndex is numbered.
    """
    transaction, meta = _unwrap(record)
    message = transaction.get("message") if isinstance(transaction, dict) else None
    raw_keys = (message or {}).get("accountKeys") or []

    keys: List[str] = []
    for key in raw_keys:
        if isinstance(key, dict):
            keys.append(str(key.get("pubkey")))
        else:
            keys.append(str(key))

    loaded = (meta or {}).get("loadedAddresses") or {}
    keys.extend(str(k) for k in loaded.get("writable") or [])
    keys.extend(str(k) for k in loaded.get("readonly") or [])
    return keys


def extract_vault_balance(vault: str, record: dict) -> Optional[int]:
    """
    Post-transaction vault balance from one transaction record.

    Returns:
        The balance, or None if the transaction does not touch the vault

    Raises:
        BalanceExtractionError: If the vault is present but its balance
            cannot be read
    """
    vault = str(vault)
    keys = account_keys(record)
    if vault not in keys:
        return None
    vault_index = keys.index(vault)

    _, meta = _unwrap(record)
    if not isinstance(meta, dict):
        raise BalanceExtractionError("Transaction has no meta")

    balances = meta.get("postTokenBalances")
    if not isinstance(balances, list):
        raise BalanceExtractionError("Transaction meta has no postTokenBalances")

    for entry in balances:
        if not isinstance(entry, dict) or entry.get("accountIndex") != vault_index:
            continue
        raw_amount = (entry.get("uiTokenAmount") or {}).get("amount")
        try:
            amount = int(raw_amount)
        except (TypeError, ValueError) as e:
            raise BalanceExtractionError(f"Unparsable vault amount: {raw_amount!r}") from e
        if amount < 0:
            raise BalanceExtractionError(f"Negative vault amount: {amount}")
        return amount

    raise BalanceExtractionError(f"No post token balance for vault at index {vault_index}")


def latest_vault_balance(vault: str, records: Iterable[dict]) -> Optional[int]:
    """
    Vault balance after the last transaction in the batch that touched it.

    Records that touch the vault but carry an unusable balance are skipped.
    """
    balance: Optional[int] = None
    for position, record in enumerate(records):
        try:
            amount = extract_vault_balance(vault, record)
        except BalanceExtractionError as e:
            logger.warning(f"Skipping transaction {position} in batch: {e}")
            continue
        if amount is not None:
            balance = amount
    return balance
