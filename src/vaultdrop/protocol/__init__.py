"""
vaultdrop/protocol/

Trigger ingestion and the distribution actor.
"""

from .ingestion import (
    TriggerKind,
    TriggerEvent,
    parse_webhook_payload,
    account_keys,
    extract_vault_balance,
    latest_vault_balance,
)
from .orchestrator import DistributionActor, RoundOutcome, RoundPhase

__all__ = [
    "TriggerKind",
    "TriggerEvent",
    "parse_webhook_payload",
    "account_keys",
    "extract_vault_balance",
    "latest_vault_balance",
    "DistributionActor",
    "RoundOutcome",
    "RoundPhase",
]
