"""
vaultdrop - Threshold-triggered token vault distributor

Watches a custodial token vault and, once its balance reaches
share_size * number_of_shares, pays one share to each of a random set of
marker token holders in a single transaction:
- Single-writer actor: at most one distribution round at a time
- Holder directory: cached holder count and paged random sampling
- Transaction builder: fee-priced, signed distribute transactions
- HTTP ingress: webhook and explicit triggers, status and metrics

Usage:
    from vaultdrop import Settings, run_service

    settings = Settings.from_env()
    trio.run(run_service, settings)

Component Usage:
    from vaultdrop import DistributionActor, TriggerEvent

    actor = DistributionActor(state, ledger, directory, builder)
    async with trio.open_nursery() as nursery:
        nursery.start_soon(actor.run)
        actor.submit(TriggerEvent.explicit())
"""

__version__ = "0.1.0"

from .config import Settings
from .exceptions import (
    VaultdropError,
    LedgerError,
    HolderListingError,
    FeeEstimateError,
    InsufficientHoldersError,
    TooManyPagesError,
    TransactionShapeError,
    StateDecodeError,
    BalanceExtractionError,
    PayloadError,
    RequestTooLargeError,
    ConfigError,
    AuthorityMismatchError,
    ActorStoppedError,
)
from .holders import HolderDirectory, TokenAccountsClient, FileHolderCountStore, MemoryHolderCountStore
from .ledger import DistributorState, LedgerClient, PriorityFeeClient, DistributionTxBuilder
from .protocol import DistributionActor, TriggerEvent, TriggerKind, RoundOutcome, RoundPhase
from .api import DistributorAPI
from .metrics import MetricsCollector
from .service import build_service, run_service

__all__ = [
    "__version__",
    # Core
    "Settings",
    "DistributionActor",
    "TriggerEvent",
    "TriggerKind",
    "RoundOutcome",
    "RoundPhase",
    # Holders
    "HolderDirectory",
    "TokenAccountsClient",
    "FileHolderCountStore",
    "MemoryHolderCountStore",
    # Ledger
    "DistributorState",
    "LedgerClient",
    "PriorityFeeClient",
    "DistributionTxBuilder",
    # Service
    "DistributorAPI",
    "MetricsCollector",
    "build_service",
    "run_service",
    # Errors
    "VaultdropError",
    "LedgerError",
    "HolderListingError",
    "FeeEstimateError",
    "InsufficientHoldersError",
    "TooManyPagesError",
    "TransactionShapeError",
    "StateDecodeError",
    "BalanceExtractionError",
    "PayloadError",
    "RequestTooLargeError",
    "ConfigError",
    "AuthorityMismatchError",
    "ActorStoppedError",
]
