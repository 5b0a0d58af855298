"""
vaultdrop/exceptions.py

Exception hierarchy for the distribution service.

Round-level failures (ledger, listing, fees, shape) abort only the current
round. Startup failures (config, authority) are fatal.
"""


class VaultdropError(Exception):
    """Base class for all vaultdrop errors."""
    pass


# ============================================================================
# TRANSIENT EXTERNAL-CALL FAILURES
# ============================================================================

class JsonRpcError(VaultdropError):
    """JSON-RPC transport or protocol error."""
    pass


class LedgerError(VaultdropError):
    """Ledger RPC call failed."""
    pass


class HolderListingError(VaultdropError):
    """Holder listing API failed or returned a malformed page."""
    pass


class FeeEstimateError(VaultdropError):
    """Priority fee estimate could not be obtained."""
    pass


# ============================================================================
# DATA-SHAPE FAILURES
# ============================================================================

class StateDecodeError(VaultdropError):
    """On-ledger account data could not be decoded."""
    pass


class BalanceExtractionError(VaultdropError):
    """A transaction record touches the vault but its balance is unusable."""
    pass


class PayloadError(VaultdropError):
    """Inbound trigger payload is not a valid transaction batch."""
    pass


class RequestTooLargeError(VaultdropError):
    """HTTP request body exceeds the ingress size limit."""
    pass


class TransactionShapeError(VaultdropError):
    """Assembled distribution instruction violates the program's account contract."""
    pass


# ============================================================================
# INVARIANT VIOLATIONS
# ============================================================================

class InsufficientHoldersError(VaultdropError):
    """Not enough holders to draw the requested number of winners."""

    def __init__(self, requested: int, available: int, message: str = ""):
        self.requested = requested
        self.available = available
        super().__init__(
            message or f"Cannot draw {requested} winners from {available} holders"
        )


class TooManyPagesError(VaultdropError):
    """Holder discovery exceeded the page scan ceiling."""
    pass


# ============================================================================
# STARTUP / LIFECYCLE FAILURES
# ============================================================================

class ConfigError(VaultdropError):
    """Missing or invalid configuration."""
    pass


class AuthorityMismatchError(VaultdropError):
    """Configured distribution authority differs from the on-ledger one."""
    pass


class ActorStoppedError(VaultdropError):
    """The distribution actor's mailbox is closed."""
    pass
