"""
vaultdrop/protocol/orchestrator.py

Distribution actor: the single writer for distribution rounds.

Every trigger goes through one unbounded mailbox and is handled by one
task, start to finish, in arrival order. That task is the only code that
touches the holder count, fetches fees or submits transactions, so no two
rounds can ever overlap however many producers submit at once.

Round flow:
1. Determine the vault balance (from the batch, or from the ledger)
2. Compare against share_size * number_of_shares
3. Refresh the holder count
4. Draw number_of_shares - 1 winners
5. Build, sign and submit the distribute transaction

A failure in any step ends that round only; the actor moves on to the
next event.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, TYPE_CHECKING

import trio

from ..exceptions import ActorStoppedError, VaultdropError
from .ingestion import TriggerEvent, TriggerKind, latest_vault_balance

if TYPE_CHECKING:
    from ..holders.directory import HolderDirectory
    from ..ledger.client import LedgerClient
    from ..ledger.state import DistributorState
    from ..ledger.tx_builder import DistributionTxBuilder

logger = logging.getLogger("vaultdrop.protocol.orchestrator")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class RoundPhase(Enum):
    """Where handling of an event ended."""
    SKIPPED = "skipped"                    # Batch never touched the vault
    BELOW_THRESHOLD = "below_threshold"    # Balance under threshold
    SUBMITTED = "submitted"                # Distribution sent
    FAILED = "failed"                      # Round aborted


@dataclass
class RoundOutcome:
    """Result of handling one trigger event."""
    kind: TriggerKind
    phase: RoundPhase
    threshold: int
    balance: Optional[int] = None
    holders_number: Optional[int] = None
    winners: List[str] = field(default_factory=list)
    signature: Optional[str] = None
    error_message: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "phase": self.phase.value,
            "threshold": self.threshold,
            "balance": self.balance,
            "holders_number": self.holders_number,
            "winners": self.winners,
            "signature": self.signature,
            "error_message": self.error_message,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


# ============================================================================
# DISTRIBUTION ACTOR
# ============================================================================

class DistributionActor:
    """
    Serializes trigger events into distribution rounds.

    Usage:
        actor = DistributionActor(state, ledger, directory, builder)
        async with trio.open_nursery() as nursery:
            await nursery.start(actor.run)
            actor.submit(TriggerEvent.explicit())
    """

    def __init__(
        self,
        state: "DistributorState",
        ledger: "LedgerClient",
        directory: "HolderDirectory",
        builder: "DistributionTxBuilder",
    ):
        """
        Initialize the actor.

        Args:
            state: DistributorState snapshot taken at startup
            ledger: Ledger client for explicit balance polls
            directory: Holder directory (owned by this actor)
            builder: Distribution transaction builder
        """
        self.state = state
        self.ledger = ledger
        self.directory = directory
        self.builder = builder

        self._send_channel, self._receive_channel = trio.open_memory_channel(math.inf)
        self._running = False
        self._started_at = time.time()

        # Counters
        self.events_received = 0
        self.events_processed = 0
        self.events_skipped = 0
        self.rounds_below_threshold = 0
        self.rounds_submitted = 0
        self.rounds_failed = 0

        self.last_outcome: Optional[RoundOutcome] = None
        self.last_round_at: Optional[float] = None

        # Callbacks
        self._on_round_complete: Optional[Callable[[RoundOutcome], None]] = None

    # ========================================================================
    # MAILBOX
    # ========================================================================

    def submit(self, event: TriggerEvent) -> None:
        """
        Enqueue a trigger event. Never blocks.

        Raises:
            ActorStoppedError: If the mailbox has been closed
        """
        try:
            self._send_channel.send_nowait(event)
        except (trio.ClosedResourceError, trio.BrokenResourceError) as e:
            raise ActorStoppedError("Distribution actor is not accepting events") from e
        self.events_received += 1
        logger.debug(f"Queued {event.kind.value} trigger ({self.pending_events} pending)")

    def close(self) -> None:
        """Stop accepting events; run() returns once the mailbox drains."""
        self._send_channel.close()

    @property
    def pending_events(self) -> int:
        return self._receive_channel.statistics().current_buffer_used

    @property
    def is_running(self) -> bool:
        return self._running

    def set_on_round_complete(self, callback: Callable[[RoundOutcome], None]) -> None:
        """Register a callback invoked with every RoundOutcome."""
        self._on_round_complete = callback

    async def run(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """
        Consume events one at a time until the mailbox is closed.

        Use with nursery.start() to wait until the actor is running.
        """
        self._running = True
        logger.info("Distribution actor started")
        task_status.started()
        try:
            async with self._receive_channel:
                async for event in self._receive_channel:
                    try:
                        await self.handle_event(event)
                    except Exception as e:
                        # Round failures are recorded by handle_event
                        logger.exception(f"Unexpected error handling {event.kind.value} trigger: {e}")
        finally:
            self._running = False
            logger.info("Distribution actor stopped")

    # ========================================================================
    # EVENT HANDLING
    # ========================================================================

    async def handle_event(self, event: TriggerEvent) -> RoundOutcome:
        """
        Handle one trigger event end to end.

        Round-level failures are recorded in the outcome, not raised.
        """
        outcome = RoundOutcome(
            kind=event.kind,
            phase=RoundPhase.SKIPPED,
            threshold=self.state.threshold(),
        )

        try:
            outcome.balance = await self._vault_balance(event)
            if outcome.balance is None:
                self.events_skipped += 1
                logger.debug("Trigger batch does not touch the vault, nothing to do")
            elif outcome.balance < outcome.threshold:
                outcome.phase = RoundPhase.BELOW_THRESHOLD
                self.rounds_below_threshold += 1
                logger.info(
                    f"Vault balance {outcome.balance} below threshold {outcome.threshold}"
                )
            else:
                await self.execute_round(outcome)
        except VaultdropError as e:
            outcome.phase = RoundPhase.FAILED
            outcome.error_message = str(e)
            self.rounds_failed += 1
            logger.warning(
                f"Distribution round failed: {type(e).__name__}: {e} "
                f"(balance={outcome.balance}, threshold={outcome.threshold}, "
                f"holders={self.directory.holders_number})"
            )
        except Exception as e:
            outcome.phase = RoundPhase.FAILED
            outcome.error_message = f"{type(e).__name__}: {e}"
            self.rounds_failed += 1
            logger.exception(f"Unexpected error in distribution round: {e}")

        outcome.finished_at = time.time()
        self.events_processed += 1
        self.last_outcome = outcome
        self._notify(outcome)
        return outcome

    async def _vault_balance(self, event: TriggerEvent) -> Optional[int]:
        if event.kind == TriggerKind.EXPLICIT:
            return await self.ledger.get_token_balance(self.state.vault)
        return latest_vault_balance(str(self.state.vault), event.transactions)

    async def execute_round(self, outcome: RoundOutcome) -> None:
        """
        Run one distribution round for a balance at or above threshold.

        Raises:
            VaultdropError: If any step fails; outcome holds partial progress
        """
        logger.info(
            f"Vault balance {outcome.balance} reached threshold {outcome.threshold}, "
            f"starting distribution"
        )

        outcome.holders_number = await self.directory.refresh_count()
        outcome.winners = [
            str(w) for w in await self.directory.draw_winners(self.state.winners_per_round)
        ]

        result = await self.builder.distribute(outcome.winners)

        outcome.signature = result.signature
        outcome.phase = RoundPhase.SUBMITTED
        self.rounds_submitted += 1
        self.last_round_at = time.time()
        logger.info(
            f"Distribution submitted to {len(outcome.winners)} winners: {result.signature}"
        )

    def _notify(self, outcome: RoundOutcome) -> None:
        if not self._on_round_complete:
            return
        try:
            self._on_round_complete(outcome)
        except Exception as e:
            logger.error(f"Round complete callback failed: {e}")

    # ========================================================================
    # STATS
    # ========================================================================

    def get_stats(self) -> dict:
        """Counters and last outcome for the status endpoint."""
        return {
            "running": self._running,
            "uptime_seconds": time.time() - self._started_at,
            "pending_events": self.pending_events,
            "events_received": self.events_received,
            "events_processed": self.events_processed,
            "events_skipped": self.events_skipped,
            "rounds_below_threshold": self.rounds_below_threshold,
            "rounds_submitted": self.rounds_submitted,
            "rounds_failed": self.rounds_failed,
            "holders_number": self.directory.holders_number,
            "threshold": self.state.threshold(),
            "last_round_at": self.last_round_at,
            "last_outcome": self.last_outcome.to_dict() if self.last_outcome else None,
        }
