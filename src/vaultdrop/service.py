"""
vaultdrop/service.py

Service bootstrap: wires settings into a running distributor.

Startup order:
1. Fetch and decode the DistributorState
2. Check the configured authority against the on-ledger one
3. Load the cached holder count
4. Build the transaction builder and the actor

Any failure here is fatal; nothing is served until startup succeeds.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import trio

from .api import DistributorAPI
from .config import Settings
from .exceptions import AuthorityMismatchError
from .holders.directory import HolderDirectory
from .holders.listing import TokenAccountsClient
from .holders.store import FileHolderCountStore, HolderCountStore
from .ledger.client import LedgerClient
from .ledger.fees import PriorityFeeClient
from .ledger.state import DistributorState
from .ledger.tx_builder import DistributionTxBuilder
from .protocol.orchestrator import DistributionActor
from .rpc import JsonRpcClient

logger = logging.getLogger("vaultdrop.service")


@dataclass
class DistributorService:
    """All long-lived components of a running distributor."""
    settings: Settings
    state: DistributorState
    ledger: LedgerClient
    rpc: JsonRpcClient
    directory: HolderDirectory
    builder: DistributionTxBuilder
    actor: DistributionActor

    async def aclose(self) -> None:
        """Close outbound HTTP sessions."""
        await self.rpc.aclose()
        await self.ledger.aclose()


def check_authority(settings: Settings, state: DistributorState) -> None:
    """
    Raises:
        AuthorityMismatchError: If the configured authority can't sign for state
    """
    configured = settings.distributor_authority.pubkey()
    if configured != state.distributor_authority:
        raise AuthorityMismatchError(
            f"Configured distributor authority {configured} does not match "
            f"on-ledger authority {state.distributor_authority}"
        )


def open_store(settings: Settings) -> Optional[HolderCountStore]:
    if settings.holders_store_path is None:
        logger.info("Holder count persistence disabled")
        return None
    return FileHolderCountStore(settings.holders_store_path)


async def build_service(
    settings: Settings,
    ledger: Optional[LedgerClient] = None,
    rpc: Optional[JsonRpcClient] = None,
) -> DistributorService:
    """
    Build every component from settings.

    Args:
        settings: Runtime settings
        ledger: Optional ledger client (tests inject fakes)
        rpc: Optional JSON-RPC client for listing and fees

    Raises:
        LedgerError: If the state account can't be fetched
        StateDecodeError: If the state account is malformed
        AuthorityMismatchError: If the configured authority is wrong
    """
    ledger = ledger or LedgerClient(settings.solana_rpc_url, timeout=settings.http_timeout)
    rpc = rpc or JsonRpcClient(settings.listing_url, timeout=settings.http_timeout)

    try:
        state = await ledger.get_distributor_state(settings.distributor_state)
        logger.info(
            f"Distributor state {settings.distributor_state}: "
            f"share_size={state.share_size} number_of_shares={state.number_of_shares} "
            f"threshold={state.threshold()}"
        )
        check_authority(settings, state)

        directory = await HolderDirectory.load(
            TokenAccountsClient(rpc),
            str(state.marker_mint),
            store=open_store(settings),
        )
    except BaseException:
        await rpc.aclose()
        await ledger.aclose()
        raise

    builder = DistributionTxBuilder(
        ledger=ledger,
        fees=PriorityFeeClient(rpc),
        program_id=settings.program_id,
        state_address=settings.distributor_state,
        state=state,
        payer=settings.payer,
        distributor_authority=settings.distributor_authority,
        memo=settings.memo,
        dry_run=settings.dry_run,
    )

    actor = DistributionActor(state, ledger, directory, builder)

    return DistributorService(
        settings=settings,
        state=state,
        ledger=ledger,
        rpc=rpc,
        directory=directory,
        builder=builder,
        actor=actor,
    )


async def run_service(settings: Settings) -> None:
    """Build the service and serve until cancelled."""
    service = await build_service(settings)
    if settings.dry_run:
        logger.warning("DRY RUN: distributions will be signed but not submitted")

    api = DistributorAPI(
        service.actor,
        host=settings.api_host,
        port=settings.api_port,
        webhook_secret=settings.webhook_secret,
        info=settings.describe(),
    )

    try:
        async with trio.open_nursery() as nursery:
            await nursery.start(service.actor.run)
            await nursery.start(api.start)
            logger.info(f"vaultdrop listening on {settings.api_host}:{settings.api_port}")
    finally:
        service.actor.close()
        with trio.CancelScope(shield=True):
            await service.aclose()
