"""
vaultdrop/cli.py

Command line entry point.

    vaultdrop run [--dry-run] [--log-level INFO]
    vaultdrop state
    vaultdrop holders
    vaultdrop deposit AMOUNT [--dry-run]

All commands read their settings from the environment (see config.py).
"""

import json
import logging
import sys

import click
import trio

from .config import Settings
from .exceptions import VaultdropError
from .holders.directory import HolderDirectory
from .holders.listing import TokenAccountsClient
from .ledger.client import LedgerClient
from .rpc import JsonRpcClient
from .service import build_service, open_store, run_service

logger = logging.getLogger("vaultdrop.cli")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    # Silence per-request transport logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_settings(**overrides) -> Settings:
    settings = Settings.from_env()
    for key, value in overrides.items():
        if value is not None:
            setattr(settings, key, value)
    return settings


def _fail(error: Exception) -> None:
    logger.error(f"{type(error).__name__}: {error}")
    sys.exit(1)


@click.group()
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='INFO',
    help='Logging verbosity',
)
def main(log_level):
    """Threshold-triggered token vault distributor."""
    _setup_logging(log_level)


@main.command()
@click.option('--dry-run', is_flag=True, help='Sign distributions but never submit them')
@click.option('--host', default=None, help='API bind host (overrides API_HOST)')
@click.option('--port', type=int, default=None, help='API port (overrides API_PORT)')
def run(dry_run, host, port):
    """Run the distributor: actor plus HTTP ingress."""
    try:
        settings = _load_settings(dry_run=dry_run or None, api_host=host, api_port=port)
        trio.run(run_service, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except VaultdropError as e:
        _fail(e)


async def _show_state(settings: Settings) -> dict:
    ledger = LedgerClient(settings.solana_rpc_url, timeout=settings.http_timeout)
    try:
        state = await ledger.get_distributor_state(settings.distributor_state)
        vault_balance = await ledger.get_token_balance(state.vault)
    finally:
        await ledger.aclose()

    result = state.to_dict()
    result["winners_per_round"] = state.winners_per_round
    result["vault_balance"] = vault_balance
    result["ready"] = vault_balance >= state.threshold()
    return result


@main.command()
def state():
    """Print the decoded distributor state and vault balance."""
    try:
        settings = _load_settings()
        click.echo(json.dumps(trio.run(_show_state, settings), indent=2))
    except VaultdropError as e:
        _fail(e)


async def _refresh_holders(settings: Settings) -> dict:
    ledger = LedgerClient(settings.solana_rpc_url, timeout=settings.http_timeout)
    rpc = JsonRpcClient(settings.listing_url, timeout=settings.http_timeout)
    try:
        distributor = await ledger.get_distributor_state(settings.distributor_state)
        directory = await HolderDirectory.load(
            TokenAccountsClient(rpc),
            str(distributor.marker_mint),
            store=open_store(settings),
        )
        previous = directory.holders_number
        count = await directory.refresh_count()
    finally:
        await rpc.aclose()
        await ledger.aclose()

    return {
        "marker_mint": str(distributor.marker_mint),
        "previous": previous,
        "holders_number": count,
    }


@main.command()
def holders():
    """Refresh and persist the marker token holder count."""
    try:
        settings = _load_settings()
        click.echo(json.dumps(trio.run(_refresh_holders, settings), indent=2))
    except VaultdropError as e:
        _fail(e)


async def _deposit(settings: Settings, amount: int) -> dict:
    service = await build_service(settings)
    try:
        result = await service.builder.deposit(amount)
    finally:
        await service.aclose()
    return result.to_dict()


@main.command()
@click.argument('amount', type=click.IntRange(min=1))
@click.option('--dry-run', is_flag=True, help='Sign the deposit but do not submit it')
def deposit(amount, dry_run):
    """Fund the vault with AMOUNT base units from the payer's token account."""
    try:
        settings = _load_settings(dry_run=dry_run or None)
        click.echo(json.dumps(trio.run(_deposit, settings, amount), indent=2))
    except VaultdropError as e:
        _fail(e)


if __name__ == "__main__":
    main()
