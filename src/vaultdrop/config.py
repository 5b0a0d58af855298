"""
vaultdrop/config.py

Configuration constants and settings for the distribution service.

Settings are read from environment variables at startup. Values that
come from the on-ledger DistributorState (share size, number of shares,
mints) are not configured here.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .exceptions import ConfigError
from .keypair import parse_keypair


# Ingress API
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8000

# Timeout applied to every outbound HTTP call (seconds)
DEFAULT_HTTP_TIMEOUT = 30.0

# Memo attached to every distribution transaction
DEFAULT_MEMO = "vaultdrop distribution"

# Holder count persistence
DEFAULT_HOLDERS_STORE_PATH = Path.home() / ".vaultdrop" / "holders.json"


def _require(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name)
    if not value:
        raise ConfigError(f"{name} not found in environment")
    return value


def _pubkey(environ: Mapping[str, str], name: str) -> Pubkey:
    raw = _require(environ, name)
    try:
        return Pubkey.from_string(raw.strip())
    except ValueError as e:
        raise ConfigError(f"Can't deserialize {name}: {e}") from e


def _flag(environ: Mapping[str, str], name: str) -> bool:
    return environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """
    Runtime settings for the distribution service.

    Usage:
        settings = Settings.from_env()
        service = await build_service(settings)
    """

    solana_rpc_url: str
    payer: Keypair
    distributor_authority: Keypair
    distributor_state: Pubkey
    program_id: Pubkey

    # Helius endpoint for getTokenAccounts / getPriorityFeeEstimate.
    # Defaults to solana_rpc_url, which is a Helius URL in production.
    helius_rpc_url: Optional[str] = None

    memo: str = DEFAULT_MEMO
    holders_store_path: Optional[Path] = field(default=DEFAULT_HOLDERS_STORE_PATH)
    webhook_secret: Optional[str] = None

    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    dry_run: bool = False

    @property
    def listing_url(self) -> str:
        """URL used for holder listing and fee estimation."""
        return self.helius_rpc_url or self.solana_rpc_url

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigError: If a required variable is missing or unparsable
        """
        env = os.environ if environ is None else environ

        store_path: Optional[Path] = DEFAULT_HOLDERS_STORE_PATH
        raw_store = env.get("HOLDERS_STORE_PATH")
        if raw_store is not None:
            # Empty value disables persistence
            store_path = Path(raw_store).expanduser() if raw_store.strip() else None

        try:
            api_port = int(env.get("API_PORT", DEFAULT_API_PORT))
            http_timeout = float(env.get("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        return cls(
            solana_rpc_url=_require(env, "SOLANA_RPC_URL"),
            payer=parse_keypair(_require(env, "PAYER_KEYPAIR"), "PAYER_KEYPAIR"),
            distributor_authority=parse_keypair(
                _require(env, "DISTRIBUTOR_AUTHORITY_KEYPAIR"),
                "DISTRIBUTOR_AUTHORITY_KEYPAIR",
            ),
            distributor_state=_pubkey(env, "DISTRIBUTOR_STATE"),
            program_id=_pubkey(env, "PROGRAM_ID"),
            helius_rpc_url=env.get("HELIUS_RPC_URL") or None,
            memo=env.get("DISTRIBUTION_MEMO") or DEFAULT_MEMO,
            holders_store_path=store_path,
            webhook_secret=env.get("WEBHOOK_SECRET") or None,
            api_host=env.get("API_HOST") or DEFAULT_API_HOST,
            api_port=api_port,
            http_timeout=http_timeout,
            dry_run=_flag(env, "DRY_RUN"),
        )

    def describe(self) -> dict:
        """Non-secret view of the settings, for logs and /status."""
        return {
            "payer": str(self.payer.pubkey()),
            "distributor_authority": str(self.distributor_authority.pubkey()),
            "distributor_state": str(self.distributor_state),
            "program_id": str(self.program_id),
            "memo": self.memo,
            "holders_store_path": str(self.holders_store_path) if self.holders_store_path else None,
            "webhook_auth": self.webhook_secret is not None,
            "dry_run": self.dry_run,
        }
