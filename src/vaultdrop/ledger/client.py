"""
vaultdrop/ledger/client.py

Ledger client for the distribution service.

Thin wrapper around solana-py's AsyncClient exposing exactly what the
orchestrator needs:
- account data reads (vault, distributor state)
- latest blockhash
- transaction submission

Every RPC failure surfaces as LedgerError.
"""

import logging
from typing import Optional, Union

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ..exceptions import LedgerError
from .state import DistributorState, as_pubkey, decode_token_amount

logger = logging.getLogger("vaultdrop.ledger.client")

RPC_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError)


class LedgerClient:
    """
    Async ledger RPC client.

    Example:
        ledger = LedgerClient("https://api.mainnet-beta.solana.com")
        state = await ledger.get_distributor_state(state_address)
        balance = await ledger.get_token_balance(state.vault)
        await ledger.aclose()
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: Commitment = Confirmed,
        timeout: float = 30.0,
        client: Optional[AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            rpc_url: Solana JSON-RPC URL
            commitment: Commitment used for reads and preflight
            timeout: Request timeout in seconds
            client: Optional preconstructed AsyncClient
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = client or AsyncClient(rpc_url, commitment=commitment, timeout=timeout)

    async def get_account_data(self, address: Union[str, Pubkey]) -> bytes:
        """
        Fetch raw account data.

        Raises:
            LedgerError: If the call fails or the account does not exist
        """
        pubkey = as_pubkey(address)
        try:
            response = await self._client.get_account_info(pubkey, commitment=self.commitment)
        except RPC_ERRORS as e:
            logger.error(f"get_account_info failed for {pubkey}: {e}")
            raise LedgerError(f"Failed to fetch account {pubkey}: {e}") from e

        if response.value is None:
            raise LedgerError(f"Account {pubkey} not found")
        return bytes(response.value.data)

    async def get_distributor_state(self, address: Union[str, Pubkey]) -> DistributorState:
        """Fetch and decode the distributor state account."""
        data = await self.get_account_data(address)
        return DistributorState.decode(data)

    async def get_token_balance(self, address: Union[str, Pubkey]) -> int:
        """Fetch a token account and return its raw amount."""
        data = await self.get_account_data(address)
        return decode_token_amount(data)

    async def get_latest_blockhash(self) -> Hash:
        """Fetch the latest blockhash for transaction freshness."""
        try:
            response = await self._client.get_latest_blockhash(commitment=self.commitment)
        except RPC_ERRORS as e:
            logger.error(f"get_latest_blockhash failed: {e}")
            raise LedgerError(f"Failed to get latest blockhash: {e}") from e
        return response.value.blockhash

    async def send_transaction(self, tx: Transaction) -> str:
        """
        Submit a signed transaction.

        Returns:
            Transaction signature (base58)

        Raises:
            LedgerError: If the node rejects the transaction
        """
        opts = TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
        try:
            response = await self._client.send_raw_transaction(bytes(tx), opts=opts)
        except RPC_ERRORS as e:
            logger.error(f"send_raw_transaction failed: {e}")
            raise LedgerError(f"Failed to send transaction: {e}") from e
        return str(response.value)

    async def aclose(self) -> None:
        """Close the underlying HTTP session."""
        await self._client.close()
