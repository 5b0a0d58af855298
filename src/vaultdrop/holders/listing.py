"""
vaultdrop/holders/listing.py

Paginated holder listing via Helius DAS getTokenAccounts.

Request:  {"mint": <mint>, "page": <1-based>, "limit": <page size>}
Response: {"total": <records in this page>, "token_accounts": [{"owner": ..., ...}]}

Note that "total" is the number of records returned by this call, not the
population size; a page with total < limit is the last page.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Union

from solders.pubkey import Pubkey

from ..exceptions import HolderListingError, JsonRpcError
from ..rpc import JsonRpcClient

logger = logging.getLogger("vaultdrop.holders.listing")


@dataclass
class HolderPage:
    """One page of the holder listing."""
    page: int
    total: int
    owners: List[str] = field(default_factory=list)


class TokenAccountsClient:
    """Fetches pages of token accounts for a mint."""

    def __init__(self, rpc: JsonRpcClient):
        self.rpc = rpc

    async def get_page(self, mint: Union[str, Pubkey], page: int, limit: int) -> HolderPage:
        """
        Fetch one page of holder records.

        Raises:
            HolderListingError: On RPC failure or a malformed page
        """
        try:
            result = await self.rpc.call(
                "getTokenAccounts",
                {"mint": str(mint), "page": page, "limit": limit},
            )
        except JsonRpcError as e:
            raise HolderListingError(f"getTokenAccounts page {page} failed: {e}") from e

        if not isinstance(result, dict):
            raise HolderListingError(f"getTokenAccounts page {page}: result is not an object")

        accounts = result.get("token_accounts") or []
        try:
            total = int(result.get("total", len(accounts)))
            owners = [str(Pubkey.from_string(account["owner"])) for account in accounts]
        except (KeyError, TypeError, ValueError) as e:
            raise HolderListingError(f"getTokenAccounts page {page}: malformed record ({e})") from e

        if total < 0 or total > limit:
            raise HolderListingError(
                f"getTokenAccounts page {page}: total {total} outside [0, {limit}]"
            )

        logger.debug(f"Fetched holder page {page}: {total} records")
        return HolderPage(page=page, total=total, owners=owners)
