"""
vaultdrop/ledger/fees.py

Priority fee estimation via Helius getPriorityFeeEstimate.

The estimate is returned in micro-lamports per compute unit as a float
and truncated to an integer for SetComputeUnitPrice. There is no default
price: if the estimate fails, the caller's round fails.
"""

import logging
import math
from typing import Iterable, Union

from solders.pubkey import Pubkey

from ..exceptions import FeeEstimateError, JsonRpcError
from ..rpc import JsonRpcClient

logger = logging.getLogger("vaultdrop.ledger.fees")


class PriorityFeeClient:
    """Fetches recent priority fee estimates for a set of accounts."""

    def __init__(self, rpc: JsonRpcClient):
        self.rpc = rpc

    async def estimate(self, account_keys: Iterable[Union[str, Pubkey]]) -> int:
        """
        Estimate the compute unit price for transactions touching account_keys.

        Raises:
            FeeEstimateError: On RPC failure or a malformed response
        """
        keys = [str(key) for key in account_keys]
        try:
            result = await self.rpc.call(
                "getPriorityFeeEstimate",
                [{"accountKeys": keys}],
            )
        except JsonRpcError as e:
            raise FeeEstimateError(f"Priority fee estimate failed: {e}") from e

        try:
            estimate = float(result["priorityFeeEstimate"])
        except (KeyError, TypeError, ValueError) as e:
            raise FeeEstimateError(f"Malformed priority fee response: {result!r}") from e

        if not math.isfinite(estimate) or estimate < 0:
            raise FeeEstimateError(f"Unusable priority fee estimate: {estimate}")

        logger.debug(f"Priority fee estimate for {keys}: {estimate}")
        return int(estimate)
