"""
vaultdrop/ledger/

Ledger integration for the distributor program.

Account layouts, RPC access, priority fees and distribution transaction
assembly.
"""

from .state import (
    DistributorState,
    anchor_discriminator,
    decode_token_amount,
    get_associated_token_address,
    TOKEN_PROGRAM_ID,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MEMO_PROGRAM_ID,
)

from .client import LedgerClient
from .fees import PriorityFeeClient

from .tx_builder import (
    DistributionTxBuilder,
    DistributionTransaction,
    DepositTransaction,
    build_distribute_instruction,
    build_deposit_instruction,
    build_remaining_accounts,
    COMPUTE_UNIT_LIMIT,
    PACKET_DATA_SIZE,
)

__all__ = [
    # Accounts
    "DistributorState",
    "anchor_discriminator",
    "decode_token_amount",
    "get_associated_token_address",
    "TOKEN_PROGRAM_ID",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "MEMO_PROGRAM_ID",
    # RPC
    "LedgerClient",
    "PriorityFeeClient",
    # Transaction building
    "DistributionTxBuilder",
    "DistributionTransaction",
    "DepositTransaction",
    "build_distribute_instruction",
    "build_deposit_instruction",
    "build_remaining_accounts",
    "COMPUTE_UNIT_LIMIT",
    "PACKET_DATA_SIZE",
]
