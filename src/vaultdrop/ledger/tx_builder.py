"""
vaultdrop/ledger/tx_builder.py

Distribution transaction builder.

Builds the single transaction that pays each winner one share and burns
the remainder from the vault. Instruction order:
1. SetComputeUnitLimit
2. SetComputeUnitPrice (from the priority fee estimate)
3. Memo
4. distributor::distribute with 2 auxiliary accounts per winner

Also builds the operator deposit that funds the vault from the payer's
token account.

The program re-derives every associated token account and rejects the
whole transaction on any mismatch, so the account shape here must be exact.
"""

import logging
import struct
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction

from ..exceptions import TransactionShapeError
from .state import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MEMO_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    U64_MAX,
    DistributorState,
    anchor_discriminator,
    as_pubkey,
    get_associated_token_address,
)

if TYPE_CHECKING:
    from .client import LedgerClient
    from .fees import PriorityFeeClient

logger = logging.getLogger("vaultdrop.ledger.tx_builder")


# ============================================================================
# CONSTANTS
# ============================================================================

COMPUTE_UNIT_LIMIT = 800_000
PACKET_DATA_SIZE = 1232  # Maximum serialized transaction size
DISTRIBUTE_DISCRIMINATOR = anchor_discriminator("global", "distribute")
DEPOSIT_DISCRIMINATOR = anchor_discriminator("global", "deposit")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class DistributionTransaction:
    """A signed (and possibly submitted) distribution transaction."""
    signature: str
    winners: List[str]
    priority_fee: int
    tx_size: int
    blockhash: str
    submitted: bool
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "winners": self.winners,
            "priority_fee": self.priority_fee,
            "tx_size": self.tx_size,
            "blockhash": self.blockhash,
            "submitted": self.submitted,
            "timestamp": self.timestamp,
        }


@dataclass
class DepositTransaction:
    """A signed (and possibly submitted) vault deposit."""
    signature: str
    amount: int
    token_account: str
    submitted: bool
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "amount": self.amount,
            "token_account": self.token_account,
            "submitted": self.submitted,
            "timestamp": self.timestamp,
        }


# ============================================================================
# INSTRUCTION BUILDING
# ============================================================================

def build_remaining_accounts(
    winners: Sequence[Union[str, Pubkey]],
    mint: Pubkey,
) -> List[AccountMeta]:
    """
    Auxiliary accounts for distribute: (authority, ATA) per winner.

    Authorities are read-only; token accounts are writable since the
    program may create and always credits them.
    """
    accounts: List[AccountMeta] = []
    for winner in winners:
        owner = as_pubkey(winner)
        ata = get_associated_token_address(owner, mint)
        accounts.append(AccountMeta(pubkey=owner, is_signer=False, is_writable=False))
        accounts.append(AccountMeta(pubkey=ata, is_signer=False, is_writable=True))
    return accounts


def build_distribute_instruction(
    program_id: Pubkey,
    state_address: Pubkey,
    state: DistributorState,
    payer: Pubkey,
    distributor_authority: Pubkey,
    winners: Sequence[Union[str, Pubkey]],
) -> Instruction:
    """
    Build the distributor program's distribute instruction.

    Raises:
        TransactionShapeError: If the winner count does not match the
            number of shares the program expects
    """
    expected = state.winners_per_round
    if len(winners) != expected:
        raise TransactionShapeError(
            f"distribute needs {expected} winners "
            f"({2 * expected} auxiliary accounts), got {len(winners)}"
        )

    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=distributor_authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=False),
        AccountMeta(pubkey=state.mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=state.vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    remaining = build_remaining_accounts(winners, state.mint)

    # The program derives ATAs per pair; a repeated owner would repeat a pair
    authorities = [meta.pubkey for meta in remaining[::2]]
    if len(set(authorities)) != len(authorities):
        raise TransactionShapeError("Winner set contains duplicate holders")

    return Instruction(program_id, DISTRIBUTE_DISCRIMINATOR, accounts + remaining)


def build_deposit_instruction(
    program_id: Pubkey,
    state_address: Pubkey,
    state: DistributorState,
    depositor: Pubkey,
    amount: int,
    token_account: Optional[Pubkey] = None,
) -> Instruction:
    """
    Build the distributor program's deposit instruction.

    Moves amount base units of the distributed mint from the depositor's
    token account (their ATA unless given) into the vault.

    Raises:
        TransactionShapeError: If amount is not a positive u64
    """
    if not 0 < amount <= U64_MAX:
        raise TransactionShapeError(f"Deposit amount must be a positive u64, got {amount}")

    if token_account is None:
        token_account = get_associated_token_address(depositor, state.mint)

    accounts = [
        AccountMeta(pubkey=state_address, is_signer=False, is_writable=False),
        AccountMeta(pubkey=state.mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=state.vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=depositor, is_signer=True, is_writable=False),
        AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = DEPOSIT_DISCRIMINATOR + struct.pack("<Q", amount)
    return Instruction(program_id, data, accounts)


def build_memo_instruction(memo: str) -> Instruction:
    """Memo v2 instruction without signer accounts."""
    return Instruction(MEMO_PROGRAM_ID, memo.encode("utf-8"), [])


# ============================================================================
# TRANSACTION BUILDER
# ============================================================================

class DistributionTxBuilder:
    """
    Builds, signs and submits distribution transactions.

    Example:
        builder = DistributionTxBuilder(
            ledger=ledger,
            fees=fees,
            program_id=program_id,
            state_address=state_address,
            state=state,
            payer=payer,
            distributor_authority=authority,
            memo="weekly drop",
        )
        result = await builder.distribute(winners)
    """

    def __init__(
        self,
        ledger: "LedgerClient",
        fees: "PriorityFeeClient",
        program_id: Pubkey,
        state_address: Pubkey,
        state: DistributorState,
        payer: Keypair,
        distributor_authority: Keypair,
        memo: str,
        compute_unit_limit: int = COMPUTE_UNIT_LIMIT,
        dry_run: bool = False,
    ):
        """
        Initialize the builder.

        Args:
            ledger: Ledger client for blockhash and submission
            fees: Priority fee estimator
            program_id: Distributor program id
            state_address: DistributorState account address
            state: Decoded DistributorState snapshot
            payer: Fee payer keypair
            distributor_authority: Distribution authority keypair
            memo: Memo attached to every distribution
            compute_unit_limit: Compute unit limit for the transaction
            dry_run: If True, sign but don't submit
        """
        self.ledger = ledger
        self.fees = fees
        self.program_id = program_id
        self.state_address = state_address
        self.state = state
        self.payer = payer
        self.distributor_authority = distributor_authority
        self.memo = memo
        self.compute_unit_limit = compute_unit_limit
        self.dry_run = dry_run

    def build_instructions(
        self,
        winners: Sequence[Union[str, Pubkey]],
        priority_fee: int,
    ) -> List[Instruction]:
        """Instruction list for one distribution round."""
        return [
            set_compute_unit_limit(self.compute_unit_limit),
            set_compute_unit_price(priority_fee),
            build_memo_instruction(self.memo),
            build_distribute_instruction(
                program_id=self.program_id,
                state_address=self.state_address,
                state=self.state,
                payer=self.payer.pubkey(),
                distributor_authority=self.distributor_authority.pubkey(),
                winners=winners,
            ),
        ]

    async def build(
        self,
        winners: Sequence[Union[str, Pubkey]],
    ) -> Tuple[Transaction, int]:
        """
        Build and sign the distribution transaction.

        The fee estimate and blockhash are fetched fresh on every call;
        the blockhash last, right before signing.

        Returns:
            (signed transaction, priority fee used)
        """
        # Validate shape before spending any remote calls
        build_distribute_instruction(
            program_id=self.program_id,
            state_address=self.state_address,
            state=self.state,
            payer=self.payer.pubkey(),
            distributor_authority=self.distributor_authority.pubkey(),
            winners=winners,
        )

        priority_fee = await self.fees.estimate([self.program_id])
        instructions = self.build_instructions(winners, priority_fee)

        blockhash = await self.ledger.get_latest_blockhash()
        tx = Transaction.new_signed_with_payer(
            instructions,
            self.payer.pubkey(),
            [self.payer, self.distributor_authority],
            blockhash,
        )
        return tx, priority_fee

    async def distribute(
        self,
        winners: Sequence[Union[str, Pubkey]],
    ) -> DistributionTransaction:
        """
        Build, sign and submit a distribution for the given winners.

        Returns:
            DistributionTransaction with the confirmation signature
        """
        logger.info(f"Building distribution TX for {len(winners)} winners")

        tx, priority_fee = await self.build(winners)

        tx_size = len(bytes(tx))
        logger.info(
            f"Distribute transaction size: {tx_size} bytes "
            f"(maximum possible is {PACKET_DATA_SIZE})"
        )
        if tx_size > PACKET_DATA_SIZE:
            logger.warning(f"Distribute transaction exceeds {PACKET_DATA_SIZE} bytes, submission will likely fail")

        if self.dry_run:
            signature = f"dry_run_{tx.signatures[0]}"
            logger.info(f"DRY RUN: Would submit distribution {tx.signatures[0]}")
        else:
            signature = await self.ledger.send_transaction(tx)
            logger.info(f"Distribute transaction sent: {signature}")

        return DistributionTransaction(
            signature=signature,
            winners=[str(w) for w in winners],
            priority_fee=priority_fee,
            tx_size=tx_size,
            blockhash=str(tx.message.recent_blockhash),
            submitted=not self.dry_run,
        )

    async def deposit(self, amount: int) -> DepositTransaction:
        """
        Fund the vault with amount base units from the payer's token account.

        Returns:
            DepositTransaction with the confirmation signature
        """
        payer = self.payer.pubkey()
        token_account = get_associated_token_address(payer, self.state.mint)
        instruction = build_deposit_instruction(
            program_id=self.program_id,
            state_address=self.state_address,
            state=self.state,
            depositor=payer,
            amount=amount,
            token_account=token_account,
        )

        logger.info(f"Depositing {amount} from {token_account} into vault {self.state.vault}")

        blockhash = await self.ledger.get_latest_blockhash()
        tx = Transaction.new_signed_with_payer([instruction], payer, [self.payer], blockhash)

        if self.dry_run:
            signature = f"dry_run_{tx.signatures[0]}"
            logger.info(f"DRY RUN: Would submit deposit {tx.signatures[0]}")
        else:
            signature = await self.ledger.send_transaction(tx)
            logger.info(f"Deposit transaction sent: {signature}")

        return DepositTransaction(
            signature=signature,
            amount=amount,
            token_account=str(token_account),
            submitted=not self.dry_run,
        )
