"""
vaultdrop/ledger/state.py

On-ledger account layouts and address derivation.

DistributorState is written by the distributor program (Anchor account):
    8 bytes   account discriminator
    32 bytes  vault
    32 bytes  mint
    32 bytes  marker_mint
    32 bytes  distributor_authority
    8 bytes   share_size (u64 LE)
    8 bytes   number_of_shares (u64 LE)
    1 byte    distributor_state_bump
    1 byte    vault_bump

SPL token accounts: mint(0-32) | owner(32-64) | amount(64-72) | ...
"""

import hashlib
import struct
from dataclasses import dataclass
from typing import Union

from solders.pubkey import Pubkey

from ..exceptions import StateDecodeError


# ============================================================================
# PROGRAM IDS
# ============================================================================

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

U64_MAX = 2**64 - 1


def anchor_discriminator(namespace: str, name: str) -> bytes:
    """First 8 bytes of sha256("<namespace>:<name>")."""
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


DISTRIBUTOR_STATE_DISCRIMINATOR = anchor_discriminator("account", "DistributorState")
DISTRIBUTOR_STATE_LAYOUT = struct.Struct("<8s32s32s32s32sQQBB")

TOKEN_ACCOUNT_MIN_SIZE = 72


def as_pubkey(address: Union[str, Pubkey]) -> Pubkey:
    """Accept either a Pubkey or its base58 string."""
    if isinstance(address, Pubkey):
        return address
    return Pubkey.from_string(address)


def get_associated_token_address(
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Derive the associated token account for (owner, mint)."""
    seeds = [bytes(owner), bytes(token_program), bytes(mint)]
    ata, _ = Pubkey.find_program_address(seeds, ASSOCIATED_TOKEN_PROGRAM_ID)
    return ata


# ============================================================================
# DISTRIBUTOR STATE
# ============================================================================

@dataclass(frozen=True)
class DistributorState:
    """Snapshot of the on-ledger distributor configuration."""
    vault: Pubkey
    mint: Pubkey
    marker_mint: Pubkey
    distributor_authority: Pubkey
    share_size: int
    number_of_shares: int
    distributor_state_bump: int = 0
    vault_bump: int = 0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Re-check the invariants the program enforces at initialization.

        Raises:
            StateDecodeError: If the share arithmetic is not usable
        """
        if self.share_size <= 0:
            raise StateDecodeError(f"share_size must be positive, got {self.share_size}")
        if self.number_of_shares < 2:
            raise StateDecodeError(
                f"number_of_shares must be at least 2, got {self.number_of_shares}"
            )
        if self.share_size * self.number_of_shares > U64_MAX:
            raise StateDecodeError(
                f"share_size * number_of_shares overflows u64 "
                f"({self.share_size} * {self.number_of_shares})"
            )

    def threshold(self) -> int:
        """Minimum vault balance that triggers a distribution round."""
        return self.share_size * self.number_of_shares

    @property
    def winners_per_round(self) -> int:
        """Holders drawn per round; the last share is not drawn."""
        return self.number_of_shares - 1

    @classmethod
    def decode(cls, data: bytes) -> "DistributorState":
        """
        Decode raw account data.

        Raises:
            StateDecodeError: On short data or discriminator mismatch
        """
        if len(data) < DISTRIBUTOR_STATE_LAYOUT.size:
            raise StateDecodeError(
                f"DistributorState needs {DISTRIBUTOR_STATE_LAYOUT.size} bytes, got {len(data)}"
            )

        (
            discriminator,
            vault,
            mint,
            marker_mint,
            authority,
            share_size,
            number_of_shares,
            state_bump,
            vault_bump,
        ) = DISTRIBUTOR_STATE_LAYOUT.unpack_from(data)

        if discriminator != DISTRIBUTOR_STATE_DISCRIMINATOR:
            raise StateDecodeError("Account is not a DistributorState (discriminator mismatch)")

        return cls(
            vault=Pubkey.from_bytes(vault),
            mint=Pubkey.from_bytes(mint),
            marker_mint=Pubkey.from_bytes(marker_mint),
            distributor_authority=Pubkey.from_bytes(authority),
            share_size=share_size,
            number_of_shares=number_of_shares,
            distributor_state_bump=state_bump,
            vault_bump=vault_bump,
        )

    def encode(self) -> bytes:
        """Encode back to the on-ledger layout."""
        return DISTRIBUTOR_STATE_LAYOUT.pack(
            DISTRIBUTOR_STATE_DISCRIMINATOR,
            bytes(self.vault),
            bytes(self.mint),
            bytes(self.marker_mint),
            bytes(self.distributor_authority),
            self.share_size,
            self.number_of_shares,
            self.distributor_state_bump,
            self.vault_bump,
        )

    def to_dict(self) -> dict:
        return {
            "vault": str(self.vault),
            "mint": str(self.mint),
            "marker_mint": str(self.marker_mint),
            "distributor_authority": str(self.distributor_authority),
            "share_size": self.share_size,
            "number_of_shares": self.number_of_shares,
            "threshold": self.threshold(),
        }


# ============================================================================
# TOKEN ACCOUNT
# ============================================================================

def decode_token_amount(data: bytes) -> int:
    """
    Read the amount field of an SPL token account.

    Raises:
        StateDecodeError: If the data is too short to be a token account
    """
    if len(data) < TOKEN_ACCOUNT_MIN_SIZE:
        raise StateDecodeError(
            f"Token account needs at least {TOKEN_ACCOUNT_MIN_SIZE} bytes, got {len(data)}"
        )
    return struct.unpack_from("<Q", data, 64)[0]
