"""
vaultdrop/keypair.py

Keypair loading from operator-supplied secrets.

Accepted formats, tried in order:
- base58 encoded 64-byte secret key (Phantom / solana-keygen export)
- JSON array of 64 byte values (solana-keygen file contents)
- BIP-39 mnemonic, derived at m/44'/501'/0'/0'
"""

import hashlib
import json
import logging
import unicodedata

import base58
from solders.keypair import Keypair

from .exceptions import ConfigError

logger = logging.getLogger("vaultdrop.keypair")


SOLANA_DERIVATION_PATH = "m/44'/501'/0'/0'"
BIP39_PBKDF2_ROUNDS = 2048


def keypair_from_base58(secret: str) -> Keypair:
    """Parse a base58 encoded secret key."""
    return Keypair.from_bytes(base58.b58decode(secret.strip()))


def keypair_from_json(secret: str) -> Keypair:
    """Parse a JSON byte array secret key."""
    values = json.loads(secret)
    if not isinstance(values, list):
        raise ValueError("Keypair JSON must be an array of bytes")
    return Keypair.from_bytes(bytes(values))


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP-39 seed from a mnemonic phrase."""
    normalized = unicodedata.normalize("NFKD", " ".join(mnemonic.split()))
    salt = unicodedata.normalize("NFKD", "mnemonic" + passphrase)
    return hashlib.pbkdf2_hmac(
        "sha512",
        normalized.encode("utf-8"),
        salt.encode("utf-8"),
        BIP39_PBKDF2_ROUNDS,
    )


def keypair_from_mnemonic(mnemonic: str) -> Keypair:
    """Derive the first Solana account keypair from a mnemonic."""
    words = mnemonic.split()
    if len(words) not in (12, 15, 18, 21, 24):
        raise ValueError(f"Unexpected mnemonic length: {len(words)} words")
    seed = mnemonic_to_seed(mnemonic)
    return Keypair.from_seed_and_derivation_path(seed, SOLANA_DERIVATION_PATH)


def parse_keypair(secret: str, name: str = "keypair") -> Keypair:
    """
    Parse a keypair in any supported format.

    Args:
        secret: Raw secret string
        name: Setting name, used in error messages

    Returns:
        Parsed Keypair

    Raises:
        ConfigError: If no format matches
    """
    errors = []
    for parser in (keypair_from_base58, keypair_from_json, keypair_from_mnemonic):
        try:
            return parser(secret)
        except Exception as e:
            errors.append(f"{parser.__name__}: {e}")

    logger.debug(f"Failed to parse {name}: {'; '.join(errors)}")
    raise ConfigError(f"Can't deserialize {name}: not base58, JSON bytes or mnemonic")
