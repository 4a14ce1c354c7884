"""
StealthPay - KeyPair Management
=================================
Coppie spending/viewing e meta-address ERC-5564.

Security Level: CRITICAL
Last Updated: 2026-10-19
Version: 1.0.0

Features:
- KeyPair immutabile (spending + viewing)
- Meta-address 66 bytes: spend_pub || view_pub
- Parsing meta-address da bytes, hex o URI st:eth:0x...
- Serializzazione per keystore
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple, Union

from stealth_pay.domain.crypto_core import (
    generate_private_scalar,
    scalar_to_bytes,
    bytes_to_scalar,
    public_key_from_scalar,
    decode_point,
)
from stealth_pay.constants import (
    COMPRESSED_PUBKEY_SIZE,
    META_ADDRESS_SIZE,
    META_ADDRESS_PREFIX,
)
from stealth_pay.errors import ValidationError, InvalidKeyError
from stealth_pay.logging_setup import get_logger


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("keypairs")


# ============================================================================
# KEYPAIR CLASS
# ============================================================================

@dataclass(frozen=True)
class KeyPair:
    """
    Coppia di chiavi stealth del recipient.

    Attributes:
        spending_priv (bytes): Scalare di spesa (32 bytes)
        viewing_priv (bytes): Scalare di visione (32 bytes)
        spending_pub (bytes): spending_priv * G compressa (33 bytes)
        viewing_pub (bytes): viewing_priv * G compressa (33 bytes)

    Security:
        - Immutabile (frozen dataclass)
        - viewing_priv permette di RICONOSCERE i pagamenti, non di spenderli
        - repr non espone le chiavi private

    Examples:
        >>> keys = generate_key_pair()
        >>> len(keys.meta_address)
        66
    """
    spending_priv: bytes
    viewing_priv: bytes
    spending_pub: bytes
    viewing_pub: bytes

    @classmethod
    def from_private_keys(cls, spending_priv: bytes, viewing_priv: bytes) -> KeyPair:
        """
        Ricostruisce il KeyPair dalle sole chiavi private.

        Raises:
            InvalidKeyError: Scalari fuori range
        """
        spending = bytes_to_scalar(spending_priv)
        viewing = bytes_to_scalar(viewing_priv)
        return cls(
            spending_priv=scalar_to_bytes(spending),
            viewing_priv=scalar_to_bytes(viewing),
            spending_pub=public_key_from_scalar(spending),
            viewing_pub=public_key_from_scalar(viewing),
        )

    @property
    def meta_address(self) -> bytes:
        """spend_pub || view_pub (66 bytes)"""
        return self.spending_pub + self.viewing_pub

    @property
    def meta_address_hex(self) -> str:
        return "0x" + self.meta_address.hex()

    @property
    def meta_address_uri(self) -> str:
        """Forma URI ERC-5564: st:eth:0x..."""
        return META_ADDRESS_PREFIX + self.meta_address_hex

    @property
    def spending_scalar(self) -> int:
        return int.from_bytes(self.spending_priv, "big")

    @property
    def viewing_scalar(self) -> int:
        return int.from_bytes(self.viewing_priv, "big")

    def to_dict(self) -> Dict[str, str]:
        """Serializza (include chiavi private: solo per keystore cifrato)"""
        return {
            "spending_priv": self.spending_priv.hex(),
            "viewing_priv": self.viewing_priv.hex(),
            "spending_pub": self.spending_pub.hex(),
            "viewing_pub": self.viewing_pub.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> KeyPair:
        """
        Deserializza, verificando che le public key combacino.

        Raises:
            InvalidKeyError: Public key incoerenti con le private
        """
        keys = cls.from_private_keys(
            bytes.fromhex(data["spending_priv"]),
            bytes.fromhex(data["viewing_priv"]),
        )
        for field_name in ("spending_pub", "viewing_pub"):
            stored = data.get(field_name)
            if stored is not None and bytes.fromhex(stored) != getattr(keys, field_name):
                raise InvalidKeyError(
                    f"Stored {field_name} does not match private key",
                    code="KEYPAIR_MISMATCH"
                )
        return keys

    def __repr__(self) -> str:
        return f"KeyPair(meta_address={self.meta_address_hex[:18]}...)"


# ============================================================================
# GENERATION
# ============================================================================

def generate_key_pair() -> KeyPair:
    """
    Genera KeyPair con due scalari indipendenti e uniformi in [1, n-1].

    Examples:
        >>> a, b = generate_key_pair(), generate_key_pair()
        >>> a.meta_address != b.meta_address
        True
    """
    spending = generate_private_scalar()
    viewing = generate_private_scalar()

    keys = KeyPair(
        spending_priv=scalar_to_bytes(spending),
        viewing_priv=scalar_to_bytes(viewing),
        spending_pub=public_key_from_scalar(spending),
        viewing_pub=public_key_from_scalar(viewing),
    )

    logger.debug(
        "Stealth key pair generated",
        extra_data={"spend_pub": keys.spending_pub.hex()[:16]}
    )
    return keys


# ============================================================================
# META-ADDRESS PARSING
# ============================================================================

def meta_address_to_bytes(meta_address: Union[bytes, bytearray, str]) -> bytes:
    """
    Converte meta-address in bytes grezzi, senza validare i punti.

    Accetta bytes, hex (con o senza 0x) oppure URI `st:eth:0x...`.

    Raises:
        ValidationError: Hex malformato
    """
    if isinstance(meta_address, (bytes, bytearray)):
        return bytes(meta_address)

    text = meta_address.strip()
    if text.startswith(META_ADDRESS_PREFIX):
        text = text[len(META_ADDRESS_PREFIX):]
    if text[:2].lower() == "0x":
        text = text[2:]

    try:
        return bytes.fromhex(text)
    except ValueError:
        raise ValidationError(
            "Meta-address is not valid hex",
            code="INVALID_META_ADDRESS"
        )


def parse_meta_address(meta_address: Union[bytes, bytearray, str]) -> Tuple[bytes, bytes]:
    """
    Divide un meta-address in (spend_pub, view_pub).

    Args:
        meta_address: 66 bytes (o hex / URI equivalenti)

    Returns:
        tuple: (spend_pub, view_pub) da 33 bytes ciascuna

    Raises:
        ValidationError: Lunghezza diversa da 66 o punto non valido

    Examples:
        >>> keys = generate_key_pair()
        >>> parse_meta_address(keys.meta_address) == (keys.spending_pub, keys.viewing_pub)
        True
    """
    raw = meta_address_to_bytes(meta_address)

    if len(raw) != META_ADDRESS_SIZE:
        raise ValidationError(
            f"Meta-address must be {META_ADDRESS_SIZE} bytes, got {len(raw)}",
            code="INVALID_META_ADDRESS",
            details={"length": len(raw)}
        )

    spend_pub = raw[:COMPRESSED_PUBKEY_SIZE]
    view_pub = raw[COMPRESSED_PUBKEY_SIZE:]

    for label, key in (("spending", spend_pub), ("viewing", view_pub)):
        try:
            decode_point(key)
        except InvalidKeyError as e:
            raise ValidationError(
                f"Invalid {label} public key in meta-address: {e.message}",
                code="INVALID_META_ADDRESS",
                details={"key": label}
            )

    return spend_pub, view_pub


def is_valid_meta_address(meta_address: Union[bytes, str]) -> bool:
    try:
        parse_meta_address(meta_address)
        return True
    except ValidationError:
        return False


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "KeyPair",
    "generate_key_pair",
    "meta_address_to_bytes",
    "parse_meta_address",
    "is_valid_meta_address",
]
