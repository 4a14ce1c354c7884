"""
StealthPay - Address Generation & Validation
==============================================
Indirizzi ledger in formato Ethereum (EIP-55).

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Address Format:
- keccak256(pubkey non compressa senza prefisso 0x04)
- Ultimi 20 bytes del digest
- Checksum EIP-55 (maiuscole/minuscole)

Example Address: 0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed
"""

from typing import Union

from eth_utils import is_address, to_checksum_address

from stealth_pay.domain.crypto_core import (
    keccak256,
    decode_point,
    encode_point,
)
from stealth_pay.constants import ADDRESS_SIZE, ZERO_ADDRESS
from stealth_pay.errors import ValidationError


# ============================================================================
# ADDRESS GENERATION
# ============================================================================

def address_of(public_key: Union[bytes, object]) -> str:
    """
    Indirizzo ledger canonico di una public key.

    Args:
        public_key: SEC1 bytes (33 o 65) oppure punto secp256k1

    Returns:
        str: Indirizzo EIP-55

    Examples:
        >>> from stealth_pay.domain.crypto_core import public_key_from_scalar
        >>> address_of(public_key_from_scalar(1))
        '0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf'
    """
    if isinstance(public_key, (bytes, bytearray)):
        point = decode_point(bytes(public_key))
    else:
        point = public_key

    uncompressed = encode_point(point, compressed=False)
    digest = keccak256(uncompressed[1:])
    return to_checksum_address(digest[-ADDRESS_SIZE:])


# ============================================================================
# VALIDATION
# ============================================================================

def is_valid_address(address: str) -> bool:
    """
    Check formato indirizzo (hex 20 bytes; checksum verificato se mixed-case).
    """
    return isinstance(address, str) and is_address(address)


def normalize_address(address: str, field: str = "address") -> str:
    """
    Valida e converte in forma EIP-55.

    Raises:
        ValidationError: Indirizzo malformato
    """
    if not is_valid_address(address):
        raise ValidationError(
            f"Invalid {field}: {address!r}",
            code="INVALID_ADDRESS",
            details={"field": field}
        )
    return to_checksum_address(address)


def is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def require_nonzero_address(address: str, field: str = "address") -> str:
    """
    Normalizza e rifiuta l'indirizzo zero.

    Raises:
        ValidationError: Indirizzo malformato o zero
    """
    normalized = normalize_address(address, field)
    if is_zero_address(normalized):
        raise ValidationError(
            f"Zero {field}",
            code="ZERO_ADDRESS",
            details={"field": field}
        )
    return normalized


def compare_addresses(addr1: str, addr2: str) -> bool:
    """
    Confronta due indirizzi (case-insensitive).

    Examples:
        >>> compare_addresses("0xabc0000000000000000000000000000000000001",
        ...                   "0xABC0000000000000000000000000000000000001")
        True
    """
    return addr1.lower() == addr2.lower()


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "address_of",
    "is_valid_address",
    "normalize_address",
    "is_zero_address",
    "require_nonzero_address",
    "compare_addresses",
]
