"""
StealthPay - Cryptographic Core Layer
=======================================
Primitive crittografiche di basso livello su secp256k1.

Security Level: CRITICAL
Last Updated: 2026-10-19
Version: 1.0.0

SECURITY NOTICE:
Questo modulo implementa primitive crittografiche critiche.
Ogni modifica deve essere sottoposta a security audit.

Algorithms:
- Hash: Keccak-256 (eth_utils)
- Curve: secp256k1 point arithmetic (ecdsa)
- KDF: PBKDF2-HMAC-SHA256 (cryptography)
- Encryption: AES-256-GCM (cryptography)

Dependencies:
- ecdsa
- eth-utils
- cryptography
"""

import secrets
from typing import Optional, Tuple

from ecdsa import SECP256k1, VerifyingKey
from ecdsa.ellipticcurve import INFINITY
from ecdsa.errors import MalformedPointError
from eth_utils import keccak

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.exceptions import InvalidTag

from stealth_pay.constants import (
    PRIVATE_KEY_SIZE,
    COMPRESSED_PUBKEY_SIZE,
    UNCOMPRESSED_PUBKEY_SIZE,
)
from stealth_pay.errors import (
    CryptoError,
    InvalidKeyError,
    EncryptionError,
    DecryptionError,
)
from stealth_pay.logging_setup import get_logger


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("crypto")


# ============================================================================
# CURVE PARAMETERS
# ============================================================================

CURVE = SECP256k1
GENERATOR = SECP256k1.generator
CURVE_ORDER = SECP256k1.order


# ============================================================================
# HASH FUNCTIONS
# ============================================================================

def keccak256(data: bytes) -> bytes:
    """
    Keccak-256 (variante Ethereum, non SHA3-256 NIST).

    Examples:
        >>> keccak256(b"").hex()[:16]
        'c5d2460186f7233c'
    """
    return keccak(data)


# ============================================================================
# SCALARS
# ============================================================================

def generate_private_scalar() -> int:
    """
    Genera scalare uniforme in [1, n-1] da CSPRNG.

    Security:
        - secrets.randbelow (CSPRNG del sistema operativo)
        - Mai zero
    """
    return secrets.randbelow(CURVE_ORDER - 1) + 1


def scalar_to_bytes(scalar: int) -> bytes:
    """Scalare -> 32 bytes big-endian"""
    return scalar.to_bytes(PRIVATE_KEY_SIZE, "big")


def bytes_to_scalar(data: bytes) -> int:
    """
    32 bytes big-endian -> scalare valido in [1, n-1].

    Raises:
        InvalidKeyError: Lunghezza errata o scalare fuori range
    """
    if len(data) != PRIVATE_KEY_SIZE:
        raise InvalidKeyError(
            f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(data)}",
            code="INVALID_KEY_LENGTH"
        )
    scalar = int.from_bytes(data, "big")
    if not 1 <= scalar < CURVE_ORDER:
        raise InvalidKeyError("Private key out of range [1, n-1]")
    return scalar


def hash_to_scalar(digest: bytes) -> int:
    """Riduzione mod n di un digest a 32 bytes"""
    return int.from_bytes(digest, "big") % CURVE_ORDER


# ============================================================================
# POINTS
# ============================================================================

def scalar_mult_base(scalar: int):
    """scalar * G"""
    return GENERATOR * scalar


def decode_point(data: bytes):
    """
    Decodifica public key SEC1 (33 bytes compressa o 65 bytes non compressa).

    Il punto viene validato sulla curva da `ecdsa`.

    Raises:
        InvalidKeyError: Lunghezza, prefisso o punto non validi
    """
    data = bytes(data)
    if len(data) not in (COMPRESSED_PUBKEY_SIZE, UNCOMPRESSED_PUBKEY_SIZE):
        raise InvalidKeyError(
            f"Public key must be 33 or 65 bytes, got {len(data)}",
            code="INVALID_KEY_LENGTH"
        )
    if len(data) == UNCOMPRESSED_PUBKEY_SIZE and data[0] != 0x04:
        raise InvalidKeyError("Uncompressed public key must start with 0x04")

    try:
        verifying_key = VerifyingKey.from_string(data, curve=CURVE)
    except (MalformedPointError, ValueError) as e:
        raise InvalidKeyError(f"Invalid curve point: {e}", code="INVALID_POINT")

    return verifying_key.pubkey.point


def _require_finite(point) -> None:
    if point == INFINITY:
        raise CryptoError("Point at infinity", code="POINT_AT_INFINITY")


def encode_point(point, compressed: bool = True) -> bytes:
    """
    Codifica SEC1 di un punto.

    Args:
        point: Punto secp256k1
        compressed: 33 bytes (02/03 || x) se True, 65 bytes (04 || x || y) altrimenti
    """
    _require_finite(point)
    # Punti ottenuti da aritmetica su punti già validati
    verifying_key = VerifyingKey.from_public_point(
        point, curve=CURVE, validate_point=False
    )
    return verifying_key.to_string("compressed" if compressed else "uncompressed")


def point_add(p1, p2):
    """
    Somma di due punti.

    Raises:
        CryptoError: Se il risultato è il punto all'infinito
    """
    result = p1 + p2
    _require_finite(result)
    return result


def public_key_from_scalar(scalar: int, compressed: bool = True) -> bytes:
    """Public key SEC1 di uno scalare"""
    return encode_point(scalar_mult_base(scalar), compressed=compressed)


def compress_public_key(public_key: bytes) -> bytes:
    """Normalizza una public key SEC1 in forma compressa (33 bytes)"""
    return encode_point(decode_point(public_key), compressed=True)


# ============================================================================
# ECDH
# ============================================================================

def ecdh_shared_point(private_scalar: int, public_point) -> bytes:
    """
    Shared point ECDH: private * public, codificato compresso (33 bytes).

    L'hash della codifica compressa è il segreto condiviso del protocollo
    stealth (sia lato sender sia lato recipient).

    Raises:
        CryptoError: Se il risultato è il punto all'infinito
    """
    shared = public_point * private_scalar
    _require_finite(shared)
    return encode_point(shared, compressed=True)


def shared_secret_hash(private_scalar: int, public_point) -> bytes:
    """keccak256(compress(private * public))"""
    return keccak256(ecdh_shared_point(private_scalar, public_point))


# ============================================================================
# KEY DERIVATION & SYMMETRIC ENCRYPTION (keystore)
# ============================================================================

def derive_key_pbkdf2(
    password: bytes,
    salt: bytes,
    iterations: int = 200_000,
    key_length: int = 32
) -> bytes:
    """
    Deriva chiave da password usando PBKDF2-HMAC-SHA256.

    Args:
        password: Password in bytes
        salt: Salt casuale (min 16 bytes)
        iterations: Numero iterazioni
        key_length: Lunghezza chiave output (bytes)

    Examples:
        >>> key = derive_key_pbkdf2(b"password123", secrets.token_bytes(16))
        >>> len(key)
        32
    """
    if len(salt) < 16:
        raise CryptoError("Salt must be at least 16 bytes", code="SALT_TOO_SHORT")

    if iterations < 10_000:
        logger.warning(
            f"Low PBKDF2 iterations: {iterations}",
            extra_data={"iterations": iterations}
        )

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=key_length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password)


def encrypt_data_aes_gcm(
    plaintext: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None
) -> Tuple[bytes, bytes]:
    """
    Cifra con AES-256-GCM.

    Returns:
        tuple: (ciphertext con tag, nonce 12 bytes)
    """
    if len(key) != 32:
        raise EncryptionError(
            f"AES-256 requires 32-byte key, got {len(key)}",
            code="INVALID_KEY_LENGTH"
        )

    nonce = secrets.token_bytes(12)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)
    return ciphertext, nonce


def decrypt_data_aes_gcm(
    ciphertext: bytes,
    key: bytes,
    nonce: bytes,
    associated_data: Optional[bytes] = None
) -> bytes:
    """
    Decifra AES-256-GCM verificando il tag.

    Raises:
        DecryptionError: Tag invalido (password errata o dati manomessi)
    """
    if len(key) != 32:
        raise DecryptionError(f"AES-256 requires 32-byte key, got {len(key)}")
    if len(nonce) != 12:
        raise DecryptionError(f"GCM requires 12-byte nonce, got {len(nonce)}")

    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag:
        raise DecryptionError(
            "Authentication tag verification failed. Wrong password or corrupted data.",
            code="AUTH_TAG_INVALID"
        )


# ============================================================================
# RANDOM
# ============================================================================

def generate_random_bytes(length: int) -> bytes:
    """
    Bytes casuali da CSPRNG (nonce EIP-3009, salt, ecc.).

    Examples:
        >>> len(generate_random_bytes(32))
        32
    """
    if length <= 0:
        raise CryptoError("Length must be positive")
    return secrets.token_bytes(length)


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "CURVE",
    "GENERATOR",
    "CURVE_ORDER",
    "keccak256",
    "generate_private_scalar",
    "scalar_to_bytes",
    "bytes_to_scalar",
    "hash_to_scalar",
    "scalar_mult_base",
    "decode_point",
    "encode_point",
    "point_add",
    "public_key_from_scalar",
    "compress_public_key",
    "ecdh_shared_point",
    "shared_secret_hash",
    "derive_key_pbkdf2",
    "encrypt_data_aes_gcm",
    "decrypt_data_aes_gcm",
    "generate_random_bytes",
]
