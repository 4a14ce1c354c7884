"""
StealthPay - Domain Package
=============================
Primitive crittografiche, indirizzi, chiavi stealth e autorizzazioni EIP-3009.
"""

# Crypto core
from stealth_pay.domain.crypto_core import (
    keccak256,
    shared_secret_hash,
    public_key_from_scalar,
)

# Addressing
from stealth_pay.domain.addressing import (
    address_of,
    is_valid_address,
    normalize_address,
    is_zero_address,
)

# Key pairs
from stealth_pay.domain.keypairs import (
    KeyPair,
    generate_key_pair,
    parse_meta_address,
    is_valid_meta_address,
)

# Authorization
from stealth_pay.domain.authorization import (
    TokenDomain,
    PaymentAuthorization,
    ProcessedNonceSet,
    AuthorizationVerifier,
    sign_transfer_authorization,
)

__all__ = [
    "keccak256",
    "shared_secret_hash",
    "public_key_from_scalar",
    "address_of",
    "is_valid_address",
    "normalize_address",
    "is_zero_address",
    "KeyPair",
    "generate_key_pair",
    "parse_meta_address",
    "is_valid_meta_address",
    "TokenDomain",
    "PaymentAuthorization",
    "ProcessedNonceSet",
    "AuthorizationVerifier",
    "sign_transfer_authorization",
]
