"""
StealthPay - Core Constants
=============================
Costanti immutabili del protocollo di settlement stealth.

Security Level: CRITICAL
Last Updated: 2026-10-19
Version: 1.0.0

IMPORTANTE: i valori di fee e i limiti sono parte del protocollo.
Cambiarli invalida receipts e announcement già emessi da altri nodi.
"""

from enum import Enum, IntEnum
from typing import Final


# ============================================================================
# IDENTIFICAZIONE PROGETTO
# ============================================================================

PROJECT_NAME: Final[str] = "StealthPay"
SOFTWARE_VERSION: Final[str] = "1.0.0"
X402_VERSION: Final[str] = "1.0"

# ============================================================================
# CURVA SECP256K1
# ============================================================================

# Ordine del gruppo (n) - tutte le riduzioni scalari sono mod n
SECP256K1_N: Final[int] = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

PRIVATE_KEY_SIZE: Final[int] = 32
COMPRESSED_PUBKEY_SIZE: Final[int] = 33
UNCOMPRESSED_PUBKEY_SIZE: Final[int] = 65
META_ADDRESS_SIZE: Final[int] = 2 * COMPRESSED_PUBKEY_SIZE  # 66 bytes
HASH_SIZE: Final[int] = 32
ADDRESS_SIZE: Final[int] = 20

# Lunghezze ammesse per ephemeral public key negli announcement
EPHEMERAL_KEY_SIZES: Final[tuple] = (COMPRESSED_PUBKEY_SIZE, UNCOMPRESSED_PUBKEY_SIZE)

# ERC-5564: scheme id 1 = secp256k1 con view tag
SCHEME_ID_SECP256K1: Final[int] = 1
SUPPORTED_SCHEME_IDS: Final[tuple] = (SCHEME_ID_SECP256K1,)

# Prefisso URI meta-address (ERC-5564)
META_ADDRESS_PREFIX: Final[str] = "st:eth:"

ZERO_ADDRESS: Final[str] = "0x" + "00" * ADDRESS_SIZE

# ============================================================================
# TOKEN (USDC-like, 6 decimali)
# ============================================================================

TOKEN_SYMBOL: Final[str] = "USDC"
TOKEN_DECIMALS: Final[int] = 6
BASE_UNITS_PER_TOKEN: Final[int] = 10 ** TOKEN_DECIMALS

# EIP-712 domain di default del token (EIP-3009)
TOKEN_DOMAIN_NAME: Final[str] = "USD Coin"
TOKEN_DOMAIN_VERSION: Final[str] = "2"
DEFAULT_CHAIN_ID: Final[int] = 137  # Polygon mainnet


def token_to_base_units(amount_token: float) -> int:
    """
    Converte importo token in base units.

    Examples:
        >>> token_to_base_units(10)
        10000000
        >>> token_to_base_units(0.01)
        10000
    """
    return int(round(amount_token * BASE_UNITS_PER_TOKEN))


def base_units_to_token(amount: int) -> float:
    """
    Converte base units in token.

    Examples:
        >>> base_units_to_token(10000)
        0.01
    """
    return amount / BASE_UNITS_PER_TOKEN


def format_amount(amount: int, unit: str = TOKEN_SYMBOL) -> str:
    """
    Formatta amount per display.

    Examples:
        >>> format_amount(10_000_000)
        '10.000000 USDC'
        >>> format_amount(10_000_000, "base")
        '10,000,000 base units'
    """
    if unit == "base":
        return f"{amount:,} base units"
    return f"{base_units_to_token(amount):.{TOKEN_DECIMALS}f} {unit}"


# ============================================================================
# FEE PROTOCOLLO
# ============================================================================

BPS_DENOMINATOR: Final[int] = 10_000
DEFAULT_FEE_BPS: Final[int] = 10  # 0.1%
MAX_FEE_BPS: Final[int] = 100  # Hard cap 1%

# ============================================================================
# SETTLEMENT
# ============================================================================

MAX_BATCH_SIZE: Final[int] = 50

# Validità di default di un'autorizzazione firmata lato payer
DEFAULT_AUTHORIZATION_TTL: Final[int] = 3600  # 1 ora

# ============================================================================
# AGENT LEDGER
# ============================================================================

SECONDS_PER_DAY: Final[int] = 86_400
DEFAULT_DAILY_SPEND_LIMIT: Final[int] = 1_000 * BASE_UNITS_PER_TOKEN  # 1000 USDC
INITIAL_REPUTATION: Final[int] = 500
MAX_REPUTATION: Final[int] = 1000
REPUTATION_INCREMENT: Final[int] = 10
REPUTATION_TX_INTERVAL: Final[int] = 10  # Bonus ogni 10 transazioni

# ============================================================================
# COMPLIANCE
# ============================================================================

DEFAULT_COMPLIANCE_EXPIRY: Final[int] = 365 * SECONDS_PER_DAY
MIN_COMPLIANCE_EXPIRY: Final[int] = SECONDS_PER_DAY

# ============================================================================
# API / FEED
# ============================================================================

DEFAULT_PAGE_SIZE: Final[int] = 100
MAX_PAGE_SIZE: Final[int] = 1000
PAYMENT_HEADER_NAME: Final[str] = "X-PAYMENT"

# ============================================================================
# STATI
# ============================================================================

class SettlementState(Enum):
    """
    Stati della state machine di settlement.

    IDLE -> VERIFYING -> FEE_ROUTING -> STEALTH_ROUTING -> ANNOUNCING -> SETTLED
    Qualsiasi step fallito -> ABORTED.
    """
    IDLE = "idle"
    VERIFYING = "verifying"
    FEE_ROUTING = "fee_routing"
    STEALTH_ROUTING = "stealth_routing"
    ANNOUNCING = "announcing"
    SETTLED = "settled"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SettlementState.SETTLED, SettlementState.ABORTED)


class SchemeId(IntEnum):
    """Scheme ERC-5564 supportati"""
    SECP256K1 = SCHEME_ID_SECP256K1


# ============================================================================
# HELPERS
# ============================================================================

def compute_fee(amount: int, fee_bps: int) -> int:
    """
    Calcola fee protocollo (floor).

    Examples:
        >>> compute_fee(1, 10)
        0
        >>> compute_fee(10_000, 10)
        10
    """
    return amount * fee_bps // BPS_DENOMINATOR


def get_protocol_info() -> dict:
    """Info protocollo per endpoint /settlement/info"""
    return {
        "project": PROJECT_NAME,
        "software_version": SOFTWARE_VERSION,
        "x402_version": X402_VERSION,
        "scheme_id": SCHEME_ID_SECP256K1,
        "token": TOKEN_SYMBOL,
        "token_decimals": TOKEN_DECIMALS,
        "max_fee_bps": MAX_FEE_BPS,
        "max_batch_size": MAX_BATCH_SIZE,
    }


# ============================================================================
# EXPORT ALL
# ============================================================================

__all__ = [
    "PROJECT_NAME",
    "SOFTWARE_VERSION",
    "X402_VERSION",
    "SECP256K1_N",
    "PRIVATE_KEY_SIZE",
    "COMPRESSED_PUBKEY_SIZE",
    "UNCOMPRESSED_PUBKEY_SIZE",
    "META_ADDRESS_SIZE",
    "HASH_SIZE",
    "ADDRESS_SIZE",
    "EPHEMERAL_KEY_SIZES",
    "SCHEME_ID_SECP256K1",
    "SUPPORTED_SCHEME_IDS",
    "META_ADDRESS_PREFIX",
    "ZERO_ADDRESS",
    "TOKEN_SYMBOL",
    "TOKEN_DECIMALS",
    "BASE_UNITS_PER_TOKEN",
    "TOKEN_DOMAIN_NAME",
    "TOKEN_DOMAIN_VERSION",
    "DEFAULT_CHAIN_ID",
    "token_to_base_units",
    "base_units_to_token",
    "format_amount",
    "BPS_DENOMINATOR",
    "DEFAULT_FEE_BPS",
    "MAX_FEE_BPS",
    "MAX_BATCH_SIZE",
    "DEFAULT_AUTHORIZATION_TTL",
    "SECONDS_PER_DAY",
    "DEFAULT_DAILY_SPEND_LIMIT",
    "INITIAL_REPUTATION",
    "MAX_REPUTATION",
    "REPUTATION_INCREMENT",
    "REPUTATION_TX_INTERVAL",
    "DEFAULT_COMPLIANCE_EXPIRY",
    "MIN_COMPLIANCE_EXPIRY",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "PAYMENT_HEADER_NAME",
    "SettlementState",
    "SchemeId",
    "compute_fee",
    "get_protocol_info",
]
