"""
StealthPay - Private x402 Payments
====================================
Stealth address ERC-5564 e settlement EIP-3009 per pagamenti x402.

Version: 1.0.0
Author: StealthPay Team
License: MIT
"""

__version__ = "1.0.0"
__author__ = "StealthPay Team"
__license__ = "MIT"

# Core imports
from stealth_pay.domain.keypairs import KeyPair, generate_key_pair
from stealth_pay.domain.authorization import PaymentAuthorization, TokenDomain, sign_transfer_authorization
from stealth_pay.wallet.stealth_address import StealthAddressGenerator, StealthWallet
from stealth_pay.config import StealthPaySettings, get_settings

# Services
from stealth_pay.services.settlement import PaymentSettlement, build_settlement
from stealth_pay.services.meta_registry import StealthMetaRegistry
from stealth_pay.services.cross_chain import CrossChainRouter

# Protocol
from stealth_pay.protocol.x402 import PaymentHeader, PaymentRequirement

# Constants
from stealth_pay.constants import (
    SettlementState,
    token_to_base_units,
    base_units_to_token,
)

__all__ = [
    # Version
    "__version__",

    # Core
    "KeyPair",
    "generate_key_pair",
    "PaymentAuthorization",
    "TokenDomain",
    "sign_transfer_authorization",
    "StealthAddressGenerator",
    "StealthWallet",
    "StealthPaySettings",
    "get_settings",

    # Services
    "PaymentSettlement",
    "build_settlement",
    "StealthMetaRegistry",
    "CrossChainRouter",

    # Protocol
    "PaymentHeader",
    "PaymentRequirement",

    # Constants
    "SettlementState",
    "token_to_base_units",
    "base_units_to_token",
]
