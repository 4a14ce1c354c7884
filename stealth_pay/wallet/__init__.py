"""
StealthPay - Wallet Package
=============================
Stealth address lato sender, scanning lato recipient e keystore cifrato.
"""

from stealth_pay.wallet.stealth_address import (
    GeneratedStealthAddress,
    StealthMatch,
    StealthAddressGenerator,
    StealthScanner,
    StealthWallet,
)
from stealth_pay.wallet.keystore import StealthKeystore

__all__ = [
    "GeneratedStealthAddress",
    "StealthMatch",
    "StealthAddressGenerator",
    "StealthScanner",
    "StealthWallet",
    "StealthKeystore",
]
