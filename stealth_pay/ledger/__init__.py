"""
StealthPay - Ledger Package
=============================
Saldi token in memoria (base units).
"""

from stealth_pay.ledger.token_ledger import LedgerProtocol, TokenLedger

__all__ = [
    "LedgerProtocol",
    "TokenLedger",
]
