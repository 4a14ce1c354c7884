"""
StealthPay - Storage Package
"""

from stealth_pay.storage.db import SettlementDatabase

__all__ = ["SettlementDatabase"]
