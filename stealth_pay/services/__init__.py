"""
StealthPay - Services Package
===============================
Settlement, announcer, agent, compliance, fee vault, registry e router cross-chain.
"""

from stealth_pay.services.announcer import Announcement, AnnouncementLog
from stealth_pay.services.agent_registry import Agent, AgentLedger
from stealth_pay.services.compliance import ComplianceGate
from stealth_pay.services.fee_vault import FeeVault
from stealth_pay.services.meta_registry import StealthMetaRegistry
from stealth_pay.services.settlement import PaymentSettlement, SettlementReceipt, build_settlement
from stealth_pay.services.cross_chain import CrossChainMessage, CrossChainRouter, InMemoryBridge

__all__ = [
    "Announcement",
    "AnnouncementLog",
    "Agent",
    "AgentLedger",
    "ComplianceGate",
    "FeeVault",
    "StealthMetaRegistry",
    "PaymentSettlement",
    "SettlementReceipt",
    "build_settlement",
    "CrossChainMessage",
    "CrossChainRouter",
    "InMemoryBridge",
]
