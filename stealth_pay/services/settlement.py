"""
StealthPay - Payment Settlement
=================================
Orchestrazione x402: autorizzazione EIP-3009 -> fee -> stealth address
-> announcement.

Security Level: CRITICAL
Last Updated: 2026-10-19
Version: 1.0.0

State machine:
    IDLE -> VERIFYING -> FEE_ROUTING -> STEALTH_ROUTING -> ANNOUNCING -> SETTLED
    qualsiasi errore -> ABORTED

Ordine dei controlli in process_payment:
1. Check puri (pause, stealth address, importo, ephemeral key, view tag,
   finestra temporale, recipient, nonce, firma)
2. Burn (payer, nonce): da qui il nonce resta consumato anche se il
   settlement abortisce (at-most-once)
3. Compliance e riserva sul limite agent (nessun fondo mosso se rifiutato)
4. Redeem via ledger, fee al vault, netto allo stealth address
5. Un solo announcement, chiusura della riserva agent, receipt

Se un passo successivo alla riserva fallisce, la riserva viene rilasciata.

Tutte le mutazioni avvengono sotto un unico RLock (single writer).
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from stealth_pay.constants import (
    DEFAULT_FEE_BPS,
    MAX_BATCH_SIZE,
    MAX_FEE_BPS,
    SCHEME_ID_SECP256K1,
    SettlementState,
    compute_fee,
)
from stealth_pay.domain.addressing import (
    compare_addresses,
    require_nonzero_address,
)
from stealth_pay.domain.authorization import (
    AuthorizationVerifier,
    PaymentAuthorization,
    ProcessedNonceSet,
    TokenDomain,
)
from stealth_pay.errors import (
    BatchItemError,
    ComplianceRejected,
    ConfigError,
    FeeTooHighError,
    SettlementPaused,
    StealthPayException,
    ValidationError,
    require_role,
)
from stealth_pay.ledger.token_ledger import TokenLedger
from stealth_pay.logging_setup import AuditLogger, PerformanceLogger, get_logger, short_hex
from stealth_pay.services.agent_registry import AgentLedger
from stealth_pay.services.announcer import Announcement, AnnouncementLog
from stealth_pay.services.compliance import AllowAllCompliance, ComplianceChecker, ComplianceGate
from stealth_pay.services.fee_vault import FeeVault


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("settlement")


# ============================================================================
# RECEIPTS
# ============================================================================

@dataclass(frozen=True)
class SettlementReceipt:
    """
    Esito di un pagamento completato.

    Attributes:
        payer: Mittente dell'autorizzazione
        stealth_address: Destinatario one-time
        amount: Importo lordo (base units)
        fee: Fee trattenuta verso il FeeVault
        nonce: Nonce EIP-3009 (32 bytes)
        settled_at: Timestamp del settlement
        announcement_index: Posizione dell'announcement nel feed
    """
    payer: str
    stealth_address: str
    amount: int
    fee: int
    nonce: bytes
    settled_at: int
    announcement_index: int = -1

    @property
    def net_amount(self) -> int:
        return self.amount - self.fee

    @property
    def nonce_hex(self) -> str:
        return "0x" + self.nonce.hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payer": self.payer,
            "stealth_address": self.stealth_address,
            "amount": self.amount,
            "fee": self.fee,
            "net_amount": self.net_amount,
            "nonce": self.nonce_hex,
            "settled_at": self.settled_at,
            "announcement_index": self.announcement_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettlementReceipt":
        nonce = data["nonce"]
        if isinstance(nonce, str):
            nonce = bytes.fromhex(nonce.removeprefix("0x"))
        return cls(
            payer=data["payer"],
            stealth_address=data["stealth_address"],
            amount=int(data["amount"]),
            fee=int(data["fee"]),
            nonce=nonce,
            settled_at=int(data["settled_at"]),
            announcement_index=int(data.get("announcement_index", -1)),
        )


@dataclass(frozen=True)
class BatchReceipt:
    """Riepilogo di un batch completato"""
    receipts: Tuple[SettlementReceipt, ...] = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.receipts)

    @property
    def total_amount(self) -> int:
        return sum(r.amount for r in self.receipts)

    @property
    def total_fees(self) -> int:
        return sum(r.fee for r in self.receipts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "total_amount": self.total_amount,
            "total_fees": self.total_fees,
            "receipts": [r.to_dict() for r in self.receipts],
        }


@dataclass(frozen=True)
class PaymentItem:
    """Un elemento di batch_process_payments"""
    authorization: PaymentAuthorization
    stealth_address: str
    ephemeral_pub_key: bytes
    view_tag: int


PaymentItemLike = Union[PaymentItem, Tuple[PaymentAuthorization, str, bytes, int]]


# ============================================================================
# PAYMENT SETTLEMENT
# ============================================================================

class PaymentSettlement:
    """
    Settlement x402 con stealth address.

    Args:
        ledger: Ledger con transfer / transfer_with_authorization
        domain: Domain EIP-712 del token
        address: Account di custody del settlement (destinatario delle autorizzazioni)
        owner: Amministratore
        fee_vault: FeePool che riceve le fee
        announcer: Feed announcement (default: nuovo AnnouncementLog)
        agents: AgentLedger opzionale; il suo router deve essere `address`
        compliance: ComplianceChecker (default: AllowAllCompliance)
        fee_bps: Fee protocollo (max 100 = 1%)
        max_batch_size: Limite item per batch
        clock: Sorgente timestamp (secondi)
        database: SettlementDatabase opzionale (write-through e reload)
        audit: AuditLogger opzionale

    Examples:
        >>> settlement = PaymentSettlement(ledger, domain, custody, owner, vault)
        >>> receipt = settlement.process_payment(auth, stealth, ephemeral, view_tag)
        >>> receipt.fee
        1000
    """

    def __init__(
        self,
        ledger,
        domain: TokenDomain,
        address: str,
        owner: str,
        fee_vault: FeeVault,
        announcer: Optional[AnnouncementLog] = None,
        agents: Optional[AgentLedger] = None,
        compliance: Optional[ComplianceChecker] = None,
        fee_bps: int = DEFAULT_FEE_BPS,
        max_batch_size: int = MAX_BATCH_SIZE,
        clock: Optional[Callable[[], int]] = None,
        database=None,
        audit: Optional[AuditLogger] = None,
    ):
        self.ledger = ledger
        self.domain = domain
        self.address = require_nonzero_address(address, "settlement")
        self.owner = require_nonzero_address(owner, "owner")
        self.fee_vault = fee_vault
        self.announcer = announcer if announcer is not None else AnnouncementLog()
        self.compliance = compliance if compliance is not None else AllowAllCompliance()
        self.max_batch_size = max_batch_size
        self.clock = clock or (lambda: int(time.time()))
        self.database = database
        self.audit = audit

        self._validate_fee(fee_bps)
        self._fee_bps = fee_bps
        self._paused = False

        self.agents: Optional[AgentLedger] = None
        if agents is not None:
            self._check_agent_router(agents)
            self.agents = agents

        self.processed = ProcessedNonceSet()
        self.verifier = AuthorizationVerifier(ledger, domain, self.processed, self.address)

        self.state = SettlementState.IDLE
        self._receipts: Dict[Tuple[str, bytes], SettlementReceipt] = {}
        self._lock = threading.RLock()

        self.stats_counters: Dict[str, int] = {
            "payments_settled": 0,
            "payments_aborted": 0,
            "bridged_payments": 0,
            "total_volume": 0,
            "total_fees": 0,
            "batches_processed": 0,
        }

        if database is not None:
            self._attach_database(database)

        logger.info(
            "Settlement initialized",
            extra_data={
                "address": self.address,
                "fee_bps": self._fee_bps,
                "processed_nonces": len(self.processed),
                "announcements": self.announcer.announcement_count,
            }
        )

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def _attach_database(self, database) -> None:
        """Ripristina lo stato persistito e abilita il write-through"""
        for payer, nonce in database.load_processed_nonces():
            self.processed.add(payer, nonce)

        if self.announcer.announcement_count == 0:
            self.announcer.load(database.load_announcements())
        if self.announcer.on_append is None:
            self.announcer.on_append = database.save_announcement

        for receipt in database.load_receipts():
            self._receipts[(receipt.payer.lower(), receipt.nonce)] = receipt
            self.stats_counters["payments_settled"] += 1
            self.stats_counters["total_volume"] += receipt.amount
            self.stats_counters["total_fees"] += receipt.fee

        if self.agents is not None:
            self.agents.load(database.load_agents())
            if self.agents.on_change is None:
                self.agents.on_change = database.save_agent

        stored_fee = database.get_metadata("fee_bps")
        if stored_fee is not None:
            self._fee_bps = int(stored_fee)
        self._paused = database.get_metadata("paused") == "1"

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @staticmethod
    def _validate_fee(fee_bps: int) -> None:
        if fee_bps < 0:
            raise ValidationError("Fee cannot be negative", code="INVALID_FEE")
        if fee_bps > MAX_FEE_BPS:
            raise FeeTooHighError(
                "Fee too high",
                details={"fee_bps": fee_bps, "max": MAX_FEE_BPS}
            )

    def _check_agent_router(self, agents: AgentLedger) -> None:
        if agents.router is None or not compare_addresses(agents.router, self.address):
            raise ConfigError(
                "AgentLedger router must be the settlement address",
                details={"router": agents.router, "settlement": self.address}
            )

    def _now(self, now: Optional[int]) -> int:
        return self.clock() if now is None else now

    def _transition(self, state: SettlementState) -> None:
        self.state = state
        logger.debug("Settlement state", extra_data={"state": state.value})

    def _require_not_paused(self) -> None:
        if self._paused:
            raise SettlementPaused("Settlement is paused")

    def _precheck(
        self,
        auth: PaymentAuthorization,
        stealth_address: str,
        ephemeral_pub_key: bytes,
        view_tag: int,
        now: int,
    ) -> str:
        """Controlli puri, nessuna mutazione"""
        self._require_not_paused()

        if auth.value <= 0:
            raise ValidationError("Zero amount", code="ZERO_AMOUNT")

        stealth = self.announcer.validate(
            SCHEME_ID_SECP256K1, stealth_address, ephemeral_pub_key, view_tag
        )
        self.verifier.validate(auth, now)
        return stealth

    def _burn_nonce(self, auth: PaymentAuthorization, now: int) -> None:
        self.processed.add(auth.from_address, auth.nonce)
        if self.database is not None:
            self.database.record_processed_nonce(auth.from_address, auth.nonce, now)
        if self.audit is not None:
            self.audit.log_nonce_burned(auth.from_address, auth.nonce_hex)

    def _check_policy(self, auth: PaymentAuthorization, now: int) -> bool:
        """Compliance e riserva sul limite. True se è stata fatta una riserva."""
        if not self.compliance.check_compliance(auth.from_address, now):
            raise ComplianceRejected(
                "Compliance check failed",
                details={"payer": auth.from_address}
            )

        # Payer mai registrati non sono agent: nessun limite
        if self.agents is not None and self.agents.is_known(auth.from_address):
            self.agents.reserve_spend(self.address, auth.from_address, auth.value, now)
            return True
        return False

    def _abort(self, auth: PaymentAuthorization, reason: str, reserved: bool) -> None:
        if reserved:
            self.agents.release_spend(self.address, auth.from_address, auth.value)

        self._transition(SettlementState.ABORTED)
        self.stats_counters["payments_aborted"] += 1

        logger.warning(
            "Settlement aborted",
            extra_data={
                "payer": short_hex(auth.from_address),
                "nonce": short_hex(auth.nonce),
                "reason": reason,
            }
        )
        if self.audit is not None:
            self.audit.log_abort(auth.from_address, auth.nonce_hex, reason)

    # ========================================================================
    # PROCESS PAYMENT
    # ========================================================================

    def process_payment(
        self,
        authorization: PaymentAuthorization,
        stealth_address: str,
        ephemeral_pub_key: bytes,
        view_tag: int,
        caller: Optional[str] = None,
        now: Optional[int] = None,
    ) -> SettlementReceipt:
        """
        Processa un pagamento x402 verso uno stealth address.

        Args:
            authorization: TransferWithAuthorization firmata dal payer
            stealth_address: Destinatario one-time
            ephemeral_pub_key: E (33 o 65 bytes)
            view_tag: Primo byte dello shared secret hash
            caller: Facilitator che sottomette (solo logging)
            now: Override del clock

        Returns:
            SettlementReceipt

        Raises:
            SettlementPaused, ValidationError, AuthNotYetValid, AuthExpired,
            ReplayDetected, SignatureInvalid, ComplianceRejected,
            AgentInactive, LimitExceeded, InsufficientFunds,
            DuplicateAnnouncement
        """
        with self._lock:
            now = self._now(now)
            self._transition(SettlementState.VERIFYING)
            reserved = False

            try:
                ephemeral_pub_key = bytes(ephemeral_pub_key)
                stealth = self._precheck(
                    authorization, stealth_address, ephemeral_pub_key, view_tag, now
                )
                self._burn_nonce(authorization, now)
                reserved = self._check_policy(authorization, now)

                self.verifier.redeem(authorization, now)

                self._transition(SettlementState.FEE_ROUTING)
                fee = compute_fee(authorization.value, self._fee_bps)
                if fee:
                    self.ledger.transfer(self.address, self.fee_vault.address, fee)
                    self.fee_vault.record_collected(fee)

                self._transition(SettlementState.STEALTH_ROUTING)
                self.ledger.transfer(self.address, stealth, authorization.value - fee)

                self._transition(SettlementState.ANNOUNCING)
                announcement = self.announcer.announce(
                    SCHEME_ID_SECP256K1,
                    stealth,
                    self.address,
                    ephemeral_pub_key,
                    view_tag,
                    now=now,
                )

            except StealthPayException as e:
                self._abort(authorization, e.code, reserved)
                raise
            except Exception as e:
                self._abort(authorization, type(e).__name__, reserved)
                raise

            if reserved:
                self.agents.complete_transaction(
                    self.address, authorization.from_address, authorization.value
                )

            receipt = SettlementReceipt(
                payer=authorization.from_address,
                stealth_address=stealth,
                amount=authorization.value,
                fee=fee,
                nonce=authorization.nonce,
                settled_at=now,
                announcement_index=announcement.index,
            )
            self._receipts[(receipt.payer.lower(), receipt.nonce)] = receipt

            self.stats_counters["payments_settled"] += 1
            self.stats_counters["total_volume"] += receipt.amount
            self.stats_counters["total_fees"] += fee

            if self.database is not None:
                self.database.save_receipt(receipt)

            self._transition(SettlementState.SETTLED)

        logger.info(
            "Payment settled",
            extra_data={
                "payer": short_hex(receipt.payer),
                "stealth_address": short_hex(stealth),
                "amount": receipt.amount,
                "fee": fee,
                "caller": short_hex(caller) if caller else None,
            }
        )
        if self.audit is not None:
            self.audit.log_settlement(
                receipt.payer, stealth, receipt.amount, fee, receipt.nonce_hex
            )
        return receipt

    def batch_process_payments(
        self,
        items: Sequence[PaymentItemLike],
        caller: Optional[str] = None,
        now: Optional[int] = None,
    ) -> BatchReceipt:
        """
        Processa più pagamenti in ordine.

        Non transazionale: gli item già settled restano committati; il primo
        errore viene propagato come BatchItemError con index e receipts.

        Raises:
            ValidationError: Batch vuoto o oltre max_batch_size
            BatchItemError: Primo item fallito
        """
        items = list(items)
        if not items:
            raise ValidationError("Empty batch", code="EMPTY_BATCH")
        if len(items) > self.max_batch_size:
            raise ValidationError(
                "Batch too large",
                code="BATCH_TOO_LARGE",
                details={"size": len(items), "max": self.max_batch_size}
            )

        receipts: List[SettlementReceipt] = []

        with self._lock, PerformanceLogger(logger, f"batch of {len(items)} payments"):
            for index, raw_item in enumerate(items):
                item = raw_item if isinstance(raw_item, PaymentItem) else PaymentItem(*raw_item)
                try:
                    receipt = self.process_payment(
                        item.authorization,
                        item.stealth_address,
                        item.ephemeral_pub_key,
                        item.view_tag,
                        caller=caller,
                        now=now,
                    )
                except StealthPayException as e:
                    raise BatchItemError(index, e, receipts) from e
                receipts.append(receipt)

            self.stats_counters["batches_processed"] += 1

        batch = BatchReceipt(receipts=tuple(receipts))
        logger.info(
            "Batch processed",
            extra_data={
                "count": batch.count,
                "total_amount": batch.total_amount,
                "total_fees": batch.total_fees,
            }
        )
        return batch

    # ========================================================================
    # CROSS-DOMAIN
    # ========================================================================

    def route_bridged_payment(
        self,
        funder: str,
        stealth_address: str,
        amount: int,
        ephemeral_pub_key: bytes,
        view_tag: int,
        source_chain_id: int,
        now: Optional[int] = None,
    ) -> Announcement:
        """
        Replay di un pagamento cross-domain: `funder` (router locale)
        paga lo stealth address e si emette l'announcement, senza fee.

        Raises:
            SettlementPaused, ValidationError, DuplicateAnnouncement,
            InsufficientFunds
        """
        ephemeral_pub_key = bytes(ephemeral_pub_key)

        with self._lock:
            now = self._now(now)
            self._require_not_paused()
            if amount <= 0:
                raise ValidationError("Zero amount", code="ZERO_AMOUNT")

            stealth = self.announcer.validate(
                SCHEME_ID_SECP256K1, stealth_address, ephemeral_pub_key, view_tag
            )

            self.ledger.transfer(funder, stealth, amount)
            announcement = self.announcer.announce(
                SCHEME_ID_SECP256K1,
                stealth,
                funder,
                ephemeral_pub_key,
                view_tag,
                now=now,
            )
            self.stats_counters["bridged_payments"] += 1

        logger.info(
            "Bridged payment routed",
            extra_data={
                "stealth_address": short_hex(stealth),
                "amount": amount,
                "source_chain_id": source_chain_id,
            }
        )
        return announcement

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_fee(self, caller: str, fee_bps: int) -> None:
        """
        Raises:
            UnauthorizedCaller: Caller non owner
            FeeTooHighError: fee_bps > 100 (valore precedente mantenuto)
        """
        require_role(caller, self.owner, "owner")
        self._validate_fee(fee_bps)

        with self._lock:
            previous = self._fee_bps
            self._fee_bps = fee_bps
            if self.database is not None:
                self.database.set_metadata("fee_bps", str(fee_bps))

        logger.info("Fee updated", extra_data={"previous": previous, "fee_bps": fee_bps})

    def pause(self, caller: str) -> None:
        require_role(caller, self.owner, "owner")
        with self._lock:
            self._paused = True
            if self.database is not None:
                self.database.set_metadata("paused", "1")
        logger.warning("Settlement paused")

    def unpause(self, caller: str) -> None:
        require_role(caller, self.owner, "owner")
        with self._lock:
            self._paused = False
            if self.database is not None:
                self.database.set_metadata("paused", "0")
        logger.info("Settlement unpaused")

    def set_agent_ledger(self, caller: str, agents: Optional[AgentLedger]) -> None:
        require_role(caller, self.owner, "owner")
        if agents is not None:
            self._check_agent_router(agents)
        with self._lock:
            self.agents = agents

    def set_compliance(self, caller: str, compliance: Optional[ComplianceChecker]) -> None:
        require_role(caller, self.owner, "owner")
        with self._lock:
            self.compliance = compliance if compliance is not None else AllowAllCompliance()

    def emergency_withdraw(self, caller: str, amount: int) -> None:
        """
        Preleva fondi rimasti in custody verso l'owner.

        Raises:
            UnauthorizedCaller, ValidationError, InsufficientFunds
        """
        require_role(caller, self.owner, "owner")
        if amount <= 0:
            raise ValidationError("Zero amount", code="ZERO_AMOUNT")

        with self._lock:
            self.ledger.transfer(self.address, self.owner, amount)

        logger.warning(
            "Emergency withdraw",
            extra_data={"owner": self.owner, "amount": amount}
        )

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    @property
    def paused(self) -> bool:
        return self._paused

    def is_processed(self, payer: str, nonce: Union[bytes, str]) -> bool:
        if isinstance(nonce, str):
            nonce = bytes.fromhex(nonce.removeprefix("0x"))
        return (payer, nonce) in self.processed

    def get_receipt(self, payer: str, nonce: Union[bytes, str]) -> Optional[SettlementReceipt]:
        if isinstance(nonce, str):
            nonce = bytes.fromhex(nonce.removeprefix("0x"))
        with self._lock:
            return self._receipts.get((payer.lower(), bytes(nonce)))

    def receipts(self) -> List[SettlementReceipt]:
        with self._lock:
            return sorted(self._receipts.values(), key=lambda r: (r.settled_at, r.announcement_index))

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            data = dict(self.stats_counters)
            data.update({
                "processed_nonces": len(self.processed),
                "announcements": self.announcer.announcement_count,
                "fee_bps": self._fee_bps,
                "paused": self._paused,
                "custody_balance": self.ledger.balance_of(self.address),
                "fee_vault_balance": self.fee_vault.balance,
                "registered_agents": self.agents.total_agents if self.agents else 0,
            })
        return data

    def info(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "owner": self.owner,
            "fee_vault": self.fee_vault.address,
            "token_domain": self.domain.to_eip712(),
            "fee_bps": self._fee_bps,
            "max_batch_size": self.max_batch_size,
            "paused": self._paused,
            "state": self.state.value,
        }


# ============================================================================
# FACTORY
# ============================================================================

def build_settlement(
    settings,
    ledger=None,
    database=None,
    clock: Optional[Callable[[], int]] = None,
    audit: Optional[AuditLogger] = None,
) -> PaymentSettlement:
    """
    Costruisce un PaymentSettlement cablato dalla configurazione.

    Crea TokenLedger, FeeVault, AnnouncementLog, AgentLedger (router =
    settlement) e ComplianceGate secondo `settings`.
    """
    domain = TokenDomain.from_settings(settings)
    if ledger is None:
        ledger = TokenLedger(domain)

    vault = FeeVault(
        ledger,
        address=settings.fee_vault_address,
        owner=settings.owner_address,
        treasury=settings.treasury_address or settings.owner_address,
        audit=audit,
    )
    agents = AgentLedger(
        owner=settings.owner_address,
        default_daily_limit=settings.agent_daily_limit,
        registration_fee=settings.agent_registration_fee,
        ledger=ledger,
        fee_recipient=settings.fee_vault_address,
        router=settings.settlement_address,
    )
    compliance = ComplianceGate(
        owner=settings.owner_address,
        required=settings.compliance_enabled,
        expiry=settings.compliance_expiry_seconds,
    )

    return PaymentSettlement(
        ledger,
        domain,
        address=settings.settlement_address,
        owner=settings.owner_address,
        fee_vault=vault,
        agents=agents,
        compliance=compliance,
        fee_bps=settings.fee_bps,
        max_batch_size=settings.max_batch_size,
        clock=clock,
        database=database,
        audit=audit,
    )


__all__ = [
    "SettlementReceipt",
    "BatchReceipt",
    "PaymentItem",
    "PaymentSettlement",
    "build_settlement",
]
