"""
StealthPay - Agent Ledger
===========================
Registro agent autonomi: limiti di spesa giornalieri e reputazione.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Features:
- Registrazione agent (fee opzionale via ledger)
- Daily spend limit con finestra di 24h
- Statistiche transazioni e volume
- Reputazione automatica (+10 ogni 10 transazioni, cap 1000)
- Amministrazione (reputazione, disattivazione)
"""

import threading
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterable, Optional

from stealth_pay.constants import (
    DEFAULT_DAILY_SPEND_LIMIT,
    INITIAL_REPUTATION,
    MAX_REPUTATION,
    REPUTATION_INCREMENT,
    REPUTATION_TX_INTERVAL,
    SECONDS_PER_DAY,
)
from stealth_pay.domain.addressing import normalize_address, require_nonzero_address
from stealth_pay.errors import (
    AgentAlreadyRegistered,
    AgentInactive,
    ConfigError,
    LimitExceeded,
    ValidationError,
    require_role,
)
from stealth_pay.logging_setup import get_logger, short_hex


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("agents")


# ============================================================================
# AGENT RECORD
# ============================================================================

@dataclass
class Agent:
    """
    Record di un agent registrato.

    Attributes:
        owner: Identità dell'agent (indirizzo payer)
        metadata_hash: Hash dei metadata off-chain (hex)
        daily_spend_limit: Limite giornaliero (base units)
        spent_today: Speso nella finestra corrente
        last_reset_timestamp: Inizio finestra corrente
        reputation_score: 0..1000
        total_transactions: Numero pagamenti registrati
        total_volume: Volume totale (base units)
        is_active: False dopo deactivate_agent
        registered_at: Timestamp registrazione
    """
    owner: str
    metadata_hash: str
    daily_spend_limit: int
    spent_today: int = 0
    last_reset_timestamp: int = 0
    reputation_score: int = INITIAL_REPUTATION
    total_transactions: int = 0
    total_volume: int = 0
    is_active: bool = True
    registered_at: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        return cls(**data)

    def spent_in_window(self, now: int) -> int:
        """Speso nella finestra valida a `now` (0 se la finestra è scaduta)"""
        if now >= self.last_reset_timestamp + SECONDS_PER_DAY:
            return 0
        return self.spent_today


# ============================================================================
# AGENT LEDGER
# ============================================================================

class AgentLedger:
    """
    Registro agent con enforcement dei limiti di spesa.

    Args:
        owner: Amministratore (reputazione, disattivazione, router)
        default_daily_limit: Limite assegnato alla registrazione
        registration_fee: Fee di registrazione (0 = gratuita)
        ledger: Ledger per incassare la fee (richiesto se fee > 0)
        fee_recipient: Destinatario della fee di registrazione
        clock: Sorgente timestamp (int secondi)
        on_change: Callback invocato dopo ogni mutazione (persistence)

    Examples:
        >>> agents = AgentLedger(owner=admin)
        >>> agents.register_agent(bot, "0x" + "00" * 32, now=1_700_000_000)
        >>> agents.get_agent(bot).reputation_score
        500
    """

    def __init__(
        self,
        owner: str,
        default_daily_limit: int = DEFAULT_DAILY_SPEND_LIMIT,
        registration_fee: int = 0,
        ledger=None,
        fee_recipient: Optional[str] = None,
        router: Optional[str] = None,
        on_change: Optional[Callable[[Agent], None]] = None,
    ):
        if registration_fee and ledger is None:
            raise ConfigError("registration_fee requires a ledger to collect it")

        self.owner = normalize_address(owner, "owner")
        self.default_daily_limit = default_daily_limit
        self.registration_fee = registration_fee
        self.ledger = ledger
        self.fee_recipient = normalize_address(fee_recipient or owner, "fee_recipient")
        self.router = normalize_address(router, "router") if router else None
        self.on_change = on_change

        self._agents: Dict[str, Agent] = {}
        self._lock = threading.RLock()

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @staticmethod
    def _key(identity: str) -> str:
        return normalize_address(identity, "agent").lower()

    def _notify(self, agent: Agent) -> None:
        if self.on_change is not None:
            self.on_change(agent)

    def _require_agent(self, identity: str) -> Agent:
        agent = self._agents.get(self._key(identity))
        if agent is None:
            raise AgentInactive(
                "Agent not registered",
                details={"agent": identity}
            )
        return agent

    def load(self, agents: Iterable[Agent]) -> None:
        """Ripristina agent persistiti"""
        with self._lock:
            for agent in agents:
                self._agents[self._key(agent.owner)] = agent

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_agent(self, identity: str, metadata_hash: str, now: int) -> Agent:
        """
        Registra un agent con reputazione 500 e limite di default.

        Raises:
            AgentAlreadyRegistered: Agent già attivo
            InsufficientFunds: Fee di registrazione non pagabile
        """
        owner = require_nonzero_address(identity, "agent")

        with self._lock:
            existing = self._agents.get(owner.lower())
            if existing is not None and existing.is_active:
                raise AgentAlreadyRegistered(
                    "Agent already registered",
                    details={"agent": owner}
                )

            if self.registration_fee:
                self.ledger.transfer(owner, self.fee_recipient, self.registration_fee)

            agent = Agent(
                owner=owner,
                metadata_hash=metadata_hash,
                daily_spend_limit=self.default_daily_limit,
                last_reset_timestamp=now,
                registered_at=now,
            )
            self._agents[owner.lower()] = agent

        logger.info(
            "Agent registered",
            extra_data={"agent": short_hex(owner), "daily_limit": agent.daily_spend_limit}
        )
        self._notify(agent)
        return agent

    # ========================================================================
    # SPEND LIMITS
    # ========================================================================

    def check_transaction(self, identity: str, amount: int, now: int) -> None:
        """
        Verifica, senza mutare, che `amount` stia nel limite giornaliero.

        Raises:
            AgentInactive: Agent sconosciuto o disattivato
            LimitExceeded: spent_today + amount > daily_spend_limit
        """
        with self._lock:
            agent = self._require_agent(identity)
            if not agent.is_active:
                raise AgentInactive("Agent is deactivated", details={"agent": agent.owner})

            spent = agent.spent_in_window(now)
            if spent + amount > agent.daily_spend_limit:
                raise LimitExceeded(
                    "Daily limit exceeded",
                    details={
                        "agent": agent.owner,
                        "spent_today": spent,
                        "amount": amount,
                        "daily_limit": agent.daily_spend_limit,
                    }
                )

    def reserve_spend(self, caller: str, identity: str, amount: int, now: int) -> Agent:
        """
        Check e incremento di spent_today in un'unica sezione critica (solo router).

        La riserva precede lo spostamento dei fondi: una modifica concorrente
        del limite non può più rifiutare un pagamento già riservato.

        Raises:
            UnauthorizedCaller: Caller non è il router
            AgentInactive, LimitExceeded: Come check_transaction
        """
        require_role(caller, self.router, "router")

        with self._lock:
            self.check_transaction(identity, amount, now)
            agent = self._require_agent(identity)

            if now >= agent.last_reset_timestamp + SECONDS_PER_DAY:
                agent.spent_today = 0
                agent.last_reset_timestamp = now

            agent.spent_today += amount
        return agent

    def release_spend(self, caller: str, identity: str, amount: int) -> Agent:
        """Annulla una riserva di un pagamento poi fallito (solo router)"""
        require_role(caller, self.router, "router")

        with self._lock:
            agent = self._require_agent(identity)
            agent.spent_today = max(agent.spent_today - amount, 0)

        logger.debug(
            "Agent reservation released",
            extra_data={"agent": short_hex(agent.owner), "amount": amount}
        )
        self._notify(agent)
        return agent

    def record_transaction(self, caller: str, identity: str, amount: int, now: int) -> Agent:
        """
        Registra un pagamento completato (solo router).

        - Reset finestra se sono passate 24h
        - Aggiorna spent_today, totali
        - +10 reputazione ogni 10 transazioni (cap 1000)

        Raises:
            UnauthorizedCaller: Caller non è il router
            AgentInactive, LimitExceeded: Come check_transaction
        """
        with self._lock:
            self.reserve_spend(caller, identity, amount, now)
            return self.complete_transaction(caller, identity, amount)

    def complete_transaction(self, caller: str, identity: str, amount: int) -> Agent:
        """
        Chiude una riserva: totali e reputazione, senza ricontrollare il limite.

        Raises:
            UnauthorizedCaller: Caller non è il router
            AgentInactive: Agent sconosciuto
        """
        require_role(caller, self.router, "router")

        with self._lock:
            agent = self._require_agent(identity)
            agent.total_transactions += 1
            agent.total_volume += amount

            if agent.total_transactions % REPUTATION_TX_INTERVAL == 0:
                agent.reputation_score = min(
                    agent.reputation_score + REPUTATION_INCREMENT,
                    MAX_REPUTATION
                )

        logger.debug(
            "Agent transaction recorded",
            extra_data={
                "agent": short_hex(agent.owner),
                "amount": amount,
                "spent_today": agent.spent_today,
            }
        )
        self._notify(agent)
        return agent

    def set_daily_limit(self, caller: str, new_limit: int) -> Agent:
        """Self-service: un agent attivo imposta il proprio limite"""
        if new_limit < 0:
            raise ValidationError("Daily limit cannot be negative")

        with self._lock:
            agent = self._require_agent(caller)
            if not agent.is_active:
                raise AgentInactive("Agent is deactivated", details={"agent": agent.owner})
            agent.daily_spend_limit = new_limit

        logger.info(
            "Daily limit updated",
            extra_data={"agent": short_hex(agent.owner), "daily_limit": new_limit}
        )
        self._notify(agent)
        return agent

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_router(self, caller: str, router: str) -> None:
        require_role(caller, self.owner, "owner")
        self.router = normalize_address(router, "router")

    def update_reputation(self, caller: str, identity: str, score: int) -> Agent:
        """
        Raises:
            UnauthorizedCaller: Caller non owner
            ValidationError: score fuori da [0, 1000]
        """
        require_role(caller, self.owner, "owner")
        if not 0 <= score <= MAX_REPUTATION:
            raise ValidationError(
                "Score exceeds max",
                code="SCORE_OUT_OF_RANGE",
                details={"score": score, "max": MAX_REPUTATION}
            )

        with self._lock:
            agent = self._require_agent(identity)
            agent.reputation_score = score

        logger.info(
            "Reputation updated",
            extra_data={"agent": short_hex(agent.owner), "score": score}
        )
        self._notify(agent)
        return agent

    def deactivate_agent(self, caller: str, identity: str) -> Agent:
        require_role(caller, self.owner, "owner")

        with self._lock:
            agent = self._require_agent(identity)
            agent.is_active = False

        logger.warning("Agent deactivated", extra_data={"agent": short_hex(agent.owner)})
        self._notify(agent)
        return agent

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_agent(self, identity: str) -> Optional[Agent]:
        with self._lock:
            return self._agents.get(self._key(identity))

    def is_registered(self, identity: str) -> bool:
        """True solo per agent registrati e attivi"""
        agent = self.get_agent(identity)
        return agent is not None and agent.is_active

    def is_known(self, identity: str) -> bool:
        """True per qualsiasi agent mai registrato (anche disattivato)"""
        return self.get_agent(identity) is not None

    @property
    def total_agents(self) -> int:
        with self._lock:
            return len(self._agents)


__all__ = [
    "Agent",
    "AgentLedger",
]
