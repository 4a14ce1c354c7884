"""
StealthPay - Agent Ledger Tests
=================================
Test registrazione agent, limiti giornalieri e reputazione.
"""

import pytest

from stealth_pay.constants import SECONDS_PER_DAY
from stealth_pay.errors import (
    AgentAlreadyRegistered,
    AgentInactive,
    ConfigError,
    InsufficientFunds,
    LimitExceeded,
    UnauthorizedCaller,
    ValidationError,
)
from stealth_pay.services.agent_registry import Agent, AgentLedger
from tests.conftest import NOW


OWNER = "0x" + "a1" * 20
ROUTER = "0x" + "40" * 20
BOT = "0x" + "b0" * 20
METADATA = "0x" + "00" * 32


@pytest.fixture
def agents():
    return AgentLedger(owner=OWNER, default_daily_limit=1_000, router=ROUTER)


class TestRegistration:
    """Test registrazione"""

    def test_register_defaults(self, agents):
        agent = agents.register_agent(BOT, METADATA, now=NOW)

        assert agent.reputation_score == 500
        assert agent.daily_spend_limit == 1_000
        assert agent.registered_at == NOW
        assert agents.is_registered(BOT)
        assert agents.total_agents == 1

    def test_double_registration(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        with pytest.raises(AgentAlreadyRegistered):
            agents.register_agent(BOT.upper().replace("0X", "0x"), METADATA, now=NOW)

    def test_registration_fee(self, ledger):
        """La fee di registrazione viene incassata sul ledger"""
        agents = AgentLedger(owner=OWNER, registration_fee=50, ledger=ledger)

        with pytest.raises(InsufficientFunds):
            agents.register_agent(BOT, METADATA, now=NOW)
        assert not agents.is_known(BOT)

        ledger.mint(BOT, 100)
        agents.register_agent(BOT, METADATA, now=NOW)
        assert ledger.balance_of(BOT) == 50
        assert ledger.balance_of(OWNER) == 50

    def test_fee_requires_ledger(self):
        with pytest.raises(ConfigError):
            AgentLedger(owner=OWNER, registration_fee=1)

    def test_on_change_callback(self):
        changes = []
        agents = AgentLedger(owner=OWNER, on_change=changes.append)
        agents.register_agent(BOT, METADATA, now=NOW)

        assert len(changes) == 1
        assert isinstance(changes[0], Agent)


class TestSpendLimits:
    """Test limiti giornalieri"""

    def test_limit_enforced(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        agents.record_transaction(ROUTER, BOT, 600, now=NOW)

        agents.check_transaction(BOT, 400, now=NOW)
        with pytest.raises(LimitExceeded):
            agents.check_transaction(BOT, 401, now=NOW)
        with pytest.raises(LimitExceeded):
            agents.record_transaction(ROUTER, BOT, 401, now=NOW + 10)

        assert agents.get_agent(BOT).spent_today == 600

    def test_window_resets_after_a_day(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        agents.record_transaction(ROUTER, BOT, 1_000, now=NOW)

        agent = agents.record_transaction(ROUTER, BOT, 1_000, now=NOW + SECONDS_PER_DAY)

        assert agent.spent_today == 1_000
        assert agent.last_reset_timestamp == NOW + SECONDS_PER_DAY
        assert agent.total_volume == 2_000

    def test_reserve_release_complete(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)

        agents.reserve_spend(ROUTER, BOT, 700, now=NOW)
        with pytest.raises(LimitExceeded):
            agents.reserve_spend(ROUTER, BOT, 301, now=NOW)

        agents.release_spend(ROUTER, BOT, 700)
        assert agents.get_agent(BOT).spent_today == 0

        agents.reserve_spend(ROUTER, BOT, 1_000, now=NOW)
        agents.set_daily_limit(BOT, 10)
        agent = agents.complete_transaction(ROUTER, BOT, 1_000)

        assert agent.spent_today == 1_000
        assert agent.total_transactions == 1
        assert agent.total_volume == 1_000

    def test_only_router_reserves(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        with pytest.raises(UnauthorizedCaller):
            agents.reserve_spend(BOT, BOT, 1, now=NOW)
        with pytest.raises(UnauthorizedCaller):
            agents.release_spend(BOT, BOT, 1)

    def test_only_router_records(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        with pytest.raises(UnauthorizedCaller):
            agents.record_transaction(BOT, BOT, 1, now=NOW)

    def test_self_service_limit(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        agents.set_daily_limit(BOT, 5_000)

        assert agents.get_agent(BOT).daily_spend_limit == 5_000
        with pytest.raises(ValidationError):
            agents.set_daily_limit(BOT, -1)

    def test_unknown_agent(self, agents):
        with pytest.raises(AgentInactive):
            agents.check_transaction(BOT, 1, now=NOW)


class TestReputationAndAdmin:
    """Test reputazione e funzioni owner"""

    def test_reputation_every_ten_transactions(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        for _ in range(9):
            agents.record_transaction(ROUTER, BOT, 1, now=NOW)
        assert agents.get_agent(BOT).reputation_score == 500

        agent = agents.record_transaction(ROUTER, BOT, 1, now=NOW)
        assert agent.reputation_score == 510
        assert agent.total_transactions == 10

    def test_reputation_capped(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        agents.update_reputation(OWNER, BOT, 1000)
        for _ in range(10):
            agents.record_transaction(ROUTER, BOT, 1, now=NOW)

        assert agents.get_agent(BOT).reputation_score == 1000

    def test_update_reputation_bounds(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)

        with pytest.raises(ValidationError) as exc_info:
            agents.update_reputation(OWNER, BOT, 1001)
        assert exc_info.value.code == "SCORE_OUT_OF_RANGE"

        with pytest.raises(UnauthorizedCaller):
            agents.update_reputation(BOT, BOT, 900)

    def test_deactivated_agent(self, agents):
        agents.register_agent(BOT, METADATA, now=NOW)
        agents.deactivate_agent(OWNER, BOT)

        assert not agents.is_registered(BOT)
        assert agents.is_known(BOT)
        with pytest.raises(AgentInactive):
            agents.check_transaction(BOT, 1, now=NOW)

        # Re-registrazione consentita dopo disattivazione
        agent = agents.register_agent(BOT, METADATA, now=NOW + 1)
        assert agent.is_active

    def test_agent_dict_roundtrip(self, agents):
        agent = agents.register_agent(BOT, METADATA, now=NOW)
        assert Agent.from_dict(agent.to_dict()) == agent
