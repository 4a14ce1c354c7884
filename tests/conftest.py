"""
StealthPay - Pytest Configuration
===================================
Fixtures e configurazione per testing.

Last Updated: 2026-10-19
Version: 1.0.0
"""

import shutil
import tempfile
from pathlib import Path

import pytest
from eth_account import Account

# Internal imports
from stealth_pay.config import StealthPaySettings, override_settings
from stealth_pay.domain.authorization import TokenDomain, sign_transfer_authorization
from stealth_pay.domain.keypairs import generate_key_pair
from stealth_pay.ledger.token_ledger import TokenLedger
from stealth_pay.services.settlement import build_settlement
from stealth_pay.storage.db import SettlementDatabase
from stealth_pay.wallet.stealth_address import StealthAddressGenerator, StealthWallet


# Timestamp fisso per tutti i test
NOW = 1_700_000_000

PAYER_KEY = "0x" + "11" * 32
OTHER_PAYER_KEY = "0x" + "22" * 32


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================

@pytest.fixture
def temp_data_dir():
    """Temporary data directory"""
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def test_config(temp_data_dir) -> StealthPaySettings:
    """Test configuration"""
    return override_settings(
        dev_mode=True,
        chain_id=137,
        fee_bps=10,
        data_dir=temp_data_dir / "data",
        keystore_dir=temp_data_dir / "keystore",
        log_dir=temp_data_dir / "logs",
        api_enable_cors=False,
    )


@pytest.fixture
def clock():
    """Clock fisso"""
    return lambda: NOW


# ============================================================================
# LEDGER FIXTURES
# ============================================================================

@pytest.fixture
def token_domain(test_config) -> TokenDomain:
    return TokenDomain.from_settings(test_config)


@pytest.fixture
def ledger(token_domain) -> TokenLedger:
    return TokenLedger(token_domain)


@pytest.fixture
def payer():
    """Account payer (10 USDC sul ledger tramite funded_payer)"""
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def other_payer():
    return Account.from_key(OTHER_PAYER_KEY)


@pytest.fixture
def funded_payer(ledger, payer):
    ledger.mint(payer.address, 10_000_000)
    return payer


# ============================================================================
# SETTLEMENT FIXTURES
# ============================================================================

@pytest.fixture
def settlement(test_config, ledger, clock):
    """PaymentSettlement cablato dalla configurazione di test"""
    return build_settlement(test_config, ledger=ledger, clock=clock)


@pytest.fixture
def test_database(test_config):
    """Test database"""
    db = SettlementDatabase(test_config.db_path)
    yield db
    db.close()


# ============================================================================
# STEALTH FIXTURES
# ============================================================================

@pytest.fixture
def recipient_keys():
    return generate_key_pair()


@pytest.fixture
def recipient_wallet(recipient_keys) -> StealthWallet:
    return StealthWallet(recipient_keys)


@pytest.fixture
def stealth_generator() -> StealthAddressGenerator:
    return StealthAddressGenerator()


@pytest.fixture
def make_payment(test_config, token_domain, stealth_generator, recipient_keys):
    """
    Factory: autorizzazione firmata + stealth address fresco.

    Example:
        auth, generated = make_payment(1_000_000)
    """
    def _make(value, private_key=PAYER_KEY, **auth_kwargs):
        auth_kwargs.setdefault("now", NOW)
        authorization = sign_transfer_authorization(
            private_key,
            token_domain,
            to=test_config.settlement_address,
            value=value,
            **auth_kwargs,
        )
        generated = stealth_generator.generate(recipient_keys.meta_address)
        return authorization, generated

    return _make
