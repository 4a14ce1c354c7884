"""
StealthPay - Authorization & Ledger Tests
===========================================
Test TransferWithAuthorization (EIP-3009) e TokenLedger.
"""

import pytest

from stealth_pay.domain.authorization import (
    AuthorizationVerifier,
    PaymentAuthorization,
    ProcessedNonceSet,
    recover_authorization_signer,
    sign_transfer_authorization,
)
from stealth_pay.errors import (
    AuthExpired,
    AuthNotYetValid,
    InsufficientFunds,
    ReplayDetected,
    SignatureInvalid,
    ValidationError,
)
from tests.conftest import NOW, PAYER_KEY


class TestPaymentAuthorization:
    """Test firma e recovery"""

    def test_sign_and_recover(self, test_config, token_domain, payer):
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=1_000_000, now=NOW
        )

        assert auth.from_address == payer.address
        assert auth.valid_after == 0
        assert auth.valid_before == NOW + 3600
        assert len(auth.nonce) == 32
        assert len(auth.signature) == 65
        assert recover_authorization_signer(auth, token_domain) == payer.address

    def test_dict_roundtrip(self, test_config, token_domain):
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=5, now=NOW
        )
        assert PaymentAuthorization.from_dict(auth.to_dict()) == auth

    def test_invalid_nonce_length(self, payer, test_config):
        with pytest.raises(ValidationError):
            PaymentAuthorization(
                from_address=payer.address,
                to=test_config.settlement_address,
                value=1,
                valid_after=0,
                valid_before=NOW,
                nonce=b"\x01" * 31,
            )

    def test_other_domain_fails_verification(self, test_config, token_domain):
        """Firma legata a chain id e verifyingContract"""
        from stealth_pay.domain.authorization import TokenDomain, verify_authorization_signature

        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=1, now=NOW
        )
        other = TokenDomain(verifying_contract=token_domain.verifying_contract, chain_id=8453)

        with pytest.raises(SignatureInvalid):
            verify_authorization_signature(auth, other)


class TestAuthorizationVerifier:
    """Test validazione lato settlement"""

    @pytest.fixture
    def verifier(self, ledger, token_domain, test_config):
        return AuthorizationVerifier(
            ledger, token_domain, ProcessedNonceSet(), test_config.settlement_address
        )

    def test_time_window(self, verifier, test_config, token_domain):
        auth = sign_transfer_authorization(
            PAYER_KEY,
            token_domain,
            to=test_config.settlement_address,
            value=1,
            valid_after=NOW,
            valid_before=NOW + 10,
        )

        with pytest.raises(AuthNotYetValid):
            verifier.validate(auth, NOW - 1)
        with pytest.raises(AuthExpired):
            verifier.validate(auth, NOW + 10)

        verifier.validate(auth, NOW)
        verifier.validate(auth, NOW + 9)

    def test_wrong_recipient(self, verifier, token_domain):
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to="0x" + "99" * 20, value=1, now=NOW
        )
        with pytest.raises(ValidationError) as exc_info:
            verifier.validate(auth, NOW)
        assert exc_info.value.code == "WRONG_AUTHORIZATION_RECIPIENT"

    def test_processed_nonce_rejected(self, verifier, test_config, token_domain):
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=1, now=NOW
        )
        verifier.processed.add(auth.from_address.lower(), auth.nonce)

        with pytest.raises(ReplayDetected):
            verifier.validate(auth, NOW)

    def test_tampered_value(self, verifier, test_config, token_domain):
        """Firma valida per un altro importo"""
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=1, now=NOW
        )
        tampered = PaymentAuthorization(
            from_address=auth.from_address,
            to=auth.to,
            value=1_000_000,
            valid_after=auth.valid_after,
            valid_before=auth.valid_before,
            nonce=auth.nonce,
            signature=auth.signature,
        )

        with pytest.raises(SignatureInvalid):
            verifier.validate(tampered, NOW)


class TestProcessedNonceSet:

    def test_insert_if_absent(self):
        nonces = ProcessedNonceSet()
        payer = "0x" + "aB" * 20

        assert nonces.add(payer, b"\x01" * 32)
        assert not nonces.add(payer.lower(), b"\x01" * 32)
        assert (payer.upper().replace("0X", "0x"), b"\x01" * 32) in nonces
        assert len(nonces) == 1


class TestTokenLedger:
    """Test ledger di riferimento"""

    def test_mint_and_transfer(self, ledger, payer, other_payer):
        ledger.mint(payer.address, 100)
        ledger.transfer(payer.address, other_payer.address, 40)

        assert ledger.balance_of(payer.address) == 60
        assert ledger.balance_of(other_payer.address) == 40
        assert ledger.total_supply == 100

    def test_insufficient_funds_leaves_balances(self, ledger, payer, other_payer):
        ledger.mint(payer.address, 10)

        with pytest.raises(InsufficientFunds):
            ledger.transfer(payer.address, other_payer.address, 11)

        assert ledger.balance_of(payer.address) == 10
        assert ledger.balance_of(other_payer.address) == 0

    def test_transfer_with_authorization_once(self, ledger, funded_payer, test_config, token_domain):
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=1_000, now=NOW
        )

        ledger.transfer_with_authorization(auth, NOW)

        assert ledger.balance_of(test_config.settlement_address) == 1_000
        assert ledger.authorization_state(funded_payer.address, auth.nonce)

        with pytest.raises(ReplayDetected):
            ledger.transfer_with_authorization(auth, NOW)
        assert ledger.balance_of(test_config.settlement_address) == 1_000

    def test_transfer_with_authorization_expired(self, ledger, funded_payer, test_config, token_domain):
        auth = sign_transfer_authorization(
            PAYER_KEY, token_domain, to=test_config.settlement_address, value=1_000, now=NOW
        )

        with pytest.raises(AuthExpired):
            ledger.transfer_with_authorization(auth, auth.valid_before)
        assert not ledger.authorization_state(funded_payer.address, auth.nonce)
