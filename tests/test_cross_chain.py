"""
StealthPay - Cross-Chain Router Tests
=======================================
Test pagamenti stealth tra due domini collegati da InMemoryBridge.
"""

import pytest

from stealth_pay.domain.authorization import TokenDomain
from stealth_pay.errors import (
    CrossChainError,
    InsufficientFunds,
    ReplayDetected,
    UnauthorizedCaller,
    ValidationError,
)
from stealth_pay.ledger.token_ledger import TokenLedger
from stealth_pay.services.cross_chain import (
    CrossChainMessage,
    CrossChainRouter,
    InMemoryBridge,
)
from tests.conftest import NOW


SOURCE_CHAIN = 8453
DEST_CHAIN = 137

BRIDGE = "0x" + "b1" * 20
ROUTER_A = "0x" + "a0" * 20
ROUTER_B = "0x" + "b0" * 20
SENDER = "0x" + "5e" * 20


@pytest.fixture
def bridge():
    return InMemoryBridge(BRIDGE)


@pytest.fixture
def source_ledger(test_config):
    return TokenLedger(TokenDomain(verifying_contract=test_config.token_address, chain_id=SOURCE_CHAIN))


@pytest.fixture
def source_router(source_ledger, bridge, test_config):
    router = CrossChainRouter(source_ledger, ROUTER_A, test_config.owner_address, SOURCE_CHAIN, bridge)
    router.set_remote_router(test_config.owner_address, DEST_CHAIN, ROUTER_B)
    source_ledger.mint(SENDER, 1_000)
    return router


@pytest.fixture
def dest_router(ledger, bridge, settlement, test_config):
    router = CrossChainRouter(
        ledger, ROUTER_B, test_config.owner_address, DEST_CHAIN, bridge, settlement=settlement
    )
    ledger.mint(ROUTER_B, 10_000)
    return router


def _send(router, generated, amount=500):
    return router.send_cross_chain_payment(
        SENDER,
        DEST_CHAIN,
        generated.stealth_address,
        amount,
        generated.ephemeral_pub_key,
        generated.view_tag,
    )


class TestCrossChainMessage:

    def test_encode_decode(self, stealth_generator, recipient_keys):
        generated = stealth_generator.generate(recipient_keys.meta_address)
        message = CrossChainMessage(
            sender=SENDER.lower(),
            stealth_address=generated.stealth_address,
            amount=123,
            ephemeral_pub_key=generated.ephemeral_pub_key,
            view_tag=generated.view_tag,
            source_chain_id=SOURCE_CHAIN,
        )

        decoded = CrossChainMessage.decode(message.encode())

        assert decoded.stealth_address == generated.stealth_address
        assert decoded.ephemeral_pub_key == generated.ephemeral_pub_key
        assert decoded.amount == 123
        assert decoded.source_chain_id == SOURCE_CHAIN

    def test_malformed(self):
        with pytest.raises(CrossChainError) as exc_info:
            CrossChainMessage.decode(b"\x00" * 10)
        assert exc_info.value.code == "MALFORMED_MESSAGE"


class TestCrossChainRouter:
    """Test flusso sorgente -> bridge -> destinazione"""

    def test_end_to_end(self, source_router, dest_router, source_ledger, ledger, bridge,
                        settlement, stealth_generator, recipient_wallet):
        generated = stealth_generator.generate(recipient_wallet.meta_address)

        _send(source_router, generated)

        assert source_ledger.balance_of(SENDER) == 500
        assert source_ledger.balance_of(ROUTER_A) == 500
        assert bridge.message_count == 1

        assert bridge.relay_all({DEST_CHAIN: dest_router}) == 1

        # Nessuna fee sui pagamenti bridged
        assert ledger.balance_of(generated.stealth_address) == 500
        assert ledger.balance_of(ROUTER_B) == 9_500

        announcement = settlement.announcer.get_by_stealth_address(generated.stealth_address)
        assert announcement.caller.lower() == ROUTER_B
        assert announcement.timestamp == NOW
        assert recipient_wallet.check(announcement) is not None

        assert dest_router.is_message_processed(bridge.messages[0].message)
        assert bridge.relay_all({DEST_CHAIN: dest_router}) == 0

    def test_replay_rejected(self, source_router, dest_router, bridge, stealth_generator, recipient_keys):
        _send(source_router, stealth_generator.generate(recipient_keys.meta_address))
        bridge.relay_all({DEST_CHAIN: dest_router})

        with pytest.raises(ReplayDetected):
            dest_router.receive_cross_chain_payment(BRIDGE, bridge.messages[0].message)

    def test_only_bridge_delivers(self, source_router, dest_router, bridge, stealth_generator, recipient_keys):
        _send(source_router, stealth_generator.generate(recipient_keys.meta_address))

        with pytest.raises(UnauthorizedCaller):
            dest_router.receive_cross_chain_payment(SENDER, bridge.messages[0].message)

    def test_failed_delivery_can_be_retried(self, source_router, dest_router, ledger, bridge,
                                             stealth_generator, recipient_keys, test_config):
        """Il message hash è marcato solo dopo il successo"""
        generated = stealth_generator.generate(recipient_keys.meta_address)
        _send(source_router, generated)
        dest_router.emergency_withdraw(test_config.owner_address, 10_000)

        with pytest.raises(InsufficientFunds):
            bridge.relay(0, dest_router)
        assert not dest_router.is_message_processed(bridge.messages[0].message)

        ledger.mint(ROUTER_B, 500)
        bridge.relay(0, dest_router)
        assert ledger.balance_of(generated.stealth_address) == 500

    def test_send_requires_remote_router(self, source_router, stealth_generator, recipient_keys):
        generated = stealth_generator.generate(recipient_keys.meta_address)

        with pytest.raises(CrossChainError) as exc_info:
            source_router.send_cross_chain_payment(
                SENDER, 10, generated.stealth_address, 1,
                generated.ephemeral_pub_key, generated.view_tag,
            )
        assert exc_info.value.code == "NO_REMOTE_ROUTER"

        with pytest.raises(ValidationError) as exc_info:
            _send(source_router, generated, amount=0)
        assert exc_info.value.code == "ZERO_AMOUNT"

    def test_send_insufficient_funds(self, source_router, source_ledger, bridge, stealth_generator, recipient_keys):
        with pytest.raises(InsufficientFunds):
            _send(source_router, stealth_generator.generate(recipient_keys.meta_address), amount=5_000)

        assert bridge.message_count == 0
        assert source_ledger.balance_of(SENDER) == 1_000

    @pytest.mark.parametrize("ephemeral_size,view_tag,code", [
        (33, 256, "INVALID_VIEW_TAG"),
        (33, -1, "INVALID_VIEW_TAG"),
        (20, 7, "INVALID_EPHEMERAL_KEY"),
    ])
    def test_send_invalid_payload_locks_nothing(self, source_router, source_ledger, bridge,
                                                stealth_generator, recipient_keys,
                                                ephemeral_size, view_tag, code):
        generated = stealth_generator.generate(recipient_keys.meta_address)

        with pytest.raises(ValidationError) as exc_info:
            source_router.send_cross_chain_payment(
                SENDER, DEST_CHAIN, generated.stealth_address, 500,
                generated.ephemeral_pub_key[:ephemeral_size], view_tag,
            )

        assert exc_info.value.code == code
        assert source_ledger.balance_of(SENDER) == 1_000
        assert source_ledger.balance_of(ROUTER_A) == 0
        assert bridge.message_count == 0

    def test_unencodable_message(self):
        message = CrossChainMessage(
            sender=SENDER,
            stealth_address=ROUTER_B,
            amount=-1,
            ephemeral_pub_key=b"\x02" * 33,
            view_tag=1,
            source_chain_id=SOURCE_CHAIN,
        )

        with pytest.raises(ValidationError) as exc_info:
            message.encode()
        assert exc_info.value.code == "MALFORMED_MESSAGE"

    def test_settlement_not_set(self, ledger, bridge, test_config):
        router = CrossChainRouter(ledger, ROUTER_B, test_config.owner_address, DEST_CHAIN, bridge)

        with pytest.raises(CrossChainError) as exc_info:
            router.receive_cross_chain_payment(BRIDGE, b"\x00" * 32)
        assert exc_info.value.code == "SETTLEMENT_NOT_SET"

    def test_admin_only_owner(self, source_router):
        with pytest.raises(UnauthorizedCaller):
            source_router.set_remote_router(SENDER, 1, ROUTER_B)
