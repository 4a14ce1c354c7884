"""
StealthPay - Cross-Chain Router
=================================
Pagamenti stealth tra domini via bridge message-passing.

Lato sorgente: blocca i fondi nel router e inoltra un messaggio
ABI-encoded `(sender, stealth, amount, ephemeralPubKey, viewTag,
sourceChainId)` al router remoto.

Lato destinazione: solo il bridge consegna; ogni message hash è
accettato una sola volta (ReplayDetected), poi il pagamento viene
rigiocato nel PaymentSettlement locale.
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set

from eth_abi import decode, encode
from eth_abi.exceptions import EncodingError

from stealth_pay.domain.addressing import normalize_address, require_nonzero_address
from stealth_pay.domain.crypto_core import keccak256
from stealth_pay.errors import CrossChainError, ReplayDetected, ValidationError, require_role
from stealth_pay.logging_setup import get_logger, short_hex
from stealth_pay.services.announcer import validate_ephemeral_key, validate_view_tag


logger = get_logger("cross_chain")

MESSAGE_ABI_TYPES = ["address", "address", "uint256", "bytes", "uint8", "uint256"]


# ============================================================================
# MESSAGE
# ============================================================================

@dataclass(frozen=True)
class CrossChainMessage:
    """Payload del bridge"""
    sender: str
    stealth_address: str
    amount: int
    ephemeral_pub_key: bytes
    view_tag: int
    source_chain_id: int

    def encode(self) -> bytes:
        """
        Raises:
            ValidationError: Campi non rappresentabili nella tupla ABI
        """
        try:
            return encode(
                MESSAGE_ABI_TYPES,
                [
                    self.sender,
                    self.stealth_address,
                    self.amount,
                    self.ephemeral_pub_key,
                    self.view_tag,
                    self.source_chain_id,
                ],
            )
        except EncodingError as e:
            raise ValidationError(f"Unencodable bridge message: {e}", code="MALFORMED_MESSAGE")

    @classmethod
    def decode(cls, message: bytes) -> "CrossChainMessage":
        """
        Raises:
            CrossChainError: Messaggio non decodificabile
        """
        try:
            sender, stealth, amount, ephemeral, view_tag, chain_id = decode(
                MESSAGE_ABI_TYPES, bytes(message)
            )
        except Exception as e:
            raise CrossChainError(f"Malformed bridge message: {e}", code="MALFORMED_MESSAGE")

        return cls(
            sender=normalize_address(sender, "sender"),
            stealth_address=normalize_address(stealth, "stealth"),
            amount=amount,
            ephemeral_pub_key=bytes(ephemeral),
            view_tag=view_tag,
            source_chain_id=chain_id,
        )


def message_hash(message: bytes) -> bytes:
    return keccak256(bytes(message))


# ============================================================================
# BRIDGE
# ============================================================================

class BridgeProtocol(Protocol):
    """Trasporto messaggi tra domini"""

    address: str

    def send_message(self, destination_chain_id: int, recipient: str, message: bytes) -> None:
        ...


@dataclass
class BridgeEnvelope:
    destination_chain_id: int
    recipient: str
    message: bytes
    delivered: bool = False


class InMemoryBridge:
    """
    Bridge in-process: accoda i messaggi e li consegna su richiesta.

    Examples:
        >>> bridge = InMemoryBridge("0x" + "b0" * 20)
        >>> source.send_cross_chain_payment(...)
        >>> bridge.relay_all({2442: destination_router})
        1
    """

    def __init__(self, address: str):
        self.address = require_nonzero_address(address, "bridge")
        self.messages: List[BridgeEnvelope] = []

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def send_message(self, destination_chain_id: int, recipient: str, message: bytes) -> None:
        self.messages.append(BridgeEnvelope(destination_chain_id, recipient, bytes(message)))

    def relay(self, index: int, router: "CrossChainRouter") -> None:
        """Consegna il messaggio `index` al router di destinazione"""
        envelope = self.messages[index]
        router.receive_cross_chain_payment(self.address, envelope.message)
        envelope.delivered = True

    def relay_all(self, routers: Dict[int, "CrossChainRouter"]) -> int:
        delivered = 0
        for index, envelope in enumerate(self.messages):
            if envelope.delivered:
                continue
            router = routers.get(envelope.destination_chain_id)
            if router is None:
                continue
            self.relay(index, router)
            delivered += 1
        return delivered


# ============================================================================
# ROUTER
# ============================================================================

class CrossChainRouter:
    """
    Router cross-domain.

    Args:
        ledger: Ledger locale
        address: Account del router (fondi bloccati / liquidità)
        owner: Amministratore
        chain_id: Chain id locale
        bridge: Trasporto messaggi
        settlement: PaymentSettlement locale per il replay
    """

    def __init__(
        self,
        ledger,
        address: str,
        owner: str,
        chain_id: int,
        bridge: BridgeProtocol,
        settlement=None,
    ):
        self.ledger = ledger
        self.address = require_nonzero_address(address, "router")
        self.owner = normalize_address(owner, "owner")
        self.chain_id = chain_id
        self.bridge = bridge
        self.settlement = settlement

        self.remote_routers: Dict[int, str] = {}
        self.total_sent = 0
        self.total_received = 0

        self._processed_messages: Set[bytes] = set()
        self._lock = threading.RLock()

    # ========================================================================
    # SEND
    # ========================================================================

    def send_cross_chain_payment(
        self,
        sender: str,
        destination_chain_id: int,
        stealth_address: str,
        amount: int,
        ephemeral_pub_key: bytes,
        view_tag: int,
    ) -> CrossChainMessage:
        """
        Blocca `amount` del sender e inoltra il messaggio al router remoto.

        Raises:
            CrossChainError: Nessun router remoto per la chain
            ValidationError: Importo zero, stealth address zero, ephemeral
                key o view tag invalidi
            InsufficientFunds: Saldo sender insufficiente
        """
        ephemeral_pub_key = bytes(ephemeral_pub_key)

        remote = self.remote_routers.get(destination_chain_id)
        if remote is None:
            raise CrossChainError(
                "No remote router",
                code="NO_REMOTE_ROUTER",
                details={"chain_id": destination_chain_id}
            )
        if amount <= 0:
            raise ValidationError("Zero amount", code="ZERO_AMOUNT")
        stealth = require_nonzero_address(stealth_address, "stealth")
        validate_ephemeral_key(ephemeral_pub_key)
        validate_view_tag(view_tag)

        message = CrossChainMessage(
            sender=normalize_address(sender, "sender"),
            stealth_address=stealth,
            amount=amount,
            ephemeral_pub_key=ephemeral_pub_key,
            view_tag=view_tag,
            source_chain_id=self.chain_id,
        )

        with self._lock:
            # encode prima del transfer
            encoded = message.encode()
            self.ledger.transfer(message.sender, self.address, amount)
            self.bridge.send_message(destination_chain_id, remote, encoded)
            self.total_sent += 1

        logger.info(
            "Cross-chain payment sent",
            extra_data={
                "destination_chain_id": destination_chain_id,
                "stealth_address": short_hex(stealth),
                "amount": amount,
            }
        )
        return message

    # ========================================================================
    # RECEIVE
    # ========================================================================

    def receive_cross_chain_payment(self, caller: str, message: bytes, now: Optional[int] = None):
        """
        Consegna bridge -> router -> settlement.

        Raises:
            UnauthorizedCaller: Caller non è il bridge
            CrossChainError: Settlement non configurato o messaggio malformato
            ReplayDetected: Message hash già processato
        """
        require_role(caller, self.bridge.address, "bridge")

        if self.settlement is None:
            raise CrossChainError("Settlement not set", code="SETTLEMENT_NOT_SET")

        message = bytes(message)
        digest = message_hash(message)

        with self._lock:
            if digest in self._processed_messages:
                raise ReplayDetected(
                    "Message already processed",
                    details={"message_hash": "0x" + digest.hex()}
                )

            payload = CrossChainMessage.decode(message)

            announcement = self.settlement.route_bridged_payment(
                self.address,
                payload.stealth_address,
                payload.amount,
                payload.ephemeral_pub_key,
                payload.view_tag,
                payload.source_chain_id,
                now=now,
            )
            self._processed_messages.add(digest)
            self.total_received += 1

        logger.info(
            "Cross-chain payment received",
            extra_data={
                "source_chain_id": payload.source_chain_id,
                "stealth_address": short_hex(payload.stealth_address),
                "amount": payload.amount,
            }
        )
        return announcement

    def is_message_processed(self, message: bytes) -> bool:
        with self._lock:
            return message_hash(message) in self._processed_messages

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_remote_router(self, caller: str, chain_id: int, router: str) -> None:
        require_role(caller, self.owner, "owner")
        self.remote_routers[chain_id] = normalize_address(router, "router")

    def set_bridge(self, caller: str, bridge: BridgeProtocol) -> None:
        require_role(caller, self.owner, "owner")
        self.bridge = bridge

    def set_settlement(self, caller: str, settlement) -> None:
        require_role(caller, self.owner, "owner")
        self.settlement = settlement

    def emergency_withdraw(self, caller: str, amount: int) -> None:
        require_role(caller, self.owner, "owner")
        if amount <= 0:
            raise ValidationError("Zero amount", code="ZERO_AMOUNT")
        self.ledger.transfer(self.address, self.owner, amount)
        logger.warning("Cross-chain router emergency withdraw", extra_data={"amount": amount})


__all__ = [
    "CrossChainMessage",
    "BridgeProtocol",
    "InMemoryBridge",
    "CrossChainRouter",
    "message_hash",
]
