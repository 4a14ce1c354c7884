"""
StealthPay - Transfer Authorizations (EIP-3009)
=================================================
Autorizzazioni TransferWithAuthorization firmate EIP-712.

Security Level: CRITICAL
Last Updated: 2026-10-19
Version: 1.0.0

Flow:
1. Il payer firma off-chain TransferWithAuthorization(from, to, value,
   validAfter, validBefore, nonce) sul domain del token
2. Il facilitator sottomette l'autorizzazione al settlement
3. AuthorizationVerifier valida finestra temporale, nonce e firma
4. redeem() muove i fondi via ledger.transfer_with_authorization

Dependencies:
- eth-account (EIP-712 encode, sign, recover)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol, Set, Tuple, Union

from eth_account import Account
from eth_account.messages import encode_typed_data

from stealth_pay.constants import (
    TOKEN_DOMAIN_NAME,
    TOKEN_DOMAIN_VERSION,
    DEFAULT_CHAIN_ID,
    DEFAULT_AUTHORIZATION_TTL,
    HASH_SIZE,
)
from stealth_pay.domain.addressing import normalize_address, compare_addresses
from stealth_pay.domain.crypto_core import generate_random_bytes
from stealth_pay.errors import (
    AuthExpired,
    AuthNotYetValid,
    ReplayDetected,
    SignatureInvalid,
    ValidationError,
)
from stealth_pay.logging_setup import get_logger, short_hex


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("authorization")


# ============================================================================
# EIP-712 TYPES
# ============================================================================

TRANSFER_WITH_AUTHORIZATION_TYPES: Dict[str, list] = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


@dataclass(frozen=True)
class TokenDomain:
    """
    EIP-712 domain del token.

    Examples:
        >>> TokenDomain(verifying_contract="0x" + "11" * 20).to_eip712()["name"]
        'USD Coin'
    """
    verifying_contract: str
    name: str = TOKEN_DOMAIN_NAME
    version: str = TOKEN_DOMAIN_VERSION
    chain_id: int = DEFAULT_CHAIN_ID

    def to_eip712(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": normalize_address(self.verifying_contract, "verifyingContract"),
        }

    @classmethod
    def from_settings(cls, settings) -> TokenDomain:
        return cls(
            verifying_contract=settings.token_address,
            name=settings.token_name,
            version=settings.token_version,
            chain_id=settings.chain_id,
        )


# ============================================================================
# PAYMENT AUTHORIZATION
# ============================================================================

def _to_bytes(value: Union[bytes, bytearray, str], field_name: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    text = value[2:] if value[:2].lower() == "0x" else value
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise ValidationError(f"Field '{field_name}' is not valid hex", details={"field": field_name})


@dataclass(frozen=True)
class PaymentAuthorization:
    """
    Autorizzazione di trasferimento firmata (EIP-3009).

    Attributes:
        from_address: Payer (signer atteso)
        to: Account di custody per cui è stata firmata
        value: Importo in base units
        valid_after: Timestamp da cui è valida (incluso)
        valid_before: Timestamp di scadenza (escluso)
        nonce: 32 bytes casuali scelti dal payer
        signature: Firma EIP-712 65 bytes (r || s || v)
    """
    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: bytes
    signature: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        object.__setattr__(self, "from_address", normalize_address(self.from_address, "from"))
        object.__setattr__(self, "to", normalize_address(self.to, "to"))
        object.__setattr__(self, "nonce", _to_bytes(self.nonce, "nonce"))
        object.__setattr__(self, "signature", _to_bytes(self.signature, "signature"))

        if len(self.nonce) != HASH_SIZE:
            raise ValidationError(
                f"Nonce must be {HASH_SIZE} bytes, got {len(self.nonce)}",
                code="INVALID_NONCE",
            )
        if self.value < 0:
            raise ValidationError("Authorization value cannot be negative")

    @property
    def nonce_hex(self) -> str:
        return "0x" + self.nonce.hex()

    def typed_message(self) -> Dict[str, Any]:
        """Messaggio EIP-712 TransferWithAuthorization"""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce_hex,
            "signature": "0x" + self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PaymentAuthorization:
        try:
            return cls(
                from_address=data["from"],
                to=data["to"],
                value=int(data["value"]),
                valid_after=int(data["validAfter"]),
                valid_before=int(data["validBefore"]),
                nonce=data["nonce"],
                signature=data.get("signature", b""),
            )
        except KeyError as e:
            raise ValidationError(f"Missing authorization field: {e}")


# ============================================================================
# SIGN / RECOVER
# ============================================================================

def authorization_signable(domain: TokenDomain, message: Dict[str, Any]):
    """SignableMessage EIP-712 per TransferWithAuthorization"""
    return encode_typed_data(
        domain_data=domain.to_eip712(),
        message_types=TRANSFER_WITH_AUTHORIZATION_TYPES,
        message_data=message,
    )


def recover_authorization_signer(auth: PaymentAuthorization, domain: TokenDomain) -> str:
    """
    Recupera il signer di un'autorizzazione.

    Raises:
        SignatureInvalid: Firma malformata o non recuperabile
    """
    if len(auth.signature) != 65:
        raise SignatureInvalid(
            f"Signature must be 65 bytes, got {len(auth.signature)}",
            details={"payer": auth.from_address}
        )
    try:
        signable = authorization_signable(domain, auth.typed_message())
        return Account.recover_message(signable, signature=auth.signature)
    except Exception as e:
        raise SignatureInvalid(
            f"Signature recovery failed: {e}",
            details={"payer": auth.from_address}
        )


def verify_authorization_signature(auth: PaymentAuthorization, domain: TokenDomain) -> None:
    """
    Raises:
        SignatureInvalid: Il signer recuperato non è `from`
    """
    signer = recover_authorization_signer(auth, domain)
    if not compare_addresses(signer, auth.from_address):
        raise SignatureInvalid(
            "Recovered signer does not match authorization sender",
            details={"payer": auth.from_address, "recovered": signer}
        )


def sign_transfer_authorization(
    private_key: Union[bytes, str],
    domain: TokenDomain,
    to: str,
    value: int,
    valid_after: int = 0,
    valid_before: Optional[int] = None,
    nonce: Optional[bytes] = None,
    now: Optional[int] = None,
) -> PaymentAuthorization:
    """
    Helper lato payer: firma un TransferWithAuthorization.

    Args:
        private_key: Chiave del payer
        domain: Domain EIP-712 del token
        to: Account di custody del settlement
        value: Importo (base units)
        valid_after: Default 0
        valid_before: Default now + 1 ora
        nonce: Default 32 bytes casuali
        now: Timestamp di riferimento per valid_before di default

    Examples:
        >>> auth = sign_transfer_authorization(key, domain, custody, 1_000_000, now=1_700_000_000)
        >>> auth.valid_before
        1700003600
    """
    account = Account.from_key(private_key)

    if valid_before is None:
        if now is None:
            now = int(time.time())
        valid_before = now + DEFAULT_AUTHORIZATION_TTL

    if nonce is None:
        nonce = generate_random_bytes(HASH_SIZE)

    unsigned = PaymentAuthorization(
        from_address=account.address,
        to=to,
        value=value,
        valid_after=valid_after,
        valid_before=valid_before,
        nonce=nonce,
    )

    signed = Account.sign_message(
        authorization_signable(domain, unsigned.typed_message()),
        private_key=account.key,
    )

    return PaymentAuthorization(
        from_address=unsigned.from_address,
        to=unsigned.to,
        value=unsigned.value,
        valid_after=unsigned.valid_after,
        valid_before=unsigned.valid_before,
        nonce=unsigned.nonce,
        signature=bytes(signed.signature),
    )


# ============================================================================
# PROCESSED NONCE SET
# ============================================================================

class ProcessedNonceSet:
    """
    Insieme (payer, nonce) già consumati. Insert-if-absent, non si riduce mai.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[str, bytes]]] = None):
        self._lock = threading.RLock()
        self._entries: Set[Tuple[str, bytes]] = set()
        for payer, nonce in entries or ():
            self._entries.add(self._key(payer, nonce))

    @staticmethod
    def _key(payer: str, nonce: bytes) -> Tuple[str, bytes]:
        return payer.lower(), bytes(nonce)

    def __contains__(self, item: Tuple[str, bytes]) -> bool:
        payer, nonce = item
        with self._lock:
            return self._key(payer, nonce) in self._entries

    def add(self, payer: str, nonce: bytes) -> bool:
        """
        Inserisce se assente.

        Returns:
            bool: False se già presente
        """
        key = self._key(payer, nonce)
        with self._lock:
            if key in self._entries:
                return False
            self._entries.add(key)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ============================================================================
# LEDGER REDEEM PROTOCOL
# ============================================================================

class AuthorizationRedeemer(Protocol):
    """Primitiva ledger one-time che muove fondi contro un'autorizzazione"""

    def transfer_with_authorization(self, auth: PaymentAuthorization, now: int) -> None:
        ...


# ============================================================================
# VERIFIER
# ============================================================================

class AuthorizationVerifier:
    """
    Verifica e redime autorizzazioni EIP-3009 per il settlement.

    Le validazioni non mutano mai saldi né il ProcessedNonceSet.

    Args:
        ledger: Collaborator con transfer_with_authorization
        domain: Domain EIP-712 del token
        processed: ProcessedNonceSet del settlement
        custody_address: Account per cui le autorizzazioni devono essere firmate
    """

    def __init__(
        self,
        ledger: AuthorizationRedeemer,
        domain: TokenDomain,
        processed: ProcessedNonceSet,
        custody_address: str,
    ):
        self.ledger = ledger
        self.domain = domain
        self.processed = processed
        self.custody_address = normalize_address(custody_address, "custody")

    def check_time_window(self, auth: PaymentAuthorization, now: int) -> None:
        """
        Raises:
            AuthNotYetValid: now < valid_after
            AuthExpired: now >= valid_before
        """
        if now < auth.valid_after:
            raise AuthNotYetValid(
                "Authorization is not yet valid",
                details={"valid_after": auth.valid_after, "now": now}
            )
        if now >= auth.valid_before:
            raise AuthExpired(
                "Authorization is expired",
                details={"valid_before": auth.valid_before, "now": now}
            )

    def check_nonce_unused(self, auth: PaymentAuthorization) -> None:
        if (auth.from_address, auth.nonce) in self.processed:
            raise ReplayDetected(
                "Authorization nonce already processed",
                details={"payer": auth.from_address, "nonce": auth.nonce_hex}
            )

    def validate(self, auth: PaymentAuthorization, now: int) -> None:
        """
        Validazione completa, senza side effect.

        Ordine: finestra temporale, destinatario, nonce, firma.
        """
        self.check_time_window(auth, now)

        if not compare_addresses(auth.to, self.custody_address):
            raise ValidationError(
                "Authorization recipient is not the settlement custody account",
                code="WRONG_AUTHORIZATION_RECIPIENT",
                details={"to": auth.to}
            )

        self.check_nonce_unused(auth)
        verify_authorization_signature(auth, self.domain)

        logger.debug(
            "Authorization validated",
            extra_data={"payer": short_hex(auth.from_address), "nonce": short_hex(auth.nonce_hex)}
        )

    def redeem(self, auth: PaymentAuthorization, now: int) -> None:
        """
        Muove `value` da `from` alla custody via ledger.

        Raises:
            LedgerError: Propagato dal ledger (es. InsufficientFunds)
        """
        self.ledger.transfer_with_authorization(auth, now)


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "TRANSFER_WITH_AUTHORIZATION_TYPES",
    "TokenDomain",
    "PaymentAuthorization",
    "authorization_signable",
    "recover_authorization_signer",
    "verify_authorization_signature",
    "sign_transfer_authorization",
    "ProcessedNonceSet",
    "AuthorizationRedeemer",
    "AuthorizationVerifier",
]
