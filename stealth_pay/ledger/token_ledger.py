"""
StealthPay - In-Memory Token Ledger
=====================================
Ledger di riferimento (USDC-like) usato come collaborator del settlement.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Primitive esposte:
- balance_of / transfer / mint
- transfer_with_authorization (EIP-3009, one-time redeem)
- authorization_state (stato dei nonce consumati dal ledger)

Tutte le operazioni sono atomiche: o completano o sollevano senza
modificare i saldi.
"""

import threading
from collections import defaultdict
from typing import Dict, Protocol, Set, Tuple

from stealth_pay.domain.addressing import normalize_address
from stealth_pay.domain.authorization import (
    PaymentAuthorization,
    TokenDomain,
    verify_authorization_signature,
)
from stealth_pay.errors import (
    AuthExpired,
    AuthNotYetValid,
    InsufficientFunds,
    ReplayDetected,
    ValidationError,
)
from stealth_pay.logging_setup import get_logger, short_hex


logger = get_logger("ledger")


# ============================================================================
# LEDGER PROTOCOL
# ============================================================================

class LedgerProtocol(Protocol):
    """Interfaccia ledger richiesta dal settlement"""

    def balance_of(self, account: str) -> int:
        ...

    def transfer(self, sender: str, to: str, amount: int) -> None:
        ...

    def transfer_with_authorization(self, auth: PaymentAuthorization, now: int) -> None:
        ...

    def authorization_state(self, authorizer: str, nonce: bytes) -> bool:
        ...


# ============================================================================
# TOKEN LEDGER
# ============================================================================

class TokenLedger:
    """
    Ledger token in memoria con semantica EIP-3009.

    Attributes:
        domain: Domain EIP-712 usato per verificare le autorizzazioni
        total_supply: Supply corrente (mint)

    Examples:
        >>> ledger = TokenLedger(TokenDomain(verifying_contract=token))
        >>> ledger.mint(alice, 1_000_000)
        >>> ledger.balance_of(alice)
        1000000
    """

    def __init__(self, domain: TokenDomain):
        self.domain = domain
        self.total_supply = 0

        self._balances: Dict[str, int] = defaultdict(int)
        self._authorizations: Set[Tuple[str, bytes]] = set()
        self._lock = threading.RLock()

    @staticmethod
    def _key(account: str) -> str:
        return normalize_address(account).lower()

    @staticmethod
    def _require_positive(amount: int) -> None:
        if not isinstance(amount, int) or amount < 0:
            raise ValidationError(
                f"Invalid amount: {amount!r}",
                code="INVALID_AMOUNT",
                details={"amount": str(amount)}
            )

    # ========================================================================
    # READ
    # ========================================================================

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(self._key(account), 0)

    def authorization_state(self, authorizer: str, nonce: bytes) -> bool:
        """True se (authorizer, nonce) è già stato usato sul ledger"""
        with self._lock:
            return (self._key(authorizer), bytes(nonce)) in self._authorizations

    # ========================================================================
    # WRITE
    # ========================================================================

    def mint(self, to: str, amount: int) -> None:
        self._require_positive(amount)
        with self._lock:
            self._balances[self._key(to)] += amount
            self.total_supply += amount

        logger.debug("Minted", extra_data={"to": short_hex(to), "amount": amount})

    def transfer(self, sender: str, to: str, amount: int) -> None:
        """
        Trasferimento diretto sender -> to.

        Raises:
            InsufficientFunds: Saldo sender < amount
        """
        self._require_positive(amount)
        sender_key = self._key(sender)
        to_key = self._key(to)

        with self._lock:
            balance = self._balances.get(sender_key, 0)
            if balance < amount:
                raise InsufficientFunds(
                    "Transfer amount exceeds balance",
                    details={"account": sender, "balance": balance, "amount": amount}
                )
            self._balances[sender_key] = balance - amount
            self._balances[to_key] += amount

    def transfer_with_authorization(self, auth: PaymentAuthorization, now: int) -> None:
        """
        Esegue un TransferWithAuthorization firmato (EIP-3009).

        Checks (nessuna mutazione se falliscono):
        1. valid_after <= now < valid_before
        2. (from, nonce) non ancora usato sul ledger
        3. firma EIP-712 del `from`
        4. saldo sufficiente

        Raises:
            AuthNotYetValid, AuthExpired, ReplayDetected,
            SignatureInvalid, InsufficientFunds
        """
        self._require_positive(auth.value)

        with self._lock:
            if now < auth.valid_after:
                raise AuthNotYetValid("Authorization is not yet valid")
            if now >= auth.valid_before:
                raise AuthExpired("Authorization is expired")

            key = (self._key(auth.from_address), auth.nonce)
            if key in self._authorizations:
                raise ReplayDetected(
                    "Authorization is used",
                    details={"authorizer": auth.from_address, "nonce": auth.nonce_hex}
                )

            verify_authorization_signature(auth, self.domain)

            self.transfer(auth.from_address, auth.to, auth.value)
            self._authorizations.add(key)

        logger.debug(
            "Authorization redeemed",
            extra_data={
                "from": short_hex(auth.from_address),
                "to": short_hex(auth.to),
                "value": auth.value,
            }
        )

    def snapshot(self) -> Dict[str, int]:
        """Saldi non nulli (per debug/test)"""
        with self._lock:
            return {k: v for k, v in self._balances.items() if v}

    def __repr__(self) -> str:
        return f"TokenLedger(accounts={len(self.snapshot())}, supply={self.total_supply})"


__all__ = [
    "LedgerProtocol",
    "TokenLedger",
]
