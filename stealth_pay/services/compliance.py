"""
StealthPay - Compliance Gate
==============================
Hook di compliance pluggable per il settlement.

Security Level: MEDIUM
Last Updated: 2026-10-19
Version: 1.0.0

- AllowAllCompliance: default no-op
- ComplianceGate: toggle globale, verifica per identità con scadenza,
  verifier di proof opzionale (es. ZK identity)
"""

import threading
from typing import Callable, Dict, Optional, Protocol

from stealth_pay.constants import DEFAULT_COMPLIANCE_EXPIRY, MIN_COMPLIANCE_EXPIRY
from stealth_pay.domain.addressing import normalize_address, require_nonzero_address
from stealth_pay.errors import ComplianceRejected, ValidationError, require_role
from stealth_pay.logging_setup import get_logger, short_hex


logger = get_logger("compliance")


# ============================================================================
# PROTOCOLS
# ============================================================================

class ComplianceChecker(Protocol):
    """Interfaccia consultata dal settlement prima di muovere fondi"""

    def check_compliance(self, identity: str, now: int) -> bool:
        ...


class ProofVerifier(Protocol):
    def verify(self, identity: str, proof: bytes) -> bool:
        ...


class AllowAllCompliance:
    """Checker di default: approva tutti"""

    def check_compliance(self, identity: str, now: int) -> bool:
        return True


# ============================================================================
# COMPLIANCE GATE
# ============================================================================

class ComplianceGate:
    """
    Gate di compliance con verifiche a scadenza.

    Args:
        owner: Amministratore
        required: Toggle globale (disabilitato = tutti compliant)
        expiry: Validità di una verifica (secondi, min 1 giorno)
        verifier: Verifier di proof; None = auto-verifica

    Examples:
        >>> gate = ComplianceGate(owner=admin, required=True)
        >>> gate.check_compliance(agent, now)
        False
        >>> gate.verify_compliance(agent, b"proof", now)
        >>> gate.check_compliance(agent, now)
        True
    """

    def __init__(
        self,
        owner: str,
        required: bool = False,
        expiry: int = DEFAULT_COMPLIANCE_EXPIRY,
        verifier: Optional[ProofVerifier] = None,
    ):
        self.owner = normalize_address(owner, "owner")
        self.required = required
        self.verifier = verifier
        self._expiry = self._validate_expiry(expiry)

        # identity -> timestamp della verifica
        self._verified_at: Dict[str, int] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _validate_expiry(expiry: int) -> int:
        if expiry < MIN_COMPLIANCE_EXPIRY:
            raise ValidationError(
                "Expiry too short",
                code="EXPIRY_TOO_SHORT",
                details={"expiry": expiry, "min": MIN_COMPLIANCE_EXPIRY}
            )
        return expiry

    @property
    def expiry(self) -> int:
        return self._expiry

    # ========================================================================
    # CHECKS
    # ========================================================================

    def is_compliant(self, identity: str, now: int) -> bool:
        """Verifica presente e non scaduta (indipendente dal toggle)"""
        with self._lock:
            verified_at = self._verified_at.get(identity.lower())
        return verified_at is not None and now < verified_at + self._expiry

    def check_compliance(self, identity: str, now: int) -> bool:
        if not self.required:
            return True
        return self.is_compliant(identity, now)

    def require_compliance(self, identity: str, now: int) -> None:
        """
        Raises:
            ComplianceRejected: check_compliance fallito
        """
        if not self.check_compliance(identity, now):
            raise ComplianceRejected(
                "Compliance check failed",
                details={"identity": identity}
            )

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def verify_compliance(self, identity: str, proof: bytes, now: int) -> None:
        """
        Verifica una proof e marca l'identità come compliant.

        Raises:
            ValidationError: Identità zero o proof vuota
            ComplianceRejected: Proof rifiutata dal verifier
        """
        identity = require_nonzero_address(identity, "agent")
        if not proof:
            raise ValidationError("Empty proof", code="EMPTY_PROOF")

        if self.verifier is not None and not self.verifier.verify(identity, bytes(proof)):
            raise ComplianceRejected("Proof invalid", details={"identity": identity})

        with self._lock:
            self._verified_at[identity.lower()] = now

        logger.info("Compliance verified", extra_data={"identity": short_hex(identity)})

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_compliance_required(self, caller: str, required: bool) -> None:
        require_role(caller, self.owner, "owner")
        self.required = required
        logger.info("Compliance requirement changed", extra_data={"required": required})

    def set_compliance(self, caller: str, identity: str, compliant: bool, now: int) -> None:
        """Override manuale dello stato di una identità"""
        require_role(caller, self.owner, "owner")
        key = normalize_address(identity, "agent").lower()
        with self._lock:
            if compliant:
                self._verified_at[key] = now
            else:
                self._verified_at.pop(key, None)

    def set_compliance_expiry(self, caller: str, expiry: int) -> None:
        require_role(caller, self.owner, "owner")
        self._expiry = self._validate_expiry(expiry)

    def set_verifier(self, caller: str, verifier: Optional[ProofVerifier]) -> None:
        require_role(caller, self.owner, "owner")
        self.verifier = verifier


class CallableProofVerifier:
    """Adatta una funzione (identity, proof) -> bool a ProofVerifier"""

    def __init__(self, func: Callable[[str, bytes], bool]):
        self._func = func

    def verify(self, identity: str, proof: bytes) -> bool:
        return bool(self._func(identity, proof))


__all__ = [
    "ComplianceChecker",
    "ProofVerifier",
    "AllowAllCompliance",
    "ComplianceGate",
    "CallableProofVerifier",
]
