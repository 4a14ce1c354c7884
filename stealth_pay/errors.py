"""
StealthPay - Custom Exceptions
================================
Gerarchia di eccezioni per rifiuti strutturati e specifici.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Ogni rifiuto del settlement solleva un'eccezione con codice stabile:
nessun path scarta silenziosamente un tentativo di pagamento.
"""

from typing import Optional, Any, List


# ============================================================================
# BASE EXCEPTION
# ============================================================================

class StealthPayException(Exception):
    """
    Eccezione base per tutte le eccezioni StealthPay.

    Attributes:
        message (str): Messaggio errore
        code (str): Codice errore (es. "REPLAY_DETECTED")
        details (dict): Dettagli aggiuntivi
    """

    default_code: str = "STEALTHPAY_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serializza eccezione per API/logging"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            return f"[{self.code}] {self.message} | Details: {self.details}"
        return f"[{self.code}] {self.message}"


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigError(StealthPayException):
    """Errore configurazione sistema"""
    default_code = "CONFIG_ERROR"


# ============================================================================
# VALIDATION ERRORS (input malformato, nessuna mutazione)
# ============================================================================

class ValidationError(StealthPayException):
    """Input malformato. Non muta mai lo stato."""
    default_code = "VALIDATION_FAILED"


class FeeTooHighError(ValidationError):
    """Fee oltre il cap del protocollo"""
    default_code = "FEE_TOO_HIGH"


# ============================================================================
# AUTHORIZATION ERRORS (permanenti per quella autorizzazione)
# ============================================================================

class AuthorizationError(StealthPayException):
    """Errore autorizzazione firmata"""
    default_code = "AUTHORIZATION_ERROR"


class ReplayDetected(AuthorizationError):
    """Nonce già consumato. Permanente per quel nonce."""
    default_code = "REPLAY_DETECTED"


class AuthNotYetValid(AuthorizationError):
    """now < validAfter"""
    default_code = "AUTH_NOT_YET_VALID"


class AuthExpired(AuthorizationError):
    """now >= validBefore. Richiede una nuova firma."""
    default_code = "AUTH_EXPIRED"


class SignatureInvalid(AuthorizationError):
    """La firma non recupera l'indirizzo `from`"""
    default_code = "SIGNATURE_INVALID"


# ============================================================================
# POLICY ERRORS (transitori)
# ============================================================================

class PolicyError(StealthPayException):
    """Rifiuto di policy (compliance, limiti agent)"""
    default_code = "POLICY_REJECTED"


class ComplianceRejected(PolicyError):
    """Compliance check fallito. Riprovare dopo verifica."""
    default_code = "COMPLIANCE_REJECTED"


class LimitExceeded(PolicyError):
    """Daily spend limit superato. Si azzera dopo la finestra di 24h."""
    default_code = "LIMIT_EXCEEDED"


class AgentError(StealthPayException):
    """Errore registro agent"""
    default_code = "AGENT_ERROR"


class AgentInactive(AgentError, PolicyError):
    """Agent disattivato o non registrato"""
    default_code = "AGENT_INACTIVE"


class AgentAlreadyRegistered(AgentError):
    """Agent già registrato e attivo"""
    default_code = "AGENT_ALREADY_REGISTERED"


# ============================================================================
# LEDGER ERRORS
# ============================================================================

class LedgerError(StealthPayException):
    """Errore ledger collaborator"""
    default_code = "LEDGER_ERROR"


class InsufficientFunds(LedgerError):
    """Saldo insufficiente. Dipende dal funding esterno."""
    default_code = "INSUFFICIENT_FUNDS"


# ============================================================================
# ANNOUNCEMENT ERRORS
# ============================================================================

class AnnouncementError(StealthPayException):
    """Errore announcement log"""
    default_code = "ANNOUNCEMENT_ERROR"


class DuplicateAnnouncement(AnnouncementError):
    """Stealth address già annunciato. Generare un nuovo stealth address."""
    default_code = "DUPLICATE_ANNOUNCEMENT"


# ============================================================================
# SETTLEMENT ERRORS
# ============================================================================

class SettlementError(StealthPayException):
    """Errore state machine di settlement"""
    default_code = "SETTLEMENT_ERROR"


class SettlementPaused(SettlementError):
    """Entry point bloccati dal pause flag"""
    default_code = "SETTLEMENT_PAUSED"


class BatchItemError(SettlementError):
    """
    Fallimento di un item in un batch.

    Gli item precedenti restano committati: `receipts` contiene
    quelli già settled, `cause` l'errore originale.
    """
    default_code = "BATCH_ITEM_FAILED"

    def __init__(
        self,
        index: int,
        cause: StealthPayException,
        receipts: Optional[List[Any]] = None
    ):
        self.index = index
        self.cause = cause
        self.receipts = list(receipts or [])
        super().__init__(
            f"Batch item {index} failed: {cause.message}",
            details={
                "index": index,
                "cause": cause.code,
                "settled": len(self.receipts),
            }
        )


# ============================================================================
# ACCESS CONTROL
# ============================================================================

class UnauthorizedCaller(StealthPayException):
    """Caller senza il ruolo richiesto"""
    default_code = "UNAUTHORIZED_CALLER"


# ============================================================================
# CROSS-DOMAIN ERRORS
# ============================================================================

class CrossChainError(StealthPayException):
    """Errore router cross-domain"""
    default_code = "CROSS_CHAIN_ERROR"


# ============================================================================
# CRYPTO ERRORS
# ============================================================================

class CryptoError(StealthPayException):
    """Errore crittografico"""
    default_code = "CRYPTO_ERROR"


class InvalidKeyError(CryptoError):
    """Chiave invalida"""
    default_code = "INVALID_KEY"


class EncryptionError(CryptoError):
    """Errore encryption"""
    default_code = "ENCRYPTION_ERROR"


class DecryptionError(CryptoError):
    """Errore decryption (password errata o dati corrotti)"""
    default_code = "DECRYPTION_ERROR"


# ============================================================================
# STORAGE ERRORS
# ============================================================================

class StorageError(StealthPayException):
    """Errore storage"""
    default_code = "STORAGE_ERROR"


class DatabaseError(StorageError):
    """Errore database"""
    default_code = "DB_ERROR"


class DatabaseConnectionError(DatabaseError):
    """Connessione database fallita"""
    default_code = "DB_CONNECTION_FAILED"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def require_role(caller: str, expected: Optional[str], role: str) -> None:
    """
    Verifica che caller corrisponda al ruolo (case-insensitive).

    Raises:
        UnauthorizedCaller: Se caller non autorizzato
    """
    if expected is None or caller.lower() != expected.lower():
        raise UnauthorizedCaller(
            f"Caller is not {role}",
            details={"caller": caller, "role": role}
        )


# ============================================================================
# EXPORT ALL
# ============================================================================

__all__ = [
    "StealthPayException",
    "ConfigError",
    "ValidationError",
    "FeeTooHighError",
    "AuthorizationError",
    "ReplayDetected",
    "AuthNotYetValid",
    "AuthExpired",
    "SignatureInvalid",
    "PolicyError",
    "ComplianceRejected",
    "LimitExceeded",
    "AgentError",
    "AgentInactive",
    "AgentAlreadyRegistered",
    "LedgerError",
    "InsufficientFunds",
    "AnnouncementError",
    "DuplicateAnnouncement",
    "SettlementError",
    "SettlementPaused",
    "BatchItemError",
    "UnauthorizedCaller",
    "CrossChainError",
    "CryptoError",
    "InvalidKeyError",
    "EncryptionError",
    "DecryptionError",
    "StorageError",
    "DatabaseError",
    "DatabaseConnectionError",
    "require_role",
]
