"""
StealthPay - Configuration Management
=======================================
Gestione centralizzata configurazione con Pydantic Settings.
Supporta environment variables, file .env, override runtime.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Features:
- Validazione automatica tipi
- Environment variables con prefisso STEALTHPAY_
- File .env support
- Profile preset (dev/prod)
"""

import os
from pathlib import Path
from typing import Optional, List
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stealth_pay.constants import (
    DEFAULT_CHAIN_ID,
    TOKEN_DOMAIN_NAME,
    TOKEN_DOMAIN_VERSION,
    DEFAULT_FEE_BPS,
    MAX_FEE_BPS,
    MAX_BATCH_SIZE,
    DEFAULT_DAILY_SPEND_LIMIT,
    DEFAULT_COMPLIANCE_EXPIRY,
    MIN_COMPLIANCE_EXPIRY,
    SECONDS_PER_DAY,
    TOKEN_SYMBOL,
)


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

class StealthPaySettings(BaseSettings):
    """
    Configurazione principale StealthPay.

    Example:
        # Da environment
        export STEALTHPAY_CHAIN_ID=8453
        export STEALTHPAY_FEE_BPS=25

        # Da codice
        config = StealthPaySettings(fee_bps=25)
    """

    model_config = SettingsConfigDict(
        env_prefix='STEALTHPAY_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    # ========================================================================
    # CHAIN & TOKEN (EIP-712 domain)
    # ========================================================================

    chain_id: int = Field(
        default=DEFAULT_CHAIN_ID,
        ge=1,
        description="Chain id del dominio EIP-712"
    )

    chain_name: str = Field(
        default="polygon",
        description="Nome chain per il PaymentRequirement"
    )

    token_symbol: str = Field(
        default=TOKEN_SYMBOL,
        description="Simbolo token di settlement"
    )

    token_name: str = Field(
        default=TOKEN_DOMAIN_NAME,
        description="EIP-712 domain name del token"
    )

    token_version: str = Field(
        default=TOKEN_DOMAIN_VERSION,
        description="EIP-712 domain version del token"
    )

    token_address: str = Field(
        default="0x3c499c542cef5e3811e1192ce70d8cc03d5c3359",
        description="verifyingContract del token (EIP-3009)"
    )

    # ========================================================================
    # SETTLEMENT ROLES
    # ========================================================================

    settlement_address: str = Field(
        default="0x000000000000000000000000000000000000402a",
        description="Account di custody del settlement (campo `to` delle autorizzazioni)"
    )

    owner_address: str = Field(
        default="0x000000000000000000000000000000000000a11c",
        description="Owner amministrativo (fee, pause, agent admin)"
    )

    fee_vault_address: str = Field(
        default="0x000000000000000000000000000000000000fee5",
        description="Account FeePool"
    )

    treasury_address: Optional[str] = Field(
        default=None,
        description="Treasury per i prelievi dal FeePool (default: owner)"
    )

    # ========================================================================
    # SETTLEMENT PARAMETERS
    # ========================================================================

    fee_bps: int = Field(
        default=DEFAULT_FEE_BPS,
        ge=0,
        description="Fee protocollo in basis points (max 100)"
    )

    max_batch_size: int = Field(
        default=MAX_BATCH_SIZE,
        ge=1,
        le=1000,
        description="Numero massimo item per batch"
    )

    # ========================================================================
    # AGENT LEDGER
    # ========================================================================

    agent_daily_limit: int = Field(
        default=DEFAULT_DAILY_SPEND_LIMIT,
        ge=0,
        description="Daily spend limit di default (base units)"
    )

    agent_registration_fee: int = Field(
        default=0,
        ge=0,
        description="Fee di registrazione agent (base units, 0 = gratuita)"
    )

    # ========================================================================
    # COMPLIANCE
    # ========================================================================

    compliance_enabled: bool = Field(
        default=False,
        description="Abilita compliance gate globale"
    )

    compliance_expiry_days: int = Field(
        default=DEFAULT_COMPLIANCE_EXPIRY // SECONDS_PER_DAY,
        ge=MIN_COMPLIANCE_EXPIRY // SECONDS_PER_DAY,
        description="Validità verifica compliance (giorni, min 1)"
    )

    # ========================================================================
    # STORAGE
    # ========================================================================

    data_dir: Path = Field(
        default=Path("./data"),
        description="Directory dati settlement"
    )

    db_path: Optional[Path] = Field(
        default=None,
        description="Path database (auto: data_dir/stealthpay.db)"
    )

    keystore_dir: Path = Field(
        default=Path("./keystore"),
        description="Directory keystore cifrati"
    )

    # ========================================================================
    # API
    # ========================================================================

    api_host: str = Field(
        default="127.0.0.1",
        description="Host API facilitator"
    )

    api_port: int = Field(
        default=8402,
        ge=1024,
        le=65535,
        description="Porta API facilitator"
    )

    api_enable_cors: bool = Field(
        default=True,
        description="Abilita CORS per API"
    )

    api_cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        description="CORS allowed origins"
    )

    facilitator_url: str = Field(
        default="http://127.0.0.1:8402",
        description="URL pubblico del facilitator (PaymentRequirement)"
    )

    # ========================================================================
    # LOGGING
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    log_to_file: bool = Field(
        default=False,
        description="Salva log su file"
    )

    log_dir: Path = Field(
        default=Path("./logs"),
        description="Directory log files"
    )

    log_format: str = Field(
        default="json",
        description="Formato log: json, text"
    )

    log_rotation_mb: int = Field(
        default=50,
        ge=1,
        description="Dimensione max file log prima rotation (MB)"
    )

    log_retention_days: int = Field(
        default=30,
        ge=1,
        description="Numero backup log"
    )

    dev_mode: bool = Field(
        default=False,
        description="Modalità sviluppo"
    )

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('json', 'text'):
            raise ValueError(f"Invalid log_format: {v}. Must be json or text")
        return v_lower

    @field_validator('fee_bps')
    @classmethod
    def validate_fee_bps(cls, v: int) -> int:
        """Fee oltre il cap del protocollo non è configurabile"""
        if v > MAX_FEE_BPS:
            raise ValueError(f"fee_bps {v} exceeds max {MAX_FEE_BPS}")
        return v

    @field_validator(
        'token_address',
        'settlement_address',
        'owner_address',
        'fee_vault_address',
        'treasury_address',
    )
    @classmethod
    def validate_address(cls, v: Optional[str]) -> Optional[str]:
        """Normalizza indirizzi in forma EIP-55"""
        if v is None:
            return v
        from eth_utils import is_address, to_checksum_address

        if not is_address(v):
            raise ValueError(f"Invalid address: {v}")
        return to_checksum_address(v)

    # ========================================================================
    # POST-INIT PROCESSING
    # ========================================================================

    def model_post_init(self, __context) -> None:
        if self.db_path is None:
            self.db_path = self.data_dir / "stealthpay.db"

        if self.treasury_address is None:
            self.treasury_address = self.owner_address

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    @property
    def compliance_expiry_seconds(self) -> int:
        return self.compliance_expiry_days * SECONDS_PER_DAY

    def token_domain(self) -> dict:
        """EIP-712 domain del token per TransferWithAuthorization"""
        return {
            "name": self.token_name,
            "version": self.token_version,
            "chainId": self.chain_id,
            "verifyingContract": self.token_address,
        }

    def ensure_directories(self) -> None:
        """Crea le directory di lavoro (data, keystore, log)"""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.keystore_dir.mkdir(parents=True, exist_ok=True)
        if self.log_to_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    def __repr__(self) -> str:
        return (
            f"StealthPaySettings("
            f"chain_id={self.chain_id}, "
            f"token={self.token_symbol}, "
            f"fee_bps={self.fee_bps}, "
            f"api_port={self.api_port})"
        )


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

@lru_cache(maxsize=1)
def get_settings() -> StealthPaySettings:
    """
    Ottieni singleton instance di StealthPaySettings.

    Example:
        >>> get_settings().fee_bps
        10
    """
    return StealthPaySettings()


def reload_settings() -> StealthPaySettings:
    """Ricarica settings (invalida cache), es. dopo cambio env vars"""
    get_settings.cache_clear()
    return get_settings()


def override_settings(**kwargs) -> StealthPaySettings:
    """
    Crea settings con override espliciti. Utile per testing.

    Example:
        >>> cfg = override_settings(fee_bps=50, compliance_enabled=True)
    """
    return StealthPaySettings(**kwargs)


# ============================================================================
# PROFILE PRESETS
# ============================================================================

def get_development_config() -> StealthPaySettings:
    """
    Config preset per development.

    - Chain di test (Polygon Amoy)
    - Log DEBUG testuale
    - Storage locale in ./data-dev
    """
    return StealthPaySettings(
        dev_mode=True,
        chain_id=80002,
        chain_name="polygon-amoy",
        log_level="DEBUG",
        log_format="text",
        data_dir=Path("./data-dev"),
    )


def get_production_config() -> StealthPaySettings:
    """Config preset per production: log WARNING su file JSON"""
    return StealthPaySettings(
        dev_mode=False,
        log_level="WARNING",
        log_to_file=True,
        log_format="json",
    )


# ============================================================================
# CONFIGURATION VALIDATION
# ============================================================================

def validate_config(config: StealthPaySettings) -> tuple[bool, list[str]]:
    """
    Valida coerenza della configurazione.

    Returns:
        tuple: (is_valid, errors_list)

    Example:
        >>> is_valid, errors = validate_config(get_settings())
    """
    errors = []

    roles = {
        "settlement_address": config.settlement_address,
        "fee_vault_address": config.fee_vault_address,
    }
    if len({v.lower() for v in roles.values()}) != len(roles):
        errors.append("settlement_address and fee_vault_address must differ")

    if config.settlement_address.lower() == config.owner_address.lower():
        errors.append("owner_address cannot be the settlement custody account")

    if config.dev_mode is False and config.api_host == "0.0.0.0" and config.api_cors_origins == ["*"]:
        errors.append("WARNING: public API with wildcard CORS origins")

    for dir_path in [config.data_dir, config.keystore_dir]:
        if dir_path.exists() and not os.access(dir_path, os.W_OK):
            errors.append(f"Directory not writable: {dir_path}")

    return (len(errors) == 0, errors)


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "StealthPaySettings",
    "get_settings",
    "reload_settings",
    "override_settings",
    "get_development_config",
    "get_production_config",
    "validate_config",
]
