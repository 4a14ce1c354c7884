"""
StealthPay - Logging System
=============================
Logging strutturato JSON per audit del settlement e debugging.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Features:
- Logging JSON strutturato
- Rotation automatica
- Console colorata
- Context enrichment
- Performance tracking
- Audit trail (nonce burn, settlement, abort, prelievi fee)

Le chiavi private non vengono MAI loggate. Indirizzi e valori hex
vanno troncati con `short_hex()` prima di finire in extra_data.
"""

import logging
import logging.handlers
import json
import sys
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any


ROOT_LOGGER_NAME = "stealthpay"


def _utc(created: float) -> datetime:
    return datetime.fromtimestamp(created, tz=timezone.utc)


def short_hex(value: Any, keep: int = 10) -> str:
    """
    Tronca un valore hex/indirizzo per i log.

    Example:
        >>> short_hex("0x1234567890abcdef1234")
        '0x12345678...'
    """
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    text = str(value)
    return text if len(text) <= keep else text[:keep] + "..."


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    Formatter per log in formato JSON.

    Output structure:
    {
        "timestamp": "2026-10-19T22:00:00.000000+00:00",
        "level": "INFO",
        "logger": "stealthpay.settlement",
        "message": "Payment settled",
        "extra_data": {...},
        "exception": {...}
    }
    """

    def __init__(
        self,
        include_extra: bool = True,
        include_stack: bool = True
    ):
        super().__init__()
        self.include_extra = include_extra
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": _utc(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.thread:
            log_data["thread_name"] = record.threadName

        if self.include_extra and hasattr(record, 'extra_data'):
            log_data["extra_data"] = record.extra_data

        if record.exc_info and self.include_stack:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_data, default=str)


# ============================================================================
# TEXT FORMATTER (Human-Readable)
# ============================================================================

class ColoredTextFormatter(logging.Formatter):
    """
    Formatter colorato per console.

    Il levelname colorato viene calcolato su una copia locale: il record
    è condiviso con gli altri handler (es. file JSON).
    """

    COLORS = {
        'DEBUG': '\033[90m',
        'INFO': '\033[92m',
        'WARNING': '\033[93m',
        'ERROR': '\033[91m',
        'CRITICAL': '\033[1;91m',
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"

        timestamp = _utc(record.created).strftime('%Y-%m-%d %H:%M:%S')
        message = f"{timestamp} [{levelname}] {record.name}: {record.getMessage()}"

        if hasattr(record, 'extra_data'):
            message += f" | {record.extra_data}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


# ============================================================================
# LOGGER CLASS
# ============================================================================

class StealthPayLogger:
    """
    Wrapper logger con context ed extra_data strutturati.

    Example:
        >>> logger = get_logger("settlement")
        >>> logger.info("Payment settled", extra_data={"fee": 10})
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger
        self._context: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def set_context(self, **kwargs):
        """
        Imposta context aggiunto a tutti i log di questo wrapper.

        Example:
            >>> logger.set_context(chain_id=137)
        """
        self._context.update(kwargs)

    def clear_context(self):
        self._context.clear()

    def _log(
        self,
        level: int,
        message: str,
        extra_data: Optional[Dict[str, Any]] = None,
        exc_info=None
    ):
        merged_extra = {**self._context}
        if extra_data:
            merged_extra.update(extra_data)

        self._logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={'extra_data': merged_extra} if merged_extra else {},
            stacklevel=3
        )

    def debug(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.DEBUG, message, extra_data)

    def info(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.INFO, message, extra_data)

    def warning(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.WARNING, message, extra_data)

    def error(self, message: str, extra_data: Optional[Dict] = None, exc_info=None):
        self._log(logging.ERROR, message, extra_data, exc_info)

    def critical(self, message: str, extra_data: Optional[Dict] = None, exc_info=None):
        self._log(logging.CRITICAL, message, extra_data, exc_info)

    def exception(self, message: str, extra_data: Optional[Dict] = None):
        """Log ERROR con traceback corrente"""
        self._log(logging.ERROR, message, extra_data, exc_info=sys.exc_info())


# ============================================================================
# SETUP FUNCTION
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = True,
    log_dir: Path = Path("./logs"),
    log_format: str = "json",
    log_rotation_mb: int = 50,
    log_retention_days: int = 30,
    enable_console: bool = True,
) -> StealthPayLogger:
    """
    Setup logging system.

    Args:
        log_level: Level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Salva su file
        log_dir: Directory log files
        log_format: Formato file (json, text)
        log_rotation_mb: MB prima della rotation
        log_retention_days: Numero di file di backup
        enable_console: Log anche su console

    Returns:
        StealthPayLogger: Logger root configurato

    Example:
        >>> logger = setup_logging(log_level="DEBUG", log_to_file=False)
        >>> logger.info("Facilitator started", extra_data={"port": 8402})
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    text_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if log_to_file:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "stealthpay.log",
            maxBytes=log_rotation_mb * 1024 * 1024,
            backupCount=log_retention_days,
            encoding='utf-8'
        )
        if log_format == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(text_format))
        root_logger.addHandler(file_handler)

        # Error log separato
        error_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "stealthpay_errors.log",
            maxBytes=log_rotation_mb * 1024 * 1024,
            backupCount=log_retention_days,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        if log_format == "json":
            error_handler.setFormatter(JSONFormatter(include_stack=True))
        else:
            error_handler.setFormatter(logging.Formatter(text_format))
        root_logger.addHandler(error_handler)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(ColoredTextFormatter())
        root_logger.addHandler(console_handler)

    return StealthPayLogger(root_logger)


# ============================================================================
# CATEGORY LOGGERS
# ============================================================================

def get_logger(category: str) -> StealthPayLogger:
    """
    Ottieni logger per categoria (settlement, crypto, api, storage, ...).

    Example:
        >>> get_logger("settlement").name
        'stealthpay.settlement'
    """
    return StealthPayLogger(logging.getLogger(f"{ROOT_LOGGER_NAME}.{category}"))


# ============================================================================
# PERFORMANCE TRACKING
# ============================================================================

class PerformanceLogger:
    """
    Context manager per tracking performance.

    Example:
        >>> with PerformanceLogger(logger, "scan_feed", threshold_ms=500):
        ...     scanner.scan(announcements)
    """

    def __init__(
        self,
        logger: StealthPayLogger,
        operation: str,
        threshold_ms: Optional[int] = None
    ):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.start_time = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000

        extra = {
            "operation": self.operation,
            "duration_ms": round(self.elapsed_ms, 2)
        }

        if self.threshold_ms and self.elapsed_ms > self.threshold_ms:
            self.logger.warning(
                f"{self.operation} took {self.elapsed_ms:.2f}ms "
                f"(threshold: {self.threshold_ms}ms)",
                extra_data=extra
            )
        else:
            self.logger.debug(
                f"{self.operation} completed in {self.elapsed_ms:.2f}ms",
                extra_data=extra
            )
        return False


# ============================================================================
# AUDIT LOGGER
# ============================================================================

class AuditLogger:
    """
    Logger append-only per l'audit trail del settlement.

    Use for:
    - Nonce burn
    - Settlement completati
    - Settlement abortiti
    - Prelievi fee verso treasury

    Se `log_dir` è None l'audit passa solo dal logger `stealthpay.audit`
    (propagato al root), senza file dedicato.
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.audit")
        self.logger.setLevel(logging.INFO)

        if log_dir is not None:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            audit_file = (log_dir / "audit.log").resolve()

            already = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == audit_file
                for h in self.logger.handlers
            )
            if not already:
                # Nessuna rotation: l'audit si conserva integralmente
                handler = logging.FileHandler(audit_file, encoding='utf-8')
                handler.setFormatter(JSONFormatter(include_extra=True))
                self.logger.addHandler(handler)

    def _audit(self, message: str, action: str, **fields):
        fields["action"] = action
        fields["timestamp"] = datetime.now(timezone.utc).isoformat()
        self.logger.info(message, extra={'extra_data': fields})

    def log_nonce_burned(self, payer: str, nonce: str):
        self._audit("Nonce burned", "nonce_burned", payer=payer, nonce=nonce)

    def log_settlement(
        self,
        payer: str,
        stealth_address: str,
        amount: int,
        fee: int,
        nonce: str
    ):
        self._audit(
            "Payment settled",
            "settled",
            payer=payer,
            stealth_address=stealth_address,
            amount=amount,
            fee=fee,
            nonce=nonce,
        )

    def log_abort(self, payer: str, nonce: str, reason: str):
        self._audit("Settlement aborted", "aborted", payer=payer, nonce=nonce, reason=reason)

    def log_fee_withdrawal(self, treasury: str, amount: int):
        self._audit("Fees withdrawn", "fee_withdrawal", treasury=treasury, amount=amount)


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "ROOT_LOGGER_NAME",
    "short_hex",
    "setup_logging",
    "get_logger",
    "StealthPayLogger",
    "PerformanceLogger",
    "AuditLogger",
    "JSONFormatter",
    "ColoredTextFormatter",
]
