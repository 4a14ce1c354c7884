"""
StealthPay - Settlement Database
==================================
Journal SQLite write-through del settlement.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Features:
- Nonce consumati (payer, nonce) con PRIMARY KEY: unicità anche tra restart
- Feed announcement ordinato (stealth_address UNIQUE)
- Receipts di settlement
- Stato agent
- Metadata (fee_bps, paused, schema_version)
"""

import sqlite3
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple, Union

from stealth_pay.errors import DatabaseConnectionError, DatabaseError
from stealth_pay.logging_setup import get_logger
from stealth_pay.services.agent_registry import Agent
from stealth_pay.services.announcer import Announcement
from stealth_pay.services.settlement import SettlementReceipt


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("storage")


# ============================================================================
# DATABASE SCHEMA
# ============================================================================

SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
-- Nonce EIP-3009 consumati dal settlement
CREATE TABLE IF NOT EXISTS processed_nonces (
    payer TEXT NOT NULL,
    nonce TEXT NOT NULL,
    burned_at INTEGER NOT NULL,
    PRIMARY KEY (payer, nonce)
);

-- Feed announcement ERC-5564
CREATE TABLE IF NOT EXISTS announcements (
    idx INTEGER PRIMARY KEY,
    scheme_id INTEGER NOT NULL,
    stealth_address TEXT UNIQUE NOT NULL,
    caller TEXT NOT NULL,
    ephemeral_pub_key TEXT NOT NULL,
    view_tag INTEGER NOT NULL,
    timestamp INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_announcements_scheme ON announcements(scheme_id);

-- Receipts
CREATE TABLE IF NOT EXISTS receipts (
    payer TEXT NOT NULL,
    nonce TEXT NOT NULL,
    stealth_address TEXT NOT NULL,
    amount INTEGER NOT NULL,
    fee INTEGER NOT NULL,
    settled_at INTEGER NOT NULL,
    announcement_index INTEGER NOT NULL,
    PRIMARY KEY (payer, nonce)
);

CREATE INDEX IF NOT EXISTS idx_receipts_stealth ON receipts(stealth_address);

-- Agent
CREATE TABLE IF NOT EXISTS agents (
    owner TEXT PRIMARY KEY,
    metadata_hash TEXT NOT NULL,
    daily_spend_limit INTEGER NOT NULL,
    spent_today INTEGER NOT NULL,
    last_reset_timestamp INTEGER NOT NULL,
    reputation_score INTEGER NOT NULL,
    total_transactions INTEGER NOT NULL,
    total_volume INTEGER NOT NULL,
    is_active INTEGER NOT NULL,
    registered_at INTEGER NOT NULL
);

-- Metadata table
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);

INSERT OR REPLACE INTO metadata (key, value, updated_at)
VALUES ('schema_version', '1', strftime('%s', 'now'));
"""


# ============================================================================
# DATABASE CLASS
# ============================================================================

class SettlementDatabase:
    """
    Database SQLite per la persistenza del settlement.

    Thread-safe con connection thread-local.

    Examples:
        >>> db = SettlementDatabase(Path("stealthpay.db"))
        >>> db.record_processed_nonce(payer, nonce, now)
        >>> db.load_processed_nonces()
        [('0xabc...', b'...')]
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._initialize_database()

        logger.info("Database initialized", extra_data={"db_path": str(self.db_path)})

    @classmethod
    def from_settings(cls, settings) -> "SettlementDatabase":
        return cls(settings.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        """Connection thread-local"""
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                    timeout=30.0
                )
                self._local.connection.execute("PRAGMA journal_mode = WAL")
            except sqlite3.Error as e:
                raise DatabaseConnectionError(
                    f"Failed to connect to database: {e}",
                    code="DB_CONNECTION_FAILED"
                )
        return self._local.connection

    def _initialize_database(self) -> None:
        try:
            conn = self._get_connection()
            conn.executescript(CREATE_TABLES_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to initialize database: {e}", code="DB_INIT_FAILED")

    def _execute(self, sql: str, params: tuple, error_code: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database write failed: {e}", code=error_code)

    def _query(self, sql: str, params: tuple = ()) -> List[tuple]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Database query failed: {e}", code="DB_QUERY_FAILED")

    # ========================================================================
    # NONCES
    # ========================================================================

    def record_processed_nonce(self, payer: str, nonce: bytes, burned_at: int) -> None:
        """
        Raises:
            DatabaseError: Nonce già presente o scrittura fallita
        """
        self._execute(
            "INSERT INTO processed_nonces (payer, nonce, burned_at) VALUES (?, ?, ?)",
            (payer.lower(), bytes(nonce).hex(), burned_at),
            "NONCE_SAVE_FAILED",
        )

    def load_processed_nonces(self) -> List[Tuple[str, bytes]]:
        rows = self._query("SELECT payer, nonce FROM processed_nonces")
        return [(payer, bytes.fromhex(nonce)) for payer, nonce in rows]

    def is_nonce_processed(self, payer: str, nonce: bytes) -> bool:
        rows = self._query(
            "SELECT 1 FROM processed_nonces WHERE payer = ? AND nonce = ?",
            (payer.lower(), bytes(nonce).hex()),
        )
        return bool(rows)

    # ========================================================================
    # ANNOUNCEMENTS
    # ========================================================================

    def save_announcement(self, announcement: Announcement) -> None:
        self._execute(
            """
            INSERT INTO announcements (
                idx, scheme_id, stealth_address, caller,
                ephemeral_pub_key, view_tag, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                announcement.index,
                announcement.scheme_id,
                announcement.stealth_address,
                announcement.caller,
                announcement.ephemeral_pub_key.hex(),
                announcement.view_tag,
                announcement.timestamp,
            ),
            "ANNOUNCEMENT_SAVE_FAILED",
        )

    def load_announcements(self, offset: int = 0, limit: Optional[int] = None) -> List[Announcement]:
        sql = (
            "SELECT idx, scheme_id, stealth_address, caller, ephemeral_pub_key, view_tag, timestamp "
            "FROM announcements WHERE idx >= ? ORDER BY idx"
        )
        params: tuple = (offset,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (offset, limit)

        return [
            Announcement(
                scheme_id=scheme_id,
                stealth_address=stealth,
                caller=caller,
                ephemeral_pub_key=bytes.fromhex(ephemeral),
                view_tag=view_tag,
                index=idx,
                timestamp=timestamp,
            )
            for idx, scheme_id, stealth, caller, ephemeral, view_tag, timestamp in self._query(sql, params)
        ]

    def get_announcement_count(self) -> int:
        return self._query("SELECT COUNT(*) FROM announcements")[0][0]

    # ========================================================================
    # RECEIPTS
    # ========================================================================

    def save_receipt(self, receipt: SettlementReceipt) -> None:
        self._execute(
            """
            INSERT INTO receipts (
                payer, nonce, stealth_address, amount, fee, settled_at, announcement_index
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                receipt.payer,
                receipt.nonce.hex(),
                receipt.stealth_address,
                receipt.amount,
                receipt.fee,
                receipt.settled_at,
                receipt.announcement_index,
            ),
            "RECEIPT_SAVE_FAILED",
        )

    def load_receipts(self) -> List[SettlementReceipt]:
        rows = self._query(
            "SELECT payer, nonce, stealth_address, amount, fee, settled_at, announcement_index "
            "FROM receipts ORDER BY settled_at, announcement_index"
        )
        return [
            SettlementReceipt(
                payer=payer,
                stealth_address=stealth,
                amount=amount,
                fee=fee,
                nonce=bytes.fromhex(nonce),
                settled_at=settled_at,
                announcement_index=index,
            )
            for payer, nonce, stealth, amount, fee, settled_at, index in rows
        ]

    # ========================================================================
    # AGENTS
    # ========================================================================

    def save_agent(self, agent: Agent) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO agents (
                owner, metadata_hash, daily_spend_limit, spent_today,
                last_reset_timestamp, reputation_score, total_transactions,
                total_volume, is_active, registered_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                agent.owner,
                agent.metadata_hash,
                agent.daily_spend_limit,
                agent.spent_today,
                agent.last_reset_timestamp,
                agent.reputation_score,
                agent.total_transactions,
                agent.total_volume,
                int(agent.is_active),
                agent.registered_at,
            ),
            "AGENT_SAVE_FAILED",
        )

    def load_agents(self) -> List[Agent]:
        rows = self._query(
            "SELECT owner, metadata_hash, daily_spend_limit, spent_today, last_reset_timestamp, "
            "reputation_score, total_transactions, total_volume, is_active, registered_at FROM agents"
        )
        return [
            Agent(
                owner=row[0],
                metadata_hash=row[1],
                daily_spend_limit=row[2],
                spent_today=row[3],
                last_reset_timestamp=row[4],
                reputation_score=row[5],
                total_transactions=row[6],
                total_volume=row[7],
                is_active=bool(row[8]),
                registered_at=row[9],
            )
            for row in rows
        ]

    # ========================================================================
    # METADATA
    # ========================================================================

    def set_metadata(self, key: str, value: str) -> None:
        self._execute(
            "INSERT OR REPLACE INTO metadata (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, int(time.time())),
            "METADATA_SAVE_FAILED",
        )

    def get_metadata(self, key: str, default: Optional[str] = None) -> Optional[str]:
        rows = self._query("SELECT value FROM metadata WHERE key = ?", (key,))
        return rows[0][0] if rows else default

    # ========================================================================
    # UTILITY
    # ========================================================================

    def close(self) -> None:
        """Chiudi la connection del thread corrente"""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            delattr(self._local, "connection")

        logger.info("Database closed")


__all__ = [
    "SCHEMA_VERSION",
    "SettlementDatabase",
]
