"""
StealthPay - Announcement Log
===============================
Feed pubblico append-only degli announcement ERC-5564.

Security Level: HIGH
Last Updated: 2026-10-19
Version: 1.0.0

Invarianti:
- scheme_id == 1
- stealth address mai zero, annunciato al massimo una volta
- ephemeral key di 33 o 65 bytes
- ordine di inserimento stabile (index = posizione nel feed)
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from stealth_pay.constants import (
    EPHEMERAL_KEY_SIZES,
    SCHEME_ID_SECP256K1,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
)
from stealth_pay.domain.addressing import normalize_address, require_nonzero_address
from stealth_pay.errors import DuplicateAnnouncement, ValidationError
from stealth_pay.logging_setup import get_logger, short_hex


logger = get_logger("announcer")


# ============================================================================
# ANNOUNCEMENT
# ============================================================================

@dataclass(frozen=True)
class Announcement:
    """
    Record di discovery immutabile.

    Attributes:
        scheme_id: Scheme ERC-5564 (1)
        stealth_address: Destinatario one-time
        caller: Chi ha emesso l'announcement (settlement o router)
        ephemeral_pub_key: E del sender
        view_tag: Primo byte dello shared secret hash
        index: Posizione nel feed
        timestamp: Istante di emissione
    """
    scheme_id: int
    stealth_address: str
    caller: str
    ephemeral_pub_key: bytes
    view_tag: int
    index: int = 0
    timestamp: int = 0

    @property
    def metadata(self) -> bytes:
        """Metadata ERC-5564: il primo byte è il view tag"""
        return bytes([self.view_tag])

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "scheme_id": self.scheme_id,
            "stealth_address": self.stealth_address,
            "caller": self.caller,
            "ephemeral_pub_key": "0x" + self.ephemeral_pub_key.hex(),
            "view_tag": self.view_tag,
            "metadata": "0x" + self.metadata.hex(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Announcement":
        ephemeral = data["ephemeral_pub_key"]
        if isinstance(ephemeral, str):
            ephemeral = bytes.fromhex(ephemeral.removeprefix("0x"))
        return cls(
            scheme_id=int(data.get("scheme_id", SCHEME_ID_SECP256K1)),
            stealth_address=data["stealth_address"],
            caller=data.get("caller", ""),
            ephemeral_pub_key=ephemeral,
            view_tag=int(data["view_tag"]),
            index=int(data.get("index", 0)),
            timestamp=int(data.get("timestamp", 0)),
        )


def validate_ephemeral_key(ephemeral_pub_key: bytes) -> None:
    """
    Raises:
        ValidationError: Lunghezza diversa da 33 o 65 bytes
    """
    if len(ephemeral_pub_key) not in EPHEMERAL_KEY_SIZES:
        raise ValidationError(
            "Invalid ephemeral key length",
            code="INVALID_EPHEMERAL_KEY",
            details={"length": len(ephemeral_pub_key)}
        )


def validate_view_tag(view_tag: int) -> None:
    if not isinstance(view_tag, int) or not 0 <= view_tag <= 255:
        raise ValidationError(
            "View tag must be in [0, 255]",
            code="INVALID_VIEW_TAG",
            details={"view_tag": view_tag}
        )


# ============================================================================
# ANNOUNCEMENT LOG
# ============================================================================

class AnnouncementLog:
    """
    Log ordinato degli announcement, con indice per stealth address.

    Args:
        on_append: Callback dopo ogni append (persistence write-through)

    Examples:
        >>> log = AnnouncementLog()
        >>> log.announce(1, stealth, caller, ephemeral, 42, now=1_700_000_000)
        >>> log.announcement_count
        1
    """

    def __init__(self, on_append: Optional[Callable[[Announcement], None]] = None):
        self.on_append = on_append

        self._entries: List[Announcement] = []
        self._by_address: Dict[str, Announcement] = {}
        self._lock = threading.RLock()

    def validate(
        self,
        scheme_id: int,
        stealth_address: str,
        ephemeral_pub_key: bytes,
        view_tag: int,
    ) -> str:
        """
        Pre-check senza mutazioni.

        Returns:
            str: Stealth address normalizzato

        Raises:
            ValidationError: scheme, indirizzo zero, ephemeral key, view tag
            DuplicateAnnouncement: Stealth address già annunciato
        """
        if scheme_id != SCHEME_ID_SECP256K1:
            raise ValidationError(
                "Unsupported scheme",
                code="UNSUPPORTED_SCHEME",
                details={"scheme_id": scheme_id}
            )

        stealth = require_nonzero_address(stealth_address, "stealth address")
        validate_ephemeral_key(ephemeral_pub_key)
        validate_view_tag(view_tag)

        with self._lock:
            if stealth.lower() in self._by_address:
                raise DuplicateAnnouncement(
                    "Stealth address already announced",
                    details={"stealth_address": stealth}
                )
        return stealth

    def announce(
        self,
        scheme_id: int,
        stealth_address: str,
        caller: str,
        ephemeral_pub_key: bytes,
        view_tag: int,
        now: int = 0,
    ) -> Announcement:
        """
        Appende un announcement al feed.

        Raises:
            ValidationError, DuplicateAnnouncement
        """
        ephemeral_pub_key = bytes(ephemeral_pub_key)

        with self._lock:
            stealth = self.validate(scheme_id, stealth_address, ephemeral_pub_key, view_tag)

            announcement = Announcement(
                scheme_id=scheme_id,
                stealth_address=stealth,
                caller=normalize_address(caller, "caller"),
                ephemeral_pub_key=ephemeral_pub_key,
                view_tag=view_tag,
                index=len(self._entries),
                timestamp=now,
            )
            self._entries.append(announcement)
            self._by_address[stealth.lower()] = announcement

            if self.on_append is not None:
                self.on_append(announcement)

        logger.debug(
            "Announcement appended",
            extra_data={
                "index": announcement.index,
                "stealth_address": short_hex(stealth),
                "view_tag": view_tag,
            }
        )
        return announcement

    def load(self, announcements: Iterable[Announcement]) -> None:
        """Ripristina il feed persistito (ordine per index)"""
        with self._lock:
            for announcement in sorted(announcements, key=lambda a: a.index):
                self._entries.append(announcement)
                self._by_address[announcement.stealth_address.lower()] = announcement

    # ========================================================================
    # FEED
    # ========================================================================

    @property
    def announcement_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.announcement_count

    def page(
        self,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        scheme_id: Optional[int] = None,
    ) -> List[Announcement]:
        """
        Pagina del feed in ordine di inserimento.

        Raises:
            ValidationError: offset negativo o limit fuori da [1, 1000]
        """
        if offset < 0:
            raise ValidationError("Offset cannot be negative")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be in [1, {MAX_PAGE_SIZE}]")

        with self._lock:
            window = self._entries[offset:offset + limit]

        if scheme_id is not None:
            window = [a for a in window if a.scheme_id == scheme_id]
        return window

    def iter_from(self, offset: int = 0) -> Iterator[Announcement]:
        """Itera dal offset alla coda corrente (snapshot)"""
        with self._lock:
            snapshot = list(self._entries[offset:])
        return iter(snapshot)

    def get_by_stealth_address(self, stealth_address: str) -> Optional[Announcement]:
        with self._lock:
            return self._by_address.get(stealth_address.lower())

    def is_announced(self, stealth_address: str) -> bool:
        return self.get_by_stealth_address(stealth_address) is not None


__all__ = [
    "Announcement",
    "AnnouncementLog",
    "validate_ephemeral_key",
    "validate_view_tag",
]
