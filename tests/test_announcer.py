"""
StealthPay - Announcer & Registry Tests
=========================================
Test del feed di announcement e del registry dei meta-address.
"""

import pytest

from stealth_pay.errors import (
    DuplicateAnnouncement,
    SignatureInvalid,
    ValidationError,
)
from stealth_pay.services.announcer import Announcement, AnnouncementLog
from stealth_pay.services.meta_registry import StealthMetaRegistry
from tests.conftest import NOW, OTHER_PAYER_KEY, PAYER_KEY


CALLER = "0x" + "40" * 20
EPHEMERAL = b"\x02" + b"\x11" * 32


def _stealth(index):
    return "0x" + f"{index + 1:040x}"


class TestAnnouncementLog:
    """Test feed announcement"""

    def test_announce_appends_in_order(self):
        appended = []
        log = AnnouncementLog(on_append=appended.append)

        for index in range(3):
            log.announce(1, _stealth(index), CALLER, EPHEMERAL, index, now=NOW + index)

        assert log.announcement_count == 3
        assert [a.index for a in log.page()] == [0, 1, 2]
        assert appended[2].timestamp == NOW + 2
        assert appended[0].metadata == b"\x00"

    def test_duplicate_stealth_address(self):
        log = AnnouncementLog()
        log.announce(1, _stealth(0), CALLER, EPHEMERAL, 7)

        with pytest.raises(DuplicateAnnouncement):
            log.announce(1, _stealth(0).upper().replace("0X", "0x"), CALLER, EPHEMERAL, 7)
        assert len(log) == 1

    @pytest.mark.parametrize("scheme_id,stealth,ephemeral,view_tag,code", [
        (2, _stealth(0), EPHEMERAL, 1, "UNSUPPORTED_SCHEME"),
        (1, "0x" + "00" * 20, EPHEMERAL, 1, "ZERO_ADDRESS"),
        (1, _stealth(0), b"\x02" * 32, 1, "INVALID_EPHEMERAL_KEY"),
        (1, _stealth(0), EPHEMERAL, 256, "INVALID_VIEW_TAG"),
    ])
    def test_validation(self, scheme_id, stealth, ephemeral, view_tag, code):
        log = AnnouncementLog()
        with pytest.raises(ValidationError) as exc_info:
            log.announce(scheme_id, stealth, CALLER, ephemeral, view_tag)
        assert exc_info.value.code == code
        assert log.announcement_count == 0

    def test_uncompressed_ephemeral_accepted(self):
        log = AnnouncementLog()
        log.announce(1, _stealth(0), CALLER, b"\x04" + b"\x11" * 64, 0)
        assert log.is_announced(_stealth(0))

    def test_paging(self):
        log = AnnouncementLog()
        for index in range(5):
            log.announce(1, _stealth(index), CALLER, EPHEMERAL, 0)

        assert [a.index for a in log.page(offset=3, limit=10)] == [3, 4]
        assert log.page(offset=10) == []
        assert [a.index for a in log.iter_from(4)] == [4]

        with pytest.raises(ValidationError):
            log.page(offset=-1)
        with pytest.raises(ValidationError):
            log.page(limit=0)
        with pytest.raises(ValidationError):
            log.page(limit=1001)

    def test_load_restores_index(self):
        log = AnnouncementLog()
        original = log.announce(1, _stealth(0), CALLER, EPHEMERAL, 9)

        restored = AnnouncementLog()
        restored.load([Announcement.from_dict(original.to_dict())])

        assert restored.get_by_stealth_address(_stealth(0)) == original
        with pytest.raises(DuplicateAnnouncement):
            restored.validate(1, _stealth(0), EPHEMERAL, 9)


class TestStealthMetaRegistry:
    """Test registry meta-address"""

    @pytest.fixture
    def registry(self):
        return StealthMetaRegistry("0x" + "66" * 20, chain_id=137)

    def test_register_and_lookup(self, registry, payer, recipient_keys):
        registry.register_keys(payer.address, 1, recipient_keys.meta_address)

        assert registry.stealth_meta_address_of(payer.address, 1) == recipient_keys.meta_address
        assert registry.stealth_meta_address_of(payer.address, 2) == b""

    def test_register_uri_form(self, registry, payer, recipient_keys):
        registry.register_keys(payer.address, 1, recipient_keys.meta_address_uri)
        assert registry.stealth_meta_address_of(payer.address.lower(), 1) == recipient_keys.meta_address

    def test_invalid_registration(self, registry, payer, recipient_keys):
        with pytest.raises(ValidationError) as exc_info:
            registry.register_keys(payer.address, 0, recipient_keys.meta_address)
        assert exc_info.value.code == "UNSUPPORTED_SCHEME"

        with pytest.raises(ValidationError) as exc_info:
            registry.register_keys(payer.address, 1, b"")
        assert exc_info.value.code == "EMPTY_META_ADDRESS"

    def test_register_on_behalf(self, registry, payer, recipient_keys):
        signature = registry.sign_register_keys(PAYER_KEY, 1, recipient_keys.meta_address)

        registry.register_keys_on_behalf(payer.address, 1, recipient_keys.meta_address, signature)

        assert registry.stealth_meta_address_of(payer.address, 1) == recipient_keys.meta_address
        assert registry.nonces(payer.address) == 1

        # La stessa firma non è riutilizzabile (nonce avanzato)
        with pytest.raises(SignatureInvalid):
            registry.register_keys_on_behalf(payer.address, 1, recipient_keys.meta_address, signature)

    def test_register_on_behalf_wrong_signer(self, registry, payer, recipient_keys):
        signature = registry.sign_register_keys(OTHER_PAYER_KEY, 1, recipient_keys.meta_address)

        with pytest.raises(SignatureInvalid):
            registry.register_keys_on_behalf(payer.address, 1, recipient_keys.meta_address, signature)
        assert registry.nonces(payer.address) == 0

    def test_increment_nonce_invalidates_signature(self, registry, payer, recipient_keys):
        signature = registry.sign_register_keys(PAYER_KEY, 1, recipient_keys.meta_address)
        assert registry.increment_nonce(payer.address) == 1

        with pytest.raises(SignatureInvalid):
            registry.register_keys_on_behalf(payer.address, 1, recipient_keys.meta_address, signature)
