"""
StealthPay - Stealth Address Tests
====================================
Test derivazione lato sender, scanning e claim lato recipient.
"""

import pytest
from eth_account import Account

from stealth_pay.domain.crypto_core import keccak256, public_key_from_scalar, ecdh_shared_point, decode_point
from stealth_pay.domain.keypairs import KeyPair, generate_key_pair
from stealth_pay.errors import ValidationError
from stealth_pay.services.announcer import Announcement
from stealth_pay.wallet.stealth_address import StealthAddressGenerator, StealthWallet


def _announcement(generated, index=0):
    return Announcement(
        scheme_id=1,
        stealth_address=generated.stealth_address,
        caller="0x" + "40" * 20,
        ephemeral_pub_key=generated.ephemeral_pub_key,
        view_tag=generated.view_tag,
        index=index,
    )


class TestStealthAddressGenerator:
    """Test lato sender"""

    def test_generate(self, recipient_keys, stealth_generator):
        generated = stealth_generator.generate(recipient_keys.meta_address)

        assert generated.stealth_address.startswith("0x")
        assert len(generated.stealth_address) == 42
        assert len(generated.ephemeral_pub_key) == 33
        assert 0 <= generated.view_tag <= 255

    def test_fresh_address_each_time(self, recipient_keys, stealth_generator):
        """Ogni pagamento usa un ephemeral diverso"""
        first = stealth_generator.generate(recipient_keys.meta_address)
        second = stealth_generator.generate(recipient_keys.meta_address)

        assert first.stealth_address != second.stealth_address
        assert first.ephemeral_pub_key != second.ephemeral_pub_key

    def test_deterministic_with_fixed_ephemeral(self, recipient_keys, stealth_generator):
        ephemeral = (7).to_bytes(32, "big")

        first = stealth_generator.generate(recipient_keys.meta_address, ephemeral_private_key=ephemeral)
        second = stealth_generator.generate(recipient_keys.meta_address_uri, ephemeral_private_key=ephemeral)

        assert first == second
        assert first.ephemeral_pub_key == public_key_from_scalar(7)

    def test_view_tag_is_first_byte_of_shared_secret(self, recipient_keys, stealth_generator):
        """view_tag = keccak256(compress(e * view_pub))[0]"""
        generated = stealth_generator.generate(
            recipient_keys.meta_address, ephemeral_private_key=(99).to_bytes(32, "big")
        )
        shared = ecdh_shared_point(99, decode_point(recipient_keys.viewing_pub))

        assert generated.view_tag == keccak256(shared)[0]

    def test_invalid_meta_address(self, stealth_generator):
        with pytest.raises(ValidationError):
            stealth_generator.generate(b"\x02" * 65)


class TestStealthWallet:
    """Test lato recipient"""

    def test_check_and_claim(self, recipient_wallet, stealth_generator):
        """La chiave di claim controlla lo stealth address"""
        generated = stealth_generator.generate(recipient_wallet.meta_address)

        match = recipient_wallet.check(_announcement(generated))
        assert match is not None
        assert match.stealth_address == generated.stealth_address

        claim_key = recipient_wallet.claim_key(match)
        assert Account.from_key(claim_key).address == generated.stealth_address

    def test_other_recipient_does_not_match(self, recipient_keys, stealth_generator):
        generated = stealth_generator.generate(recipient_keys.meta_address)
        stranger = StealthWallet(generate_key_pair())

        assert stranger.check(_announcement(generated)) is None

    def test_view_tag_mismatch_is_skipped(self, recipient_wallet, stealth_generator):
        generated = stealth_generator.generate(recipient_wallet.meta_address)
        announcement = _announcement(generated)
        wrong_tag = Announcement(
            scheme_id=announcement.scheme_id,
            stealth_address=announcement.stealth_address,
            caller=announcement.caller,
            ephemeral_pub_key=announcement.ephemeral_pub_key,
            view_tag=(announcement.view_tag + 1) % 256,
        )

        assert recipient_wallet.check(wrong_tag) is None

    def test_matching_view_tag_with_other_address(self, recipient_wallet, stealth_generator):
        """View tag corretto ma indirizzo diverso: nessun match"""
        generated = stealth_generator.generate(recipient_wallet.meta_address)
        other = stealth_generator.generate(recipient_wallet.meta_address)
        announcement = _announcement(generated)
        forged = Announcement(
            scheme_id=announcement.scheme_id,
            stealth_address=other.stealth_address,
            caller=announcement.caller,
            ephemeral_pub_key=announcement.ephemeral_pub_key,
            view_tag=announcement.view_tag,
        )

        assert other.stealth_address != generated.stealth_address
        assert recipient_wallet.check(forged) is None
        assert recipient_wallet.check(announcement) is not None

    def test_scan_feed(self, recipient_wallet, stealth_generator):
        """Solo gli announcement del recipient, in ordine di feed"""
        stranger_meta = generate_key_pair().meta_address
        feed = []
        mine = []
        for index in range(6):
            if index % 2 == 0:
                generated = stealth_generator.generate(recipient_wallet.meta_address)
                mine.append(generated.stealth_address)
            else:
                generated = stealth_generator.generate(stranger_meta)
            feed.append(_announcement(generated, index))

        matches = recipient_wallet.scan(feed)

        assert [m.stealth_address for m in matches] == mine
        assert [m.announcement.index for m in matches] == [0, 2, 4]

    def test_malformed_ephemeral_key_does_not_abort_scan(self, recipient_wallet, stealth_generator):
        generated = stealth_generator.generate(recipient_wallet.meta_address)
        broken = Announcement(
            scheme_id=1,
            stealth_address="0x" + "ab" * 20,
            caller="0x" + "40" * 20,
            ephemeral_pub_key=b"\x05" + b"\x01" * 32,
            view_tag=0,
        )

        matches = recipient_wallet.scan([broken, _announcement(generated, 1)])
        assert len(matches) == 1

    def test_restored_keys_match(self, recipient_keys, stealth_generator):
        """Un wallet ricostruito dalle sole chiavi private riconosce i pagamenti"""
        generated = stealth_generator.generate(recipient_keys.meta_address)
        restored = StealthWallet(
            KeyPair.from_private_keys(recipient_keys.spending_priv, recipient_keys.viewing_priv)
        )

        assert restored.check(_announcement(generated)) is not None
