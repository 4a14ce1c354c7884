"""
StealthPay - Crypto Tests
===========================
Test primitive secp256k1, indirizzi e meta-address.
"""

import pytest

from stealth_pay.constants import META_ADDRESS_PREFIX, ZERO_ADDRESS
from stealth_pay.domain.addressing import (
    address_of,
    compare_addresses,
    is_valid_address,
    normalize_address,
    require_nonzero_address,
)
from stealth_pay.domain.crypto_core import (
    CURVE_ORDER,
    bytes_to_scalar,
    compress_public_key,
    decode_point,
    decrypt_data_aes_gcm,
    derive_key_pbkdf2,
    encrypt_data_aes_gcm,
    keccak256,
    public_key_from_scalar,
    scalar_to_bytes,
)
from stealth_pay.domain.keypairs import (
    KeyPair,
    generate_key_pair,
    is_valid_meta_address,
    parse_meta_address,
)
from stealth_pay.errors import DecryptionError, InvalidKeyError, ValidationError


class TestCryptoCore:
    """Test primitive di basso livello"""

    def test_keccak_is_not_sha3(self):
        """Keccak-256 della stringa vuota (variante Ethereum)"""
        assert keccak256(b"").hex().startswith("c5d2460186f7233c")

    def test_scalar_range(self):
        """Scalari zero o >= n sono rifiutati"""
        with pytest.raises(InvalidKeyError):
            bytes_to_scalar(b"\x00" * 32)
        with pytest.raises(InvalidKeyError):
            bytes_to_scalar(scalar_to_bytes(CURVE_ORDER))
        with pytest.raises(InvalidKeyError):
            bytes_to_scalar(b"\x01" * 31)

        assert bytes_to_scalar(scalar_to_bytes(1)) == 1

    def test_compressed_and_uncompressed_decode_to_same_point(self):
        """SEC1 compressa e non compressa"""
        compressed = public_key_from_scalar(12345)
        uncompressed = public_key_from_scalar(12345, compressed=False)

        assert len(compressed) == 33
        assert len(uncompressed) == 65
        assert decode_point(compressed) == decode_point(uncompressed)
        assert compress_public_key(uncompressed) == compressed

    def test_invalid_point_rejected(self):
        """Punti fuori curva o lunghezze errate"""
        with pytest.raises(InvalidKeyError):
            decode_point(b"\x04" + (1).to_bytes(32, "big") + (1).to_bytes(32, "big"))
        with pytest.raises(InvalidKeyError):
            decode_point(b"\x02" * 10)

    def test_aes_gcm_wrong_key(self):
        """Tag GCM verificato in decrypt"""
        key = derive_key_pbkdf2(b"password123", b"s" * 16, iterations=10_000)
        ciphertext, nonce = encrypt_data_aes_gcm(b"secret", key, associated_data=b"ad")

        assert decrypt_data_aes_gcm(ciphertext, key, nonce, associated_data=b"ad") == b"secret"

        wrong = derive_key_pbkdf2(b"password124", b"s" * 16, iterations=10_000)
        with pytest.raises(DecryptionError):
            decrypt_data_aes_gcm(ciphertext, wrong, nonce, associated_data=b"ad")


class TestAddressing:
    """Test indirizzi EIP-55"""

    def test_known_address(self):
        """Indirizzo della chiave privata 1"""
        assert address_of(public_key_from_scalar(1)) == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"

    def test_normalize(self):
        lower = "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
        assert normalize_address(lower) == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"
        assert compare_addresses(lower, normalize_address(lower))

    def test_invalid_addresses(self):
        assert not is_valid_address("0x1234")
        assert not is_valid_address("not an address")

        with pytest.raises(ValidationError):
            normalize_address("0x1234")

    def test_zero_address_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            require_nonzero_address(ZERO_ADDRESS, "stealth")
        assert exc_info.value.code == "ZERO_ADDRESS"


class TestKeyPair:
    """Test KeyPair e meta-address"""

    def test_generate_key_pair(self):
        keys = generate_key_pair()

        assert len(keys.spending_priv) == 32
        assert len(keys.viewing_priv) == 32
        assert len(keys.meta_address) == 66
        assert keys.meta_address[:33] == keys.spending_pub
        assert keys.meta_address[33:] == keys.viewing_pub
        assert keys.spending_priv != keys.viewing_priv

    def test_meta_address_forms(self):
        """bytes, hex e URI st:eth: sono equivalenti"""
        keys = generate_key_pair()
        expected = (keys.spending_pub, keys.viewing_pub)

        assert parse_meta_address(keys.meta_address) == expected
        assert parse_meta_address(keys.meta_address_hex) == expected
        assert parse_meta_address(keys.meta_address_uri) == expected
        assert keys.meta_address_uri.startswith(META_ADDRESS_PREFIX)

    def test_invalid_meta_address(self):
        keys = generate_key_pair()

        assert not is_valid_meta_address(keys.meta_address[:65])
        assert not is_valid_meta_address("0xzz")
        assert not is_valid_meta_address(b"\x05" + b"\x01" * 32 + keys.viewing_pub)

    def test_dict_roundtrip_detects_mismatch(self):
        keys = generate_key_pair()
        assert KeyPair.from_dict(keys.to_dict()) == keys

        tampered = keys.to_dict()
        tampered["viewing_pub"] = keys.spending_pub.hex()
        with pytest.raises(InvalidKeyError):
            KeyPair.from_dict(tampered)

    def test_repr_hides_private_keys(self):
        keys = generate_key_pair()
        assert keys.spending_priv.hex() not in repr(keys)
        assert keys.viewing_priv.hex() not in repr(keys)
