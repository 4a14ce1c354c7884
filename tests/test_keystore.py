"""
StealthPay - Keystore Tests
=============================
Test keystore cifrati (PBKDF2 + AES-256-GCM).
"""

import json

import pytest

from stealth_pay.errors import DecryptionError, EncryptionError, StorageError
from stealth_pay.wallet.keystore import StealthKeystore, decrypt_key_pair, encrypt_key_pair


PASSWORD = "correct horse battery"


class TestKeystoreCrypto:

    def test_roundtrip(self, recipient_keys):
        payload = encrypt_key_pair(recipient_keys, PASSWORD, iterations=10_000)

        assert payload["meta_address"] == recipient_keys.meta_address_hex
        assert recipient_keys.spending_priv.hex() not in json.dumps(payload)
        assert decrypt_key_pair(payload, PASSWORD) == recipient_keys

    def test_weak_password(self, recipient_keys):
        with pytest.raises(EncryptionError) as exc_info:
            encrypt_key_pair(recipient_keys, "short")
        assert exc_info.value.code == "WEAK_PASSWORD"

    def test_wrong_password(self, recipient_keys):
        payload = encrypt_key_pair(recipient_keys, PASSWORD, iterations=10_000)
        with pytest.raises(DecryptionError):
            decrypt_key_pair(payload, "wrong password")

    def test_tampered_meta_address(self, recipient_keys):
        """Il meta-address è associated data del GCM"""
        from stealth_pay.domain.keypairs import generate_key_pair

        payload = encrypt_key_pair(recipient_keys, PASSWORD, iterations=10_000)
        payload["meta_address"] = generate_key_pair().meta_address_hex

        with pytest.raises(DecryptionError):
            decrypt_key_pair(payload, PASSWORD)

    def test_invalid_format(self):
        with pytest.raises(DecryptionError) as exc_info:
            decrypt_key_pair({"meta_address": "0x00"}, PASSWORD)
        assert exc_info.value.code == "INVALID_KEYSTORE_FORMAT"


class TestStealthKeystore:
    """Test directory di keystore"""

    def test_save_load_list(self, temp_data_dir, recipient_keys):
        store = StealthKeystore(temp_data_dir / "keystore")

        path = store.save(recipient_keys, PASSWORD)

        assert path == store.path_for(recipient_keys)
        assert store.list_keystores() == [path]
        assert StealthKeystore.read_meta_address(path) == recipient_keys.meta_address_hex
        assert store.load(path, PASSWORD) == recipient_keys

    def test_missing_keystore(self, temp_data_dir):
        store = StealthKeystore(temp_data_dir)
        with pytest.raises(StorageError) as exc_info:
            store.load(temp_data_dir / "missing.json", PASSWORD)
        assert exc_info.value.code == "KEYSTORE_NOT_FOUND"

    def test_empty_directory(self, temp_data_dir):
        assert StealthKeystore(temp_data_dir / "nothing").list_keystores() == []
