"""
StealthPay - Encrypted Keystore
=================================
Persistenza KeyPair stealth cifrata con password.

Security Level: CRITICAL
Last Updated: 2026-10-19
Version: 1.0.0

Format (JSON):
{
    "version": 1,
    "meta_address": "0x...",        # pubblico, per lookup senza password
    "kdf": {"name": "pbkdf2-sha256", "iterations": 200000, "salt": hex},
    "cipher": {"name": "aes-256-gcm", "nonce": hex},
    "ciphertext": hex
}

Security:
- Password -> chiave con PBKDF2-HMAC-SHA256
- AES-256-GCM con il meta-address come associated data
- Salt e nonce casuali per ogni salvataggio
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from stealth_pay.domain.crypto_core import (
    derive_key_pbkdf2,
    encrypt_data_aes_gcm,
    decrypt_data_aes_gcm,
    generate_random_bytes,
)
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.errors import DecryptionError, EncryptionError, StorageError
from stealth_pay.logging_setup import get_logger


logger = get_logger("keystore")

KEYSTORE_VERSION = 1
DEFAULT_KDF_ITERATIONS = 200_000
MIN_PASSWORD_LENGTH = 8


def encrypt_key_pair(
    keys: KeyPair,
    password: str,
    iterations: int = DEFAULT_KDF_ITERATIONS
) -> Dict[str, Any]:
    """
    Cifra un KeyPair con password.

    Raises:
        EncryptionError: Password troppo debole
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise EncryptionError(
            f"Password too weak. Minimum {MIN_PASSWORD_LENGTH} characters.",
            code="WEAK_PASSWORD"
        )

    salt = generate_random_bytes(16)
    key = derive_key_pbkdf2(password.encode("utf-8"), salt, iterations=iterations)

    plaintext = json.dumps(
        {"spending_priv": keys.spending_priv.hex(), "viewing_priv": keys.viewing_priv.hex()}
    ).encode("utf-8")
    ciphertext, nonce = encrypt_data_aes_gcm(plaintext, key, associated_data=keys.meta_address)

    return {
        "version": KEYSTORE_VERSION,
        "meta_address": keys.meta_address_hex,
        "kdf": {"name": "pbkdf2-sha256", "iterations": iterations, "salt": salt.hex()},
        "cipher": {"name": "aes-256-gcm", "nonce": nonce.hex()},
        "ciphertext": ciphertext.hex(),
    }


def decrypt_key_pair(data: Dict[str, Any], password: str) -> KeyPair:
    """
    Decifra un keystore.

    Raises:
        DecryptionError: Password errata, dati corrotti o formato invalido
    """
    try:
        meta_address = bytes.fromhex(data["meta_address"].removeprefix("0x"))
        salt = bytes.fromhex(data["kdf"]["salt"])
        iterations = int(data["kdf"]["iterations"])
        nonce = bytes.fromhex(data["cipher"]["nonce"])
        ciphertext = bytes.fromhex(data["ciphertext"])
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise DecryptionError(
            f"Invalid keystore format: {e}",
            code="INVALID_KEYSTORE_FORMAT"
        )

    key = derive_key_pbkdf2(password.encode("utf-8"), salt, iterations=iterations)
    plaintext = decrypt_data_aes_gcm(ciphertext, key, nonce, associated_data=meta_address)

    secrets_dict = json.loads(plaintext.decode("utf-8"))
    keys = KeyPair.from_private_keys(
        bytes.fromhex(secrets_dict["spending_priv"]),
        bytes.fromhex(secrets_dict["viewing_priv"]),
    )

    if keys.meta_address != meta_address:
        raise DecryptionError(
            "Keystore meta-address does not match decrypted keys",
            code="KEYSTORE_MISMATCH"
        )
    return keys


class StealthKeystore:
    """
    Directory di keystore cifrati, un file JSON per meta-address.

    Examples:
        >>> store = StealthKeystore(Path("./keystore"))
        >>> path = store.save(keys, "correct horse battery")
        >>> store.load(path, "correct horse battery") == keys
        True
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, keys: KeyPair) -> Path:
        return self.directory / f"stealth-{keys.meta_address.hex()[:16]}.json"

    def save(self, keys: KeyPair, password: str, path: Union[str, Path, None] = None) -> Path:
        target = Path(path) if path is not None else self.path_for(keys)
        payload = encrypt_key_pair(keys, password)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Cannot write keystore {target}: {e}", code="KEYSTORE_WRITE_FAILED")

        logger.info(
            "Keystore saved",
            extra_data={"path": str(target), "meta_address": keys.meta_address_hex[:18]}
        )
        return target

    def load(self, path: Union[str, Path], password: str) -> KeyPair:
        target = Path(path)
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise StorageError(f"Keystore not found: {target}", code="KEYSTORE_NOT_FOUND")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read keystore {target}: {e}", code="KEYSTORE_READ_FAILED")

        keys = decrypt_key_pair(payload, password)
        logger.info("Keystore unlocked", extra_data={"path": str(target)})
        return keys

    def list_keystores(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(self.directory.glob("stealth-*.json"))

    @staticmethod
    def read_meta_address(path: Union[str, Path]) -> str:
        """Meta-address pubblico senza decifrare"""
        try:
            return json.loads(Path(path).read_text(encoding="utf-8"))["meta_address"]
        except (OSError, KeyError, json.JSONDecodeError) as e:
            raise StorageError(f"Invalid keystore {path}: {e}", code="KEYSTORE_READ_FAILED")


__all__ = [
    "encrypt_key_pair",
    "decrypt_key_pair",
    "StealthKeystore",
]
