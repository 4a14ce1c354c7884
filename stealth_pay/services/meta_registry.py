"""
StealthPay - Stealth Meta-Address Registry
============================================
Registro (registrant, scheme_id) -> meta-address, stile ERC-6538.

Supporta registrazione diretta e delegata via firma EIP-712
RegisterKeys con nonce monotono per registrant.
"""

import threading
from typing import Any, Dict, Optional, Tuple, Union

from eth_account import Account
from eth_account.messages import encode_typed_data

from stealth_pay.constants import DEFAULT_CHAIN_ID, SUPPORTED_SCHEME_IDS
from stealth_pay.domain.addressing import (
    compare_addresses,
    normalize_address,
    require_nonzero_address,
)
from stealth_pay.domain.keypairs import meta_address_to_bytes
from stealth_pay.errors import SignatureInvalid, ValidationError
from stealth_pay.logging_setup import get_logger, short_hex


logger = get_logger("registry")

REGISTRY_DOMAIN_NAME = "StealthMetaRegistry"
REGISTRY_DOMAIN_VERSION = "1"

REGISTER_KEYS_TYPES: Dict[str, list] = {
    "RegisterKeys": [
        {"name": "registrant", "type": "address"},
        {"name": "schemeId", "type": "uint256"},
        {"name": "stealthMetaAddress", "type": "bytes"},
        {"name": "nonce", "type": "uint256"},
    ],
}


def _meta_bytes(meta: Union[bytes, str]) -> bytes:
    if isinstance(meta, str):
        meta = meta_address_to_bytes(meta) if meta else b""
    return bytes(meta)


class StealthMetaRegistry:
    """
    Registro dei meta-address pubblicati.

    Args:
        verifying_contract: Indirizzo del registry nel domain EIP-712
        chain_id: Chain id del domain

    Examples:
        >>> registry = StealthMetaRegistry("0x" + "66" * 20)
        >>> registry.register_keys(alice, 1, keys.meta_address)
        >>> registry.stealth_meta_address_of(alice, 1) == keys.meta_address
        True
    """

    def __init__(self, verifying_contract: str, chain_id: int = DEFAULT_CHAIN_ID):
        self.verifying_contract = normalize_address(verifying_contract, "registry")
        self.chain_id = chain_id

        self._entries: Dict[Tuple[str, int], bytes] = {}
        self._nonces: Dict[str, int] = {}
        self._lock = threading.RLock()

    # ========================================================================
    # EIP-712
    # ========================================================================

    def domain(self) -> Dict[str, Any]:
        return {
            "name": REGISTRY_DOMAIN_NAME,
            "version": REGISTRY_DOMAIN_VERSION,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }

    def register_keys_signable(self, registrant: str, scheme_id: int, meta: bytes, nonce: int):
        return encode_typed_data(
            domain_data=self.domain(),
            message_types=REGISTER_KEYS_TYPES,
            message_data={
                "registrant": normalize_address(registrant, "registrant"),
                "schemeId": scheme_id,
                "stealthMetaAddress": meta,
                "nonce": nonce,
            },
        )

    def sign_register_keys(
        self,
        private_key: Union[bytes, str],
        scheme_id: int,
        meta: Union[bytes, str],
        nonce: Optional[int] = None,
    ) -> bytes:
        """Helper lato registrant: firma RegisterKeys con il nonce corrente"""
        account = Account.from_key(private_key)
        if nonce is None:
            nonce = self.nonces(account.address)
        signable = self.register_keys_signable(account.address, scheme_id, _meta_bytes(meta), nonce)
        return bytes(Account.sign_message(signable, private_key=account.key).signature)

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    @staticmethod
    def _validate(scheme_id: int, meta: bytes) -> None:
        if scheme_id not in SUPPORTED_SCHEME_IDS:
            raise ValidationError(
                "Invalid scheme",
                code="UNSUPPORTED_SCHEME",
                details={"scheme_id": scheme_id}
            )
        if not meta:
            raise ValidationError("Empty meta-address", code="EMPTY_META_ADDRESS")

    def _store(self, registrant: str, scheme_id: int, meta: bytes) -> None:
        self._entries[(registrant.lower(), scheme_id)] = meta
        logger.info(
            "Stealth meta-address registered",
            extra_data={"registrant": short_hex(registrant), "scheme_id": scheme_id}
        )

    def register_keys(self, caller: str, scheme_id: int, meta: Union[bytes, str]) -> None:
        """
        Registra il meta-address del caller.

        Raises:
            ValidationError: Scheme non supportato o meta-address vuoto
        """
        registrant = require_nonzero_address(caller, "registrant")
        meta = _meta_bytes(meta)
        self._validate(scheme_id, meta)

        with self._lock:
            self._store(registrant, scheme_id, meta)

    def register_keys_on_behalf(
        self,
        registrant: str,
        scheme_id: int,
        meta: Union[bytes, str],
        signature: Union[bytes, str],
    ) -> None:
        """
        Registrazione delegata: chiunque sottomette, il registrant firma.

        Raises:
            ValidationError: Scheme o meta-address invalidi
            SignatureInvalid: Firma non del registrant (o nonce stale)
        """
        registrant = require_nonzero_address(registrant, "registrant")
        meta = _meta_bytes(meta)
        self._validate(scheme_id, meta)

        if isinstance(signature, str):
            signature = bytes.fromhex(signature.removeprefix("0x"))

        with self._lock:
            nonce = self._nonces.get(registrant.lower(), 0)
            signable = self.register_keys_signable(registrant, scheme_id, meta, nonce)
            try:
                signer = Account.recover_message(signable, signature=bytes(signature))
            except Exception as e:
                raise SignatureInvalid(
                    f"Signature recovery failed: {e}",
                    details={"registrant": registrant}
                )

            if not compare_addresses(signer, registrant):
                raise SignatureInvalid(
                    "Invalid signature",
                    details={"registrant": registrant, "recovered": signer}
                )

            self._nonces[registrant.lower()] = nonce + 1
            self._store(registrant, scheme_id, meta)

    def increment_nonce(self, caller: str) -> int:
        """Invalida le firme pendenti del caller"""
        key = normalize_address(caller, "registrant").lower()
        with self._lock:
            self._nonces[key] = self._nonces.get(key, 0) + 1
            return self._nonces[key]

    # ========================================================================
    # QUERIES
    # ========================================================================

    def nonces(self, registrant: str) -> int:
        with self._lock:
            return self._nonces.get(registrant.lower(), 0)

    def stealth_meta_address_of(self, registrant: str, scheme_id: int) -> bytes:
        """Meta-address registrato (b"" se assente)"""
        with self._lock:
            return self._entries.get((registrant.lower(), scheme_id), b"")


__all__ = [
    "REGISTER_KEYS_TYPES",
    "StealthMetaRegistry",
]
