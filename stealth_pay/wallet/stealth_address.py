"""
StealthPay - Stealth Addresses
================================
Stealth address ERC-5564 (scheme 1: secp256k1 + view tag).

Implementazione completa con ECDH dual-key system.

Formula (sender):
- Ephemeral keypair (e, E = e*G)
- h = keccak256(compress(e * view_pub)), view_tag = h[0]
- P = spend_pub + (h mod n)*G
- stealth_address = address(P)

Formula (recipient):
- h' = keccak256(compress(view_priv * E))
- view tag diverso -> scarta (fast path)
- address(spend_pub + (h' mod n)*G) == stealth_address -> match
- chiave di claim: (spend_priv + h' mod n) mod n
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from stealth_pay.domain.crypto_core import (
    GENERATOR,
    CURVE_ORDER,
    bytes_to_scalar,
    decode_point,
    encode_point,
    generate_private_scalar,
    hash_to_scalar,
    point_add,
    scalar_mult_base,
    scalar_to_bytes,
    shared_secret_hash,
)
from stealth_pay.domain.addressing import address_of, compare_addresses
from stealth_pay.domain.keypairs import KeyPair, generate_key_pair, parse_meta_address
from stealth_pay.errors import CryptoError, InvalidKeyError, ValidationError
from stealth_pay.logging_setup import get_logger, PerformanceLogger


logger = get_logger("stealth")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class GeneratedStealthAddress:
    """
    Output lato sender.

    Attributes:
        stealth_address: Indirizzo one-time EIP-55
        ephemeral_pub_key: E compressa (33 bytes), da annunciare
        view_tag: Primo byte di h
        ephemeral_private_key: e (non va mai pubblicato)
    """
    stealth_address: str
    ephemeral_pub_key: bytes
    view_tag: int
    ephemeral_private_key: bytes

    def __str__(self) -> str:
        return f"GeneratedStealthAddress({self.stealth_address}, view_tag={self.view_tag})"


@dataclass(frozen=True)
class StealthMatch:
    """
    Announcement riconosciuto dal recipient.

    `hashed_secret` è h'; combinato con spending_priv dà la chiave di claim.
    """
    stealth_address: str
    ephemeral_pub_key: bytes
    view_tag: int
    hashed_secret: bytes
    announcement: Optional[object] = None


# ============================================================================
# SHARED DERIVATION
# ============================================================================

def _stealth_point(spend_point, hashed_secret: bytes):
    """spend_pub + (h mod n)*G"""
    tweak = hash_to_scalar(hashed_secret)
    if tweak == 0:
        raise CryptoError("Degenerate stealth tweak", code="ZERO_TWEAK")
    return point_add(spend_point, scalar_mult_base(tweak))


def derive_stealth_private_key(spending_priv: bytes, hashed_secret: bytes) -> bytes:
    """
    Chiave privata che controlla lo stealth address.

    Formula: (spending_priv + (h mod n)) mod n

    Raises:
        CryptoError: Risultato zero (probabilità trascurabile)
    """
    key = (bytes_to_scalar(spending_priv) + hash_to_scalar(hashed_secret)) % CURVE_ORDER
    if key == 0:
        raise CryptoError("Derived stealth private key is zero", code="ZERO_KEY")
    return scalar_to_bytes(key)


# ============================================================================
# SENDER SIDE
# ============================================================================

class StealthAddressGenerator:
    """
    Genera stealth address per un meta-address del recipient.

    Examples:
        >>> keys = generate_key_pair()
        >>> generated = StealthAddressGenerator().generate(keys.meta_address)
        >>> generated.stealth_address.startswith("0x")
        True
    """

    def generate(
        self,
        meta_address: Union[bytes, str],
        ephemeral_private_key: Optional[bytes] = None,
    ) -> GeneratedStealthAddress:
        """
        Args:
            meta_address: 66 bytes (o hex / URI st:eth:)
            ephemeral_private_key: Scalare effimero fisso (solo test vector)

        Raises:
            ValidationError: Meta-address malformato o punto intermedio degenere
        """
        spend_pub, view_pub = parse_meta_address(meta_address)

        if ephemeral_private_key is None:
            ephemeral = generate_private_scalar()
        else:
            try:
                ephemeral = bytes_to_scalar(ephemeral_private_key)
            except InvalidKeyError as e:
                raise ValidationError(f"Invalid ephemeral key: {e.message}")

        try:
            view_point = decode_point(view_pub)
            spend_point = decode_point(spend_pub)

            ephemeral_pub = encode_point(GENERATOR * ephemeral)
            hashed_secret = shared_secret_hash(ephemeral, view_point)
            stealth_point = _stealth_point(spend_point, hashed_secret)
        except CryptoError as e:
            raise ValidationError(
                f"Stealth derivation failed: {e.message}",
                code="STEALTH_DERIVATION_FAILED"
            )

        generated = GeneratedStealthAddress(
            stealth_address=address_of(stealth_point),
            ephemeral_pub_key=ephemeral_pub,
            view_tag=hashed_secret[0],
            ephemeral_private_key=scalar_to_bytes(ephemeral),
        )

        logger.debug(
            "Stealth address generated",
            extra_data={
                "stealth_address": generated.stealth_address[:10] + "...",
                "view_tag": generated.view_tag,
            }
        )
        return generated


# ============================================================================
# RECIPIENT SIDE
# ============================================================================

class StealthScanner:
    """
    Scansiona announcement con la viewing key.

    Un ephemeral key malformato produce None (log debug) invece di
    interrompere la scansione dell'intero feed.
    """

    def try_match(
        self,
        announcement,
        viewing_priv: bytes,
        spend_pub: bytes,
    ) -> Optional[StealthMatch]:
        """
        Verifica se un announcement appartiene al recipient.

        Args:
            announcement: Oggetto con stealth_address, ephemeral_pub_key, view_tag
            viewing_priv: Viewing private key (32 bytes)
            spend_pub: Spending public key (33 bytes)

        Returns:
            StealthMatch se l'indirizzo ricalcolato coincide, altrimenti None
        """
        try:
            ephemeral_point = decode_point(announcement.ephemeral_pub_key)
            hashed_secret = shared_secret_hash(bytes_to_scalar(viewing_priv), ephemeral_point)
        except CryptoError as e:
            logger.debug(
                "Skipping announcement with malformed ephemeral key",
                extra_data={"reason": e.code}
            )
            return None

        if hashed_secret[0] != announcement.view_tag:
            return None

        try:
            candidate = address_of(_stealth_point(decode_point(spend_pub), hashed_secret))
        except CryptoError:
            return None

        if not compare_addresses(candidate, announcement.stealth_address):
            return None

        return StealthMatch(
            stealth_address=candidate,
            ephemeral_pub_key=bytes(announcement.ephemeral_pub_key),
            view_tag=announcement.view_tag,
            hashed_secret=hashed_secret,
            announcement=announcement,
        )

    def scan(
        self,
        announcements: Iterable,
        viewing_priv: bytes,
        spend_pub: bytes,
    ) -> List[StealthMatch]:
        """Scansiona un feed e ritorna tutti i match, in ordine"""
        matches = []
        scanned = 0

        with PerformanceLogger(logger, "stealth_scan", threshold_ms=1000):
            for announcement in announcements:
                scanned += 1
                match = self.try_match(announcement, viewing_priv, spend_pub)
                if match is not None:
                    matches.append(match)

        logger.info(
            "Scan completed",
            extra_data={"scanned": scanned, "matches": len(matches)}
        )
        return matches


# ============================================================================
# WALLET
# ============================================================================

class StealthWallet:
    """
    Wallet stealth: KeyPair + scanning + claiming.

    Examples:
        >>> wallet = StealthWallet()
        >>> generated = StealthAddressGenerator().generate(wallet.meta_address)
        >>> wallet.check(announcement_for(generated)) is not None
        True
    """

    def __init__(self, keys: Optional[KeyPair] = None):
        if keys is None:
            keys = generate_key_pair()

        self.keys = keys
        self.scanner = StealthScanner()

        logger.info(
            "Stealth wallet loaded",
            extra_data={
                "spend_pub": keys.spending_pub.hex()[:16],
                "view_pub": keys.viewing_pub.hex()[:16],
            }
        )

    @property
    def meta_address(self) -> bytes:
        return self.keys.meta_address

    def check(self, announcement) -> Optional[StealthMatch]:
        return self.scanner.try_match(announcement, self.keys.viewing_priv, self.keys.spending_pub)

    def scan(self, announcements: Iterable) -> List[StealthMatch]:
        return self.scanner.scan(announcements, self.keys.viewing_priv, self.keys.spending_pub)

    def claim_key(self, match: StealthMatch) -> bytes:
        """
        Chiave privata dello stealth address di un match.

        Raises:
            CryptoError: La chiave derivata non controlla lo stealth address
        """
        private_key = derive_stealth_private_key(self.keys.spending_priv, match.hashed_secret)

        derived_address = address_of(scalar_mult_base(bytes_to_scalar(private_key)))
        if not compare_addresses(derived_address, match.stealth_address):
            raise CryptoError(
                "Derived key does not control the stealth address",
                code="CLAIM_KEY_MISMATCH",
                details={"stealth_address": match.stealth_address}
            )
        return private_key


__all__ = [
    "GeneratedStealthAddress",
    "StealthMatch",
    "StealthAddressGenerator",
    "StealthScanner",
    "StealthWallet",
    "derive_stealth_private_key",
]
