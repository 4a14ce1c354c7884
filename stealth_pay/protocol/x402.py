"""
StealthPay - x402 Envelope
============================
Oggetto PaymentRequirement (risposta 402) e codec dell'header X-PAYMENT.

Header X-PAYMENT = base64(JSON):
{
    "from": "0x...",
    "amount": "1000000",
    "nonce": "0x<32 bytes>",
    "validAfter": 0,
    "validBefore": 1700003600,
    "stealthAddress": "0x...",
    "ephemeralPubKey": "0x02...",
    "viewTag": 42,
    "signature": "0x<65 bytes>"
}
"""

import base64
import binascii
import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from stealth_pay.constants import X402_VERSION, token_to_base_units
from stealth_pay.domain.addressing import is_valid_address
from stealth_pay.domain.authorization import PaymentAuthorization
from stealth_pay.errors import ValidationError
from stealth_pay.wallet.stealth_address import GeneratedStealthAddress


def _require_hex(value: str, field_name: str) -> str:
    text = value[2:] if value[:2].lower() == "0x" else value
    try:
        bytes.fromhex(text)
    except ValueError:
        raise ValueError(f"{field_name} is not valid hex")
    return "0x" + text.lower()


# ============================================================================
# PAYMENT REQUIREMENT
# ============================================================================

class PaymentRequirement(BaseModel):
    """Istruzioni di pagamento restituite con HTTP 402"""
    model_config = ConfigDict(populate_by_name=True)

    amount: str
    token: str
    chain: int
    receiver: str
    receiver_meta_address: Optional[str] = Field(default=None, alias="receiverMetaAddress")
    facilitator: str
    description: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings,
        amount: str,
        receiver_meta_address: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "PaymentRequirement":
        return cls(
            amount=amount,
            token=settings.token_symbol,
            chain=settings.chain_id,
            receiver=settings.settlement_address,
            receiver_meta_address=receiver_meta_address,
            facilitator=settings.facilitator_url,
            description=description or f"Pay {amount} {settings.token_symbol} to access this endpoint",
        )

    @property
    def amount_base_units(self) -> int:
        return token_to_base_units(float(self.amount))

    def to_402_body(self) -> Dict[str, Any]:
        return {
            "status": 402,
            "message": "Payment Required",
            "payment": self.model_dump(by_alias=True, exclude_none=True),
            "x402Version": X402_VERSION,
        }


# ============================================================================
# PAYMENT HEADER
# ============================================================================

class PaymentHeader(BaseModel):
    """Contenuto decodificato dell'header X-PAYMENT"""
    model_config = ConfigDict(populate_by_name=True)

    from_address: str = Field(alias="from")
    amount: int = Field(ge=0)
    nonce: str
    valid_after: int = Field(default=0, alias="validAfter", ge=0)
    valid_before: int = Field(alias="validBefore", ge=0)
    stealth_address: str = Field(alias="stealthAddress")
    ephemeral_pub_key: str = Field(alias="ephemeralPubKey")
    view_tag: int = Field(alias="viewTag", ge=0, le=255)
    signature: str

    @field_validator("from_address", "stealth_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not is_valid_address(v):
            raise ValueError(f"Invalid address: {v}")
        return v

    @field_validator("nonce", "ephemeral_pub_key", "signature")
    @classmethod
    def validate_hex(cls, v: str, info) -> str:
        return _require_hex(v, info.field_name)

    @classmethod
    def from_payment(
        cls,
        authorization: PaymentAuthorization,
        stealth: GeneratedStealthAddress,
    ) -> "PaymentHeader":
        """Header lato payer da autorizzazione firmata e stealth address generato"""
        return cls(
            from_address=authorization.from_address,
            amount=authorization.value,
            nonce=authorization.nonce_hex,
            valid_after=authorization.valid_after,
            valid_before=authorization.valid_before,
            stealth_address=stealth.stealth_address,
            ephemeral_pub_key="0x" + stealth.ephemeral_pub_key.hex(),
            view_tag=stealth.view_tag,
            signature="0x" + authorization.signature.hex(),
        )

    @property
    def ephemeral_pub_key_bytes(self) -> bytes:
        return bytes.fromhex(self.ephemeral_pub_key[2:])

    def to_authorization(self, custody_address: str) -> PaymentAuthorization:
        """TransferWithAuthorization verso la custody del settlement"""
        return PaymentAuthorization(
            from_address=self.from_address,
            to=custody_address,
            value=self.amount,
            valid_after=self.valid_after,
            valid_before=self.valid_before,
            nonce=self.nonce,
            signature=self.signature,
        )

    def to_json_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["amount"] = str(self.amount)
        return data

    def encode(self) -> str:
        return encode_payment_header(self)


def encode_payment_header(header: PaymentHeader) -> str:
    raw = json.dumps(header.to_json_dict(), separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payment_header(value: str) -> PaymentHeader:
    """
    Decodifica un header X-PAYMENT.

    Raises:
        ValidationError: base64, JSON o campi non validi
    """
    try:
        raw = base64.b64decode(value.strip(), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Malformed payment header: {e}", code="INVALID_PAYMENT_HEADER")

    if not isinstance(data, dict):
        raise ValidationError("Payment header must be a JSON object", code="INVALID_PAYMENT_HEADER")

    try:
        return PaymentHeader.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid payment header fields",
            code="INVALID_PAYMENT_HEADER",
            details={"errors": [err["msg"] for err in e.errors()]}
        )


__all__ = [
    "PaymentRequirement",
    "PaymentHeader",
    "encode_payment_header",
    "decode_payment_header",
]
