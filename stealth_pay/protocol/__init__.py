"""
StealthPay - Protocol Package
===============================
Envelope x402 (PaymentRequirement, header X-PAYMENT).
"""

from stealth_pay.protocol.x402 import (
    PaymentRequirement,
    PaymentHeader,
    encode_payment_header,
    decode_payment_header,
)

__all__ = [
    "PaymentRequirement",
    "PaymentHeader",
    "encode_payment_header",
    "decode_payment_header",
]
