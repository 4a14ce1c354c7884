"""
StealthPay - x402 Envelope Tests
==================================
Test PaymentRequirement e codec dell'header X-PAYMENT.
"""

import base64
import json

import pytest

from stealth_pay.errors import ValidationError
from stealth_pay.protocol.x402 import (
    PaymentHeader,
    PaymentRequirement,
    decode_payment_header,
)


def _b64(data) -> str:
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


class TestPaymentRequirement:
    """Test risposta 402"""

    def test_from_settings(self, test_config, recipient_keys):
        requirement = PaymentRequirement.from_settings(
            test_config, "0.01", receiver_meta_address=recipient_keys.meta_address_uri
        )
        body = requirement.to_402_body()

        assert requirement.amount_base_units == 10_000
        assert body["status"] == 402
        assert body["x402Version"] == "1.0"
        assert body["payment"]["receiver"] == test_config.settlement_address
        assert body["payment"]["token"] == "USDC"
        assert body["payment"]["chain"] == 137
        assert body["payment"]["receiverMetaAddress"] == recipient_keys.meta_address_uri

    def test_meta_address_omitted_when_absent(self, test_config):
        body = PaymentRequirement.from_settings(test_config, "1").to_402_body()
        assert "receiverMetaAddress" not in body["payment"]


class TestPaymentHeader:
    """Test header X-PAYMENT"""

    def test_header_to_settlement(self, settlement, ledger, funded_payer, make_payment, test_config):
        """Header encode -> decode -> process_payment"""
        authorization, generated = make_payment(250_000)
        encoded = PaymentHeader.from_payment(authorization, generated).encode()

        header = decode_payment_header(encoded)

        assert header.to_authorization(test_config.settlement_address) == authorization
        assert header.ephemeral_pub_key_bytes == generated.ephemeral_pub_key

        receipt = settlement.process_payment(
            header.to_authorization(settlement.address),
            header.stealth_address,
            header.ephemeral_pub_key_bytes,
            header.view_tag,
        )
        assert ledger.balance_of(generated.stealth_address) == receipt.net_amount

    def test_amount_serialized_as_string(self, make_payment):
        authorization, generated = make_payment(7)
        data = PaymentHeader.from_payment(authorization, generated).to_json_dict()

        assert data["amount"] == "7"
        assert data["from"] == authorization.from_address
        assert "viewTag" in data

    @pytest.mark.parametrize("value", [
        "not base64!!",
        base64.b64encode(b"\xff\xfe").decode("ascii"),
        _b64([1, 2, 3]),
    ])
    def test_malformed_header(self, value):
        with pytest.raises(ValidationError) as exc_info:
            decode_payment_header(value)
        assert exc_info.value.code == "INVALID_PAYMENT_HEADER"

    def test_invalid_fields_reported(self, make_payment):
        authorization, generated = make_payment(1)
        data = PaymentHeader.from_payment(authorization, generated).to_json_dict()
        data["viewTag"] = 256
        data["stealthAddress"] = "0x1234"

        with pytest.raises(ValidationError) as exc_info:
            decode_payment_header(_b64(data))
        assert len(exc_info.value.details["errors"]) == 2
