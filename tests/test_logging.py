"""
StealthPay - Logging Tests
============================
Test logger strutturato, formatter JSON e audit trail.
"""

import json
import logging

import pytest

from stealth_pay.logging_setup import (
    AuditLogger,
    JSONFormatter,
    PerformanceLogger,
    get_logger,
    short_hex,
)


@pytest.fixture
def audit_logger(temp_data_dir):
    audit = AuditLogger(temp_data_dir / "logs")
    yield audit
    for handler in list(audit.logger.handlers):
        handler.close()
        audit.logger.removeHandler(handler)


class TestStructuredLogger:

    def test_category_logger_name(self):
        assert get_logger("settlement").name == "stealthpay.settlement"

    def test_extra_data_and_context(self, caplog):
        logger = get_logger("tests")
        logger.set_context(chain_id=137)

        with caplog.at_level(logging.INFO, logger="stealthpay"):
            logger.info("Payment settled", extra_data={"fee": 10})

        record = caplog.records[-1]
        assert record.name == "stealthpay.tests"
        assert record.extra_data == {"chain_id": 137, "fee": 10}

    def test_json_formatter(self):
        record = logging.LogRecord(
            "stealthpay.settlement", logging.INFO, __file__, 1, "Payment settled", None, None
        )
        record.extra_data = {"fee": 1_000}

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["message"] == "Payment settled"
        assert data["extra_data"] == {"fee": 1_000}

    def test_short_hex(self):
        assert short_hex("0x1234567890abcdef1234") == "0x12345678..."
        assert short_hex(b"\xab" * 2) == "0xabab"

    def test_performance_logger(self):
        with PerformanceLogger(get_logger("tests"), "noop") as perf:
            pass
        assert perf.elapsed_ms >= 0


class TestAuditLogger:
    """Test audit trail su file"""

    def test_audit_entries(self, audit_logger, temp_data_dir):
        audit_logger.log_nonce_burned("0x" + "ab" * 20, "0x" + "01" * 32)
        audit_logger.log_abort("0x" + "ab" * 20, "0x" + "01" * 32, "INSUFFICIENT_FUNDS")

        lines = (temp_data_dir / "logs" / "audit.log").read_text(encoding="utf-8").splitlines()
        entries = [json.loads(line) for line in lines]

        assert [e["extra_data"]["action"] for e in entries] == ["nonce_burned", "aborted"]
        assert entries[1]["extra_data"]["reason"] == "INSUFFICIENT_FUNDS"

    def test_settlement_writes_audit(self, test_config, ledger, clock, audit_logger,
                                     funded_payer, make_payment, temp_data_dir):
        from stealth_pay.services.settlement import build_settlement

        settlement = build_settlement(test_config, ledger=ledger, clock=clock, audit=audit_logger)
        authorization, generated = make_payment(1_000_000)
        settlement.process_payment(
            authorization, generated.stealth_address, generated.ephemeral_pub_key, generated.view_tag
        )

        lines = (temp_data_dir / "logs" / "audit.log").read_text(encoding="utf-8").splitlines()
        actions = [json.loads(line)["extra_data"]["action"] for line in lines]
        assert actions == ["nonce_burned", "settled"]
