"""
StealthPay - CLI Tests
========================
Test comandi typer con CliRunner.
"""

import json

import pytest
from typer.testing import CliRunner

from stealth_pay.cli.main import app
from stealth_pay.wallet.keystore import StealthKeystore
from tests.conftest import PAYER_KEY


PASSWORD = "correct horse battery"

runner = CliRunner()


@pytest.fixture
def keystore_path(temp_data_dir, recipient_keys):
    return StealthKeystore(temp_data_dir).save(recipient_keys, PASSWORD)


class TestKeysCommands:

    def test_generate_and_show(self, temp_data_dir):
        target = temp_data_dir / "alice.json"

        result = runner.invoke(app, ["keys", "generate", "-o", str(target), "-p", PASSWORD])
        assert result.exit_code == 0
        assert target.exists()

        meta = StealthKeystore.read_meta_address(target)
        assert len(bytes.fromhex(meta[2:])) == 66

        result = runner.invoke(app, ["keys", "show", str(target), "-p", PASSWORD])
        assert result.exit_code == 0

    def test_show_wrong_password(self, keystore_path):
        result = runner.invoke(app, ["keys", "show", str(keystore_path), "-p", "wrong password"])
        assert result.exit_code == 1


class TestAddressCommands:
    """Test derivazione e check da CLI"""

    def test_generate_json_then_check(self, recipient_keys, keystore_path):
        result = runner.invoke(app, ["address", "generate", "-m", recipient_keys.meta_address_uri, "--json"])
        assert result.exit_code == 0
        generated = json.loads(result.output)

        result = runner.invoke(app, [
            "address", "check",
            "-k", str(keystore_path),
            "-s", generated["stealth_address"],
            "-e", generated["ephemeral_pub_key"],
            "-t", str(generated["view_tag"]),
            "-p", PASSWORD,
        ])
        assert result.exit_code == 0
        assert "Match" in result.output

    def test_check_not_a_match(self, stealth_generator, keystore_path):
        from stealth_pay.domain.keypairs import generate_key_pair

        generated = stealth_generator.generate(generate_key_pair().meta_address)
        result = runner.invoke(app, [
            "address", "check",
            "-k", str(keystore_path),
            "-s", generated.stealth_address,
            "-e", "0x" + generated.ephemeral_pub_key.hex(),
            "-t", str(generated.view_tag),
            "-p", PASSWORD,
        ])
        assert result.exit_code == 2

    def test_invalid_meta_address(self):
        result = runner.invoke(app, ["address", "generate", "-m", "0x1234"])
        assert result.exit_code == 1


class TestScanCommand:

    def test_scan_feed_file(self, temp_data_dir, keystore_path, recipient_keys, stealth_generator):
        from stealth_pay.domain.keypairs import generate_key_pair

        feed = []
        for index, meta in enumerate([recipient_keys.meta_address, generate_key_pair().meta_address]):
            generated = stealth_generator.generate(meta)
            feed.append({
                "index": index,
                "stealth_address": generated.stealth_address,
                "ephemeral_pub_key": "0x" + generated.ephemeral_pub_key.hex(),
                "view_tag": generated.view_tag,
            })
        feed_file = temp_data_dir / "feed.json"
        feed_file.write_text(json.dumps({"announcements": feed}), encoding="utf-8")

        result = runner.invoke(app, ["scan", str(feed_file), "-k", str(keystore_path), "-p", PASSWORD])

        assert result.exit_code == 0
        assert "Matches (1/2)" in result.output


class TestHeaderCommands:

    def test_encode_decode(self, recipient_keys):
        result = runner.invoke(app, [
            "header", "encode",
            "--private-key", PAYER_KEY,
            "-m", recipient_keys.meta_address_hex,
            "-a", "0.25",
        ])
        assert result.exit_code == 0
        encoded = result.output.strip()

        result = runner.invoke(app, ["header", "decode", encoded])
        assert result.exit_code == 0
        assert '"amount": "250000"' in result.output

    def test_decode_invalid(self):
        result = runner.invoke(app, ["header", "decode", "%%%"])
        assert result.exit_code == 1


class TestConfigCommand:

    def test_config_show(self):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
