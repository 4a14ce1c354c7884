"""
StealthPay - Command Line Interface
=====================================
CLI per chiavi stealth, stealth address, scanning e header x402.

Security Level: MEDIUM
Last Updated: 2026-10-19
Version: 1.0.0

Commands:
- keys: Generazione e lettura keystore stealth
- address: Stealth address lato sender / check lato recipient
- scan: Scansione di un feed announcement (JSON)
- header: Encode/decode header X-PAYMENT
- config: Configurazione corrente
- api: Facilitator REST API
"""

import json
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from stealth_pay.config import StealthPaySettings, get_settings
from stealth_pay.constants import format_amount, token_to_base_units
from stealth_pay.domain.authorization import TokenDomain, sign_transfer_authorization
from stealth_pay.domain.keypairs import generate_key_pair
from stealth_pay.errors import StealthPayException
from stealth_pay.logging_setup import setup_logging
from stealth_pay.protocol.x402 import PaymentHeader, decode_payment_header
from stealth_pay.services.announcer import Announcement
from stealth_pay.wallet.keystore import StealthKeystore
from stealth_pay.wallet.stealth_address import StealthAddressGenerator, StealthWallet


# ============================================================================
# CLI APP
# ============================================================================

app = typer.Typer(
    name="stealthpay",
    help="StealthPay - x402 stealth payments CLI",
    add_completion=False
)

console = Console()


# ============================================================================
# GLOBAL STATE
# ============================================================================

class CLIState:
    """Global CLI state"""
    config: Optional[StealthPaySettings] = None


state = CLIState()


def _config() -> StealthPaySettings:
    return state.config or get_settings()


def _fail(message: str) -> None:
    console.print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(1)


def _load_wallet(keystore: Path, password: str) -> StealthWallet:
    keys = StealthKeystore(keystore.parent).load(keystore, password)
    return StealthWallet(keys)


def _load_announcements(path: Path) -> List[Announcement]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("announcements", [])
    return [Announcement.from_dict(item) for item in data]


# ============================================================================
# KEYS COMMANDS
# ============================================================================

keys_app = typer.Typer(help="Stealth key management commands")
app.add_typer(keys_app, name="keys")


@keys_app.command("generate")
def keys_generate(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Keystore file (default: keystore dir from config)"
    ),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        help="Password for encryption",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True
    )
):
    """Generate spending/viewing keys and save an encrypted keystore"""
    try:
        keys = generate_key_pair()
        store = StealthKeystore(_config().keystore_dir)
        path = store.save(keys, password, path=output)

        console.print(Panel.fit(
            f"[green]Stealth keys generated[/green]\n\n"
            f"Meta-address: [cyan]{keys.meta_address_uri}[/cyan]\n"
            f"Keystore: [cyan]{path}[/cyan]\n\n"
            f"[yellow]Publish the meta-address. Keep the keystore and password safe.[/yellow]",
            title="StealthPay Keys",
            border_style="green"
        ))

    except StealthPayException as e:
        _fail(f"Error generating keys: {e.message}")


@keys_app.command("show")
def keys_show(
    keystore: Path = typer.Argument(..., help="Keystore file"),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        prompt=True,
        hide_input=True
    )
):
    """Decrypt a keystore and show the public keys"""
    try:
        keys = StealthKeystore(keystore.parent).load(keystore, password)
    except StealthPayException as e:
        _fail(f"Cannot open keystore: {e.message}")

    table = Table(title="Stealth Keys", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Meta-address", keys.meta_address_uri)
    table.add_row("Spending public key", "0x" + keys.spending_pub.hex())
    table.add_row("Viewing public key", "0x" + keys.viewing_pub.hex())

    console.print(table)


# ============================================================================
# ADDRESS COMMANDS
# ============================================================================

address_app = typer.Typer(help="Stealth address commands")
app.add_typer(address_app, name="address")


@address_app.command("generate")
def address_generate(
    meta: str = typer.Option(..., "--meta", "-m", help="Recipient meta-address (0x... or st:eth:0x...)"),
    as_json: bool = typer.Option(False, "--json", help="JSON output")
):
    """Derive a one-time stealth address for a meta-address"""
    try:
        generated = StealthAddressGenerator().generate(meta)
    except StealthPayException as e:
        _fail(f"Invalid meta-address: {e.message}")

    result = {
        "stealth_address": generated.stealth_address,
        "ephemeral_pub_key": "0x" + generated.ephemeral_pub_key.hex(),
        "view_tag": generated.view_tag,
    }

    if as_json:
        typer.echo(json.dumps(result))
        return

    table = Table(title="Stealth Address", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for key, value in result.items():
        table.add_row(key, str(value))
    console.print(table)


@address_app.command("check")
def address_check(
    keystore: Path = typer.Option(..., "--keystore", "-k", help="Recipient keystore"),
    stealth_address: str = typer.Option(..., "--stealth", "-s"),
    ephemeral_pub_key: str = typer.Option(..., "--ephemeral", "-e"),
    view_tag: int = typer.Option(..., "--view-tag", "-t"),
    reveal_key: bool = typer.Option(False, "--reveal-key", help="Print the claiming private key"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True)
):
    """Check whether an announcement belongs to the keystore owner"""
    try:
        wallet = _load_wallet(keystore, password)
        announcement = Announcement.from_dict({
            "stealth_address": stealth_address,
            "ephemeral_pub_key": ephemeral_pub_key,
            "view_tag": view_tag,
        })
    except (StealthPayException, ValueError) as e:
        _fail(f"Error: {e}")

    match = wallet.check(announcement)
    if match is None:
        console.print("[yellow]Not a match[/yellow]")
        raise typer.Exit(2)

    console.print(f"[green]Match:[/green] {match.stealth_address}")
    if reveal_key:
        console.print(f"Claim key: 0x{wallet.claim_key(match).hex()}")


# ============================================================================
# SCAN COMMAND
# ============================================================================

@app.command("scan")
def scan(
    announcements_file: Path = typer.Argument(..., help="Announcements JSON (list or /announcements page)"),
    keystore: Path = typer.Option(..., "--keystore", "-k"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True)
):
    """Scan an announcement feed with the viewing key"""
    try:
        wallet = _load_wallet(keystore, password)
        announcements = _load_announcements(announcements_file)
    except (StealthPayException, OSError, ValueError, KeyError) as e:
        _fail(f"Error: {e}")

    matches = wallet.scan(announcements)

    table = Table(title=f"Matches ({len(matches)}/{len(announcements)})")
    table.add_column("Index", style="cyan")
    table.add_column("Stealth Address", style="green")
    table.add_column("View Tag")

    for match in matches:
        table.add_row(str(match.announcement.index), match.stealth_address, str(match.view_tag))

    console.print(table)


# ============================================================================
# HEADER COMMANDS
# ============================================================================

header_app = typer.Typer(help="x402 payment header commands")
app.add_typer(header_app, name="header")


@header_app.command("encode")
def header_encode(
    private_key: str = typer.Option(..., "--private-key", prompt=True, hide_input=True),
    meta: str = typer.Option(..., "--meta", "-m", help="Recipient meta-address"),
    amount: float = typer.Option(..., "--amount", "-a", help="Amount in tokens"),
    valid_seconds: int = typer.Option(3600, "--valid-seconds", help="Authorization lifetime")
):
    """Sign an authorization for a fresh stealth address and print the X-PAYMENT header"""
    config = _config()
    try:
        generated = StealthAddressGenerator().generate(meta)
        authorization = sign_transfer_authorization(
            private_key,
            TokenDomain.from_settings(config),
            to=config.settlement_address,
            value=token_to_base_units(amount),
            valid_before=int(time.time()) + valid_seconds,
        )
    except StealthPayException as e:
        _fail(f"Error: {e.message}")

    typer.echo(PaymentHeader.from_payment(authorization, generated).encode())


@header_app.command("decode")
def header_decode(value: str = typer.Argument(..., help="Base64 X-PAYMENT header")):
    """Decode and validate an X-PAYMENT header"""
    try:
        header = decode_payment_header(value)
    except StealthPayException as e:
        _fail(f"Invalid header: {e.message}")

    data = header.to_json_dict()
    typer.echo(json.dumps(data, indent=2))
    console.print(f"[dim]Amount: {format_amount(header.amount)}[/dim]", highlight=False)


# ============================================================================
# CONFIG COMMANDS
# ============================================================================

config_app = typer.Typer(help="Configuration commands")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show():
    """Show effective configuration"""
    table = Table(title="StealthPay Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in _config().to_dict().items():
        table.add_row(key, str(value))

    console.print(table)


# ============================================================================
# API COMMANDS
# ============================================================================

api_app = typer.Typer(help="Facilitator API commands")
app.add_typer(api_app, name="api")


@api_app.command("serve")
def api_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (default from config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default from config)")
):
    """Start the facilitator REST API"""
    import uvicorn

    from stealth_pay.api.rest_api import create_app, initialize_api
    from stealth_pay.logging_setup import AuditLogger
    from stealth_pay.services.meta_registry import StealthMetaRegistry
    from stealth_pay.services.settlement import build_settlement
    from stealth_pay.storage.db import SettlementDatabase

    config = _config()
    config.ensure_directories()
    setup_logging(
        log_level=config.log_level,
        log_to_file=config.log_to_file,
        log_dir=config.log_dir,
        log_format=config.log_format,
        log_rotation_mb=config.log_rotation_mb,
        log_retention_days=config.log_retention_days,
    )

    database = SettlementDatabase.from_settings(config)
    audit = AuditLogger(config.log_dir if config.log_to_file else None)
    settlement = build_settlement(config, database=database, audit=audit)
    registry = StealthMetaRegistry(config.settlement_address, chain_id=config.chain_id)

    application = initialize_api(settlement, config, registry)
    if config.api_enable_cors:
        application = create_app(config.api_cors_origins)

    console.print(Panel.fit(
        f"Settlement: [cyan]{settlement.address}[/cyan]\n"
        f"Chain: [cyan]{config.chain_name} ({config.chain_id})[/cyan]\n"
        f"Fee: [cyan]{settlement.fee_bps} bps[/cyan]",
        title="StealthPay Facilitator",
        border_style="green"
    ))

    uvicorn.run(application, host=host or config.api_host, port=port or config.api_port)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

@app.callback()
def main(
    dev: bool = typer.Option(
        False,
        "--dev",
        help="Use the development configuration preset"
    ),
    prod: bool = typer.Option(
        False,
        "--prod",
        help="Use the production configuration preset"
    )
):
    """
    StealthPay - x402 stealth payments CLI

    Gestisci chiavi stealth, genera stealth address e scansiona announcement.
    """
    if dev and prod:
        console.print("[red]--dev and --prod are mutually exclusive[/red]")
        raise typer.Exit(1)
    if dev:
        from stealth_pay.config import get_development_config
        state.config = get_development_config()
    elif prod:
        from stealth_pay.config import get_production_config
        state.config = get_production_config()


if __name__ == "__main__":
    app()


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "app",
]
