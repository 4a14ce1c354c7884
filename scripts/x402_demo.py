#!/usr/bin/env python3
"""
StealthPay - x402 Stealth Payment Demo
========================================
Flusso completo in-process: il recipient pubblica un meta-address,
il payer firma un'autorizzazione EIP-3009 verso uno stealth address
fresco, il facilitator fa settle, il recipient scansiona e reclama.

Usage:
    python scripts/x402_demo.py
"""

import sys
import time
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from eth_account import Account
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stealth_pay.config import override_settings
from stealth_pay.constants import format_amount, token_to_base_units
from stealth_pay.domain.authorization import TokenDomain, sign_transfer_authorization
from stealth_pay.domain.keypairs import generate_key_pair
from stealth_pay.ledger.token_ledger import TokenLedger
from stealth_pay.protocol.x402 import PaymentHeader, decode_payment_header
from stealth_pay.services.settlement import build_settlement
from stealth_pay.wallet.stealth_address import StealthAddressGenerator, StealthWallet

console = Console()


def main():
    """Run x402 stealth payment demo"""

    console.print(Panel.fit(
        "[cyan]StealthPay - x402 Stealth Payment Demo[/cyan]\n\n"
        "Pagamento privato verso uno stealth address one-time",
        border_style="cyan"
    ))

    config = override_settings(dev_mode=True)
    domain = TokenDomain.from_settings(config)
    ledger = TokenLedger(domain)
    settlement = build_settlement(config, ledger=ledger)

    payer = Account.create()
    ledger.mint(payer.address, token_to_base_units(10))

    # ========================================================================
    # STEP 1: Recipient publishes meta-address
    # ========================================================================

    console.print("\n[yellow]Step 1: Recipient genera le chiavi stealth[/yellow]")

    recipient = StealthWallet(generate_key_pair())
    console.print(f"[cyan]Meta-address: {recipient.meta_address[:48].hex()}...[/cyan]")

    # ========================================================================
    # STEP 2: Payer signs authorization for a fresh stealth address
    # ========================================================================

    console.print("\n[yellow]Step 2: Payer firma il TransferWithAuthorization[/yellow]")

    generated = StealthAddressGenerator().generate(recipient.meta_address)
    authorization = sign_transfer_authorization(
        payer.key,
        domain,
        to=settlement.address,
        value=token_to_base_units(1),
        now=int(time.time()),
    )
    header = PaymentHeader.from_payment(authorization, generated).encode()

    console.print(f"[cyan]Stealth address: {generated.stealth_address}[/cyan]")
    console.print(f"[dim]X-PAYMENT: {header[:60]}...[/dim]")

    # ========================================================================
    # STEP 3: Facilitator settles
    # ========================================================================

    console.print("\n[yellow]Step 3: Il facilitator fa settle dell'header[/yellow]")

    decoded = decode_payment_header(header)
    receipt = settlement.process_payment(
        decoded.to_authorization(settlement.address),
        decoded.stealth_address,
        decoded.ephemeral_pub_key_bytes,
        decoded.view_tag,
    )

    table = Table(title="Settlement Receipt")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Amount", format_amount(receipt.amount))
    table.add_row("Fee", format_amount(receipt.fee))
    table.add_row("Net to stealth", format_amount(receipt.net_amount))
    table.add_row("Announcement", str(receipt.announcement_index))
    console.print(table)

    # ========================================================================
    # STEP 4: Recipient scans and claims
    # ========================================================================

    console.print("\n[yellow]Step 4: Recipient scansiona il feed[/yellow]")

    matches = recipient.scan(settlement.announcer.page())
    if not matches:
        console.print("[red]Nessun pagamento trovato[/red]")
        sys.exit(1)

    claim_key = recipient.claim_key(matches[0])
    claimed = Account.from_key(claim_key).address

    console.print(f"[green]Pagamento trovato: {matches[0].stealth_address}[/green]")
    console.print(f"[green]Claim key controlla {claimed}[/green]")
    console.print(f"[green]Saldo: {format_amount(ledger.balance_of(claimed))}[/green]")


if __name__ == "__main__":
    main()
