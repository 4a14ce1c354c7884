"""
StealthPay - Fee Vault
========================
FeePool del protocollo: riceve le fee del settlement e le rilascia
solo verso la treasury.
"""

from typing import Optional

from stealth_pay.domain.addressing import normalize_address, require_nonzero_address
from stealth_pay.errors import InsufficientFunds, ValidationError, require_role
from stealth_pay.logging_setup import get_logger, AuditLogger


logger = get_logger("fee_vault")


class FeeVault:
    """
    Account FeePool sul ledger.

    Il saldo del vault è il saldo ledger di `address`; l'unico debito
    possibile è withdraw_to_treasury (owner).

    Attributes:
        address: Account ledger del pool
        owner: Amministratore
        treasury: Destinatario dei prelievi
        total_collected: Fee accreditate dal settlement
        total_withdrawn: Fee prelevate verso treasury
    """

    def __init__(
        self,
        ledger,
        address: str,
        owner: str,
        treasury: str,
        audit: Optional[AuditLogger] = None,
    ):
        self.ledger = ledger
        self.address = require_nonzero_address(address, "fee vault")
        self.owner = normalize_address(owner, "owner")
        self.treasury = require_nonzero_address(treasury, "treasury")
        self.audit = audit

        self.total_collected = 0
        self.total_withdrawn = 0

    @property
    def balance(self) -> int:
        return self.ledger.balance_of(self.address)

    def record_collected(self, amount: int) -> None:
        """Contabilizza una fee già accreditata sul ledger"""
        self.total_collected += amount

    def withdraw_to_treasury(self, caller: str, amount: int) -> None:
        """
        Raises:
            UnauthorizedCaller: Caller non owner
            ValidationError: Importo zero
            InsufficientFunds: Importo oltre il saldo del pool
        """
        require_role(caller, self.owner, "owner")

        if amount <= 0:
            raise ValidationError("Zero amount", code="ZERO_AMOUNT")

        balance = self.balance
        if amount > balance:
            raise InsufficientFunds(
                "Insufficient assets",
                details={"balance": balance, "amount": amount}
            )

        self.ledger.transfer(self.address, self.treasury, amount)
        self.total_withdrawn += amount

        logger.info(
            "Fees withdrawn to treasury",
            extra_data={"treasury": self.treasury, "amount": amount}
        )
        if self.audit is not None:
            self.audit.log_fee_withdrawal(self.treasury, amount)

    def set_treasury(self, caller: str, treasury: str) -> None:
        require_role(caller, self.owner, "owner")
        self.treasury = require_nonzero_address(treasury, "treasury")
        logger.info("Treasury updated", extra_data={"treasury": self.treasury})

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "treasury": self.treasury,
            "balance": self.balance,
            "total_collected": self.total_collected,
            "total_withdrawn": self.total_withdrawn,
        }


__all__ = ["FeeVault"]
