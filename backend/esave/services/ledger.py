from __future__ import annotations
from typing import Protocol
import structlog
from esave.models.ledger import LedgerEntry

log = structlog.get_logger()


class TokenLedger(Protocol):
    """External token service. Settles synchronously and reports success."""

    def transfer(self, amount: int, sender: str, recipient: str) -> bool: ...


class InsufficientFunds(Exception):
    pass


class InMemoryLedger:
    """
    Balance-checked token ledger for local hosting and tests.
    Sign convention on entries:
      - MINT     => +amount to recipient (sender is None)
      - TRANSFER => amount moved sender -> recipient
    Principals listed in ``issuers`` mint on demand instead of being balance checked.
    """

    def __init__(self, issuers: set[str] | None = None):
        self.issuers: set[str] = set(issuers or ())
        self.balances: dict[str, int] = {}
        self.entries: list[LedgerEntry] = []

    def balance(self, principal: str) -> int:
        return int(self.balances.get(principal, 0))

    def mint(self, principal: str, amount: int) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("amount must be > 0")
        self.balances[principal] = self.balance(principal) + int(amount)
        e = LedgerEntry(type="MINT", sender=None, recipient=principal, amount=int(amount))
        self.entries.append(e)
        return e

    def debit(self, principal: str, amount: int) -> None:
        """Raises InsufficientFunds if balance is too low."""
        if principal in self.issuers:
            return
        bal = self.balance(principal)
        if bal < amount:
            raise InsufficientFunds(f"need {amount}, have {bal}")
        self.balances[principal] = bal - amount

    def transfer(self, amount: int, sender: str, recipient: str) -> bool:
        if amount <= 0:
            return False
        try:
            self.debit(sender, int(amount))
        except InsufficientFunds as exc:
            log.info("transfer_refused", sender=sender, recipient=recipient, amount=amount, reason=str(exc))
            return False
        self.balances[recipient] = self.balance(recipient) + int(amount)
        self.entries.append(LedgerEntry(type="TRANSFER", sender=sender, recipient=recipient, amount=int(amount)))
        return True

    def transfers_to(self, recipient: str) -> list[LedgerEntry]:
        return [e for e in self.entries if e.type == "TRANSFER" and e.recipient == recipient]
