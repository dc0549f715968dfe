"""NeonCoin wallet — balance plus an append-only transaction ledger."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

log = logging.getLogger(__name__)

CURRENCY = "NC"


@dataclass(frozen=True, slots=True)
class Transaction:
    amount: int       # positive = credit, negative = debit
    reason: str
    balance: int      # balance after this transaction
    timestamp: float


class Wallet:
    def __init__(self, balance: int = 0, clock: Callable[[], float] = time.time) -> None:
        self.balance = balance
        self.transactions: list[Transaction] = []
        self._clock = clock

    def credit(self, amount: int, reason: str) -> Transaction:
        if amount < 0:
            raise ValueError("credit amount must be non-negative")
        self.balance += amount
        tx = Transaction(amount, reason, self.balance, self._clock())
        self.transactions.append(tx)
        log.debug("Credit %d %s (%s) → %d", amount, CURRENCY, reason, self.balance)
        return tx

    def can_afford(self, amount: int) -> bool:
        return self.balance >= amount

    def debit(self, amount: int, reason: str) -> Transaction | None:
        """Take amount from the wallet; None when funds are insufficient."""
        if amount < 0:
            raise ValueError("debit amount must be non-negative")
        if not self.can_afford(amount):
            return None
        self.balance -= amount
        tx = Transaction(-amount, reason, self.balance, self._clock())
        self.transactions.append(tx)
        log.debug("Debit %d %s (%s) → %d", amount, CURRENCY, reason, self.balance)
        return tx

    def recent(self, n: int = 5) -> list[Transaction]:
        return self.transactions[-n:]

    def export_state(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "transactions": [
                {"amount": t.amount, "reason": t.reason, "balance": t.balance,
                 "timestamp": t.timestamp}
                for t in self.transactions
            ],
        }

    def import_state(self, data: dict[str, Any]) -> None:
        self.balance = int(data.get("balance", 0))
        self.transactions = [
            Transaction(int(t["amount"]), t.get("reason", ""), int(t.get("balance", 0)),
                        float(t.get("timestamp", 0.0)))
            for t in data.get("transactions", [])
        ]
