"""In-process fungible token ledger.

Stands in for the cUSD, ySCSPR and CSPR ledgers when the components are wired
locally (tests, the CLI keeper). Amounts are plain ints in the token's
smallest unit.
"""
from __future__ import annotations

import logging

from .errors import ArithmeticFault, TokenError, TokenErrorKind
from .fixed_point import U512_MAX, checked_add, require_unsigned

logger = logging.getLogger(__name__)


class InMemoryToken:
    def __init__(self, symbol: str, bound: int = U512_MAX) -> None:
        self.symbol = symbol
        self._bound = bound
        self._balances: dict[str, int] = {}
        self._allowances: dict[tuple[str, str], int] = {}
        self._supply = 0

    def _amount(self, amount: int) -> int:
        try:
            return require_unsigned(amount, self._bound)
        except (TypeError, ArithmeticFault) as e:
            raise TokenError(TokenErrorKind.INVALID_AMOUNT, str(e)) from e

    def _debit(self, owner: str, amount: int) -> None:
        balance = self._balances.get(owner, 0)
        if amount > balance:
            raise TokenError(
                TokenErrorKind.INSUFFICIENT_BALANCE,
                f"{self.symbol} {owner}: {balance} < {amount}",
            )
        self._balances[owner] = balance - amount

    def _credit(self, owner: str, amount: int) -> None:
        self._balances[owner] = checked_add(self._balances.get(owner, 0), amount, self._bound)

    def mint(self, to: str, amount: int) -> None:
        amount = self._amount(amount)
        self._supply = checked_add(self._supply, amount, self._bound)
        self._credit(to, amount)
        logger.debug("%s mint %d to %s", self.symbol, amount, to)

    def burn(self, owner: str, amount: int) -> None:
        amount = self._amount(amount)
        self._debit(owner, amount)
        self._supply -= amount
        logger.debug("%s burn %d from %s", self.symbol, amount, owner)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        amount = self._amount(amount)
        self._debit(sender, amount)
        self._credit(recipient, amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self._allowances[(owner, spender)] = self._amount(amount)

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        amount = self._amount(amount)
        allowed = self._allowances.get((owner, spender), 0)
        if amount > allowed:
            raise TokenError(
                TokenErrorKind.INSUFFICIENT_ALLOWANCE,
                f"{self.symbol} {spender} may spend {allowed} of {owner}, not {amount}",
            )
        self._debit(owner, amount)
        self._allowances[(owner, spender)] = allowed - amount
        self._credit(recipient, amount)

    def total_supply(self) -> int:
        return self._supply

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)
