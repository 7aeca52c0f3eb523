"""Token ledger protocol: fungible token operations owned outside the core."""
from typing import Protocol


class TokenLedger(Protocol):
    """Mint/burn/transfer capability of the debt, derivative or base token."""

    def mint(self, to: str, amount: int) -> None: ...

    def burn(self, owner: str, amount: int) -> None: ...

    def transfer(self, sender: str, recipient: str, amount: int) -> None: ...

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None: ...

    def approve(self, owner: str, spender: str, amount: int) -> None: ...

    def total_supply(self) -> int: ...

    def balance_of(self, owner: str) -> int: ...

    def allowance(self, owner: str, spender: str) -> int: ...
