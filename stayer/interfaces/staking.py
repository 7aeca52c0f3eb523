"""Staking protocols: cross-component reads and the keeper's chain backend."""
from typing import Protocol

from ..models import ValidatorData, ValidatorInfo


class ExchangeRateSource(Protocol):
    """Derivative-to-base exchange rate (``PRECISION`` = 1:1)."""

    def get_exchange_rate(self) -> int: ...


class ValidatorView(Protocol):
    """Read side of the validator registry as seen by the staking pool."""

    def get_validator(self, pubkey: str) -> ValidatorData | None: ...

    def get_network_p_avg(self) -> int: ...

    def is_valid(self, pubkey: str, current_era: int) -> bool: ...


class ValidatorSource(Protocol):
    """Where the keeper reads validator fees and activity from."""

    async def fetch_validators(self) -> list[ValidatorInfo]: ...


class StakingBackend(Protocol):
    """Real staking system the keeper delegates to and reports from."""

    async def get_current_era(self) -> int: ...

    async def delegate(self, validator: str, amount: int) -> str: ...

    async def undelegate(self, validator: str, amount: int) -> str: ...

    async def get_total_delegation(self) -> int: ...
