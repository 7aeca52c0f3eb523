"""In-process staking backend used when the keeper runs against a local deployment.

Delegated funds move from the keeper to the backend's auction account and
back on undelegation. Undelegated funds are paid out immediately; the keeper
holds them until its unbonding record matures. Rewards are credited with
``accrue_rewards``.
"""
from __future__ import annotations

import itertools
import logging
from typing import Protocol

from ..interfaces import TokenLedger

logger = logging.getLogger(__name__)


class EraSource(Protocol):
    async def get_current_era(self) -> int: ...


class LocalStakingBackend:
    def __init__(
        self,
        base_asset: TokenLedger,
        keeper: str,
        address: str = "auction",
        era: int = 0,
        era_source: EraSource | None = None,
    ) -> None:
        self._base = base_asset
        self._keeper = keeper
        self.address = address
        self.era = era
        self._era_source = era_source
        self._delegations: dict[str, int] = {}
        self._tx_ids = itertools.count(1)

    def _tx(self, action: str) -> str:
        return f"local-{action}-{next(self._tx_ids)}"

    async def get_current_era(self) -> int:
        if self._era_source is not None:
            self.era = await self._era_source.get_current_era()
        return self.era

    def advance_era(self, eras: int = 1) -> int:
        self.era += eras
        return self.era

    async def delegate(self, validator: str, amount: int) -> str:
        if amount <= 0:
            raise ValueError(f"invalid delegation amount {amount}")
        self._base.transfer(self._keeper, self.address, amount)
        self._delegations[validator] = self._delegations.get(validator, 0) + amount
        logger.info("Delegated %d motes to %s", amount, validator)
        return self._tx("delegate")

    async def undelegate(self, validator: str, amount: int) -> str:
        delegated = self._delegations.get(validator, 0)
        if amount <= 0 or amount > delegated:
            raise ValueError(f"cannot undelegate {amount} from {validator} (delegated {delegated})")
        self._delegations[validator] = delegated - amount
        self._base.transfer(self.address, self._keeper, amount)
        logger.info("Undelegated %d motes from %s", amount, validator)
        return self._tx("undelegate")

    async def get_total_delegation(self) -> int:
        return sum(self._delegations.values())

    def get_delegation(self, validator: str) -> int:
        return self._delegations.get(validator, 0)

    def accrue_rewards(self, validator: str, amount: int) -> None:
        """Credit staking rewards to an existing delegation."""
        if validator not in self._delegations:
            raise KeyError(f"no delegation to {validator}")
        self._base.mint(self.address, amount)
        self._delegations[validator] += amount
        logger.info("Accrued %d motes of rewards on %s", amount, validator)
