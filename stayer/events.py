"""Domain events emitted by the core components, for off-engine indexers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, TypeVar

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceUpdated:
    price: int
    round_id: int
    timestamp: int


@dataclass(frozen=True)
class OracleConfigUpdated:
    config_name: str
    new_value: str


@dataclass(frozen=True)
class ValidatorsUpdated:
    era: int
    count: int
    p_avg: int


@dataclass(frozen=True)
class Staked:
    user: str
    validator: str
    cspr_amount: int
    yscspr_minted: int
    multiplier: int
    era: int


@dataclass(frozen=True)
class UnstakeRequested:
    user: str
    request_id: int
    yscspr_burned: int
    cspr_amount: int
    unlock_era: int


@dataclass(frozen=True)
class Claimed:
    user: str
    amount: int
    request_ids: tuple[int, ...]


@dataclass(frozen=True)
class RewardsHarvested:
    era: int
    rewards: int
    protocol_fee: int
    new_exchange_rate: int


@dataclass(frozen=True)
class DelegationProcessed:
    validator: str
    amount: int
    total_delegated: int


@dataclass(frozen=True)
class UndelegationProcessed:
    validator: str
    amount: int
    total_delegated: int


@dataclass(frozen=True)
class Deposit:
    user: str
    collateral: int
    debt_minted: int
    price: int


@dataclass(frozen=True)
class Withdraw:
    user: str
    collateral_returned: int
    debt_burned: int


@dataclass(frozen=True)
class Borrow:
    user: str
    amount: int


@dataclass(frozen=True)
class Repay:
    user: str
    amount: int


@dataclass(frozen=True)
class Liquidate:
    user: str
    liquidator: str
    debt_covered: int
    collateral_seized: int
    price: int


E = TypeVar("E")


class EventLog:
    """In-memory event sink; keeps every event in emission order."""

    def __init__(self) -> None:
        self._events: list[object] = []

    def emit(self, event: object) -> None:
        logger.debug("event %s", event)
        self._events.append(event)

    def __iter__(self) -> Iterator[object]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self._events if isinstance(e, event_type)]

    def last(self) -> object | None:
        return self._events[-1] if self._events else None
