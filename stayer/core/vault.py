"""CDP vault: ySCSPR collateral in, cUSD debt out.

Collateral is valued in two steps, derivative to base through the pool's
exchange rate and base to USD through the oracle price::

    collateral_usd = collateral * rate // PRECISION * price // PRICE_PRECISION

A position may borrow up to ``ltv`` of that value and becomes liquidatable
once its health factor drops below 10000 (100%).
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator

from ..errors import VaultError, VaultErrorKind
from ..events import Borrow, Deposit, Liquidate, Repay, Withdraw
from ..fixed_point import (
    BPS,
    PRECISION,
    PRICE_PRECISION,
    U64_MAX,
    checked_add,
    checked_mul,
    checked_sub,
    mul_div,
    require_unsigned,
    saturating_sub,
)
from ..interfaces import Clock, EventSink, ExchangeRateSource, PriceSource, TokenLedger
from ..models import Position, VaultParams, VaultStats
from .atomic import atomic

logger = logging.getLogger(__name__)

HEALTH_FACTOR_MAX = U64_MAX
HEALTHY = BPS


def collateral_to_usd(collateral: int, exchange_rate: int, price: int) -> int:
    base = mul_div(collateral, exchange_rate, PRECISION)
    return mul_div(base, price, PRICE_PRECISION)


def health_factor(position: Position, exchange_rate: int, price: int, liq_threshold: int) -> int:
    """Health in bps; ``HEALTH_FACTOR_MAX`` for a debt-free position."""
    if position.debt == 0:
        return HEALTH_FACTOR_MAX
    collateral_usd = collateral_to_usd(position.collateral, exchange_rate, price)
    numerator = checked_mul(checked_mul(collateral_usd, liq_threshold), BPS)
    return min(numerator // checked_mul(position.debt, BPS), HEALTH_FACTOR_MAX)


def weighted_entry_price(old_price: int, old_amount: int, new_price: int, new_amount: int) -> int:
    total = checked_add(old_amount, new_amount)
    if total == 0:
        return new_price
    return checked_add(checked_mul(old_price, old_amount), checked_mul(new_price, new_amount)) // total


class VaultEngine:
    """Collateralized debt positions against the staking derivative."""

    _STATE_FIELDS = (
        "_positions",
        "_total_collateral",
        "_total_debt",
        "_params",
        "_paused",
    )

    def __init__(
        self,
        address: str,
        owner: str,
        oracle: PriceSource,
        exchange_rate_source: ExchangeRateSource,
        collateral_token: TokenLedger,
        debt_token: TokenLedger,
        clock: Clock,
        events: EventSink,
        params: VaultParams | None = None,
    ) -> None:
        params = params or VaultParams()
        params.validate()
        self.address = address
        self._owner = owner
        self._collateral = collateral_token
        self._debt = debt_token
        self._clock = clock
        self._events = events

        self._positions: dict[str, Position] = {}
        self._total_collateral = 0
        self._total_debt = 0
        self._params = params
        self._oracle = oracle
        self._rate_source = exchange_rate_source
        self._paused = False

    # ------------------------------------------------------------------
    # Guards and valuation
    # ------------------------------------------------------------------

    def _require_owner(self, caller: str) -> None:
        if caller != self._owner:
            raise VaultError(VaultErrorKind.UNAUTHORIZED, caller)

    def _require_not_paused(self) -> None:
        if self._paused:
            raise VaultError(VaultErrorKind.PAUSED)

    def _require_position(self, user: str) -> Position:
        position = self._positions.get(user)
        if position is None:
            raise VaultError(VaultErrorKind.POSITION_NOT_FOUND, user)
        return position

    def _health(self, position: Position, price: int) -> int:
        return health_factor(
            position, self._rate_source.get_exchange_rate(), price, self._params.liq_threshold
        )

    def _max_debt(self, collateral: int, price: int) -> int:
        usd = collateral_to_usd(collateral, self._rate_source.get_exchange_rate(), price)
        return mul_div(usd, self._params.ltv, BPS)

    def _store(self, position: Position) -> None:
        self._positions = {**self._positions, position.owner: position}

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    @atomic
    def deposit(self, caller: str, amount: int) -> None:
        self._require_not_paused()
        require_unsigned(amount)
        if amount == 0:
            raise VaultError(VaultErrorKind.INVALID_AMOUNT, "zero amount")

        price = self._oracle.get_price()
        position = self._positions.get(caller) or Position(
            owner=caller, collateral=0, debt=0, entry_price=price, opened_at=self._clock.now()
        )
        new_collateral = checked_add(position.collateral, amount)
        if new_collateral < self._params.min_collateral:
            raise VaultError(
                VaultErrorKind.COLLATERAL_TOO_LOW,
                f"{new_collateral} < {self._params.min_collateral}",
            )
        if position.collateral == 0:
            entry_price = price
        else:
            entry_price = weighted_entry_price(
                position.entry_price, position.collateral, price, amount
            )
        total_collateral = checked_add(self._total_collateral, amount)

        self._collateral.transfer_from(self.address, caller, self.address, amount)

        self._store(dataclasses.replace(position, collateral=new_collateral, entry_price=entry_price))
        self._total_collateral = total_collateral
        logger.info("%s deposited %d collateral at price %d", caller, amount, price)
        self._events.emit(Deposit(user=caller, collateral=amount, debt_minted=0, price=price))

    @atomic
    def borrow(self, caller: str, amount: int) -> None:
        self._require_not_paused()
        position = self._require_position(caller)
        if position.collateral == 0:
            raise VaultError(VaultErrorKind.INSUFFICIENT_COLLATERAL, caller)
        require_unsigned(amount)
        if amount == 0:
            raise VaultError(VaultErrorKind.INVALID_AMOUNT, "zero amount")

        max_debt = self._max_debt(position.collateral, self._oracle.get_price())
        new_debt = checked_add(position.debt, amount)
        if new_debt > max_debt:
            raise VaultError(VaultErrorKind.EXCEEDS_MAX_DEBT, f"{new_debt} > {max_debt}")
        total_debt = checked_add(self._total_debt, amount)

        self._debt.mint(caller, amount)

        self._store(dataclasses.replace(position, debt=new_debt))
        self._total_debt = total_debt
        logger.info("%s borrowed %d (debt now %d of max %d)", caller, amount, new_debt, max_debt)
        self._events.emit(Borrow(user=caller, amount=amount))

    @atomic
    def repay(self, caller: str, amount: int) -> None:
        self._require_not_paused()
        position = self._require_position(caller)
        require_unsigned(amount)
        if amount == 0:
            raise VaultError(VaultErrorKind.INVALID_AMOUNT, "zero amount")
        if amount > position.debt:
            raise VaultError(VaultErrorKind.EXCEEDS_DEBT, f"{amount} > {position.debt}")
        total_debt = checked_sub(self._total_debt, amount)

        self._debt.burn(caller, amount)

        self._store(dataclasses.replace(position, debt=position.debt - amount))
        self._total_debt = total_debt
        logger.info("%s repaid %d", caller, amount)
        self._events.emit(Repay(user=caller, amount=amount))

    @atomic
    def withdraw(self, caller: str, amount: int) -> None:
        self._require_not_paused()
        position = self._require_position(caller)
        require_unsigned(amount)
        if amount == 0:
            raise VaultError(VaultErrorKind.INVALID_AMOUNT, "zero amount")
        if amount > position.collateral:
            raise VaultError(
                VaultErrorKind.INSUFFICIENT_COLLATERAL, f"{amount} > {position.collateral}"
            )

        updated = dataclasses.replace(position, collateral=position.collateral - amount)
        if position.debt > 0:
            health = self._health(updated, self._oracle.get_price())
            if health < HEALTHY:
                raise VaultError(VaultErrorKind.UNHEALTHY_POSITION, f"health {health}")
        total_collateral = checked_sub(self._total_collateral, amount)

        self._collateral.transfer(self.address, caller, amount)

        self._store(updated)
        self._total_collateral = total_collateral
        logger.info("%s withdrew %d collateral", caller, amount)
        self._events.emit(Withdraw(user=caller, collateral_returned=amount, debt_burned=0))

    def collateral_for_debt(self, debt_to_cover: int, price: int) -> int:
        """Derivative units seized for *debt_to_cover* cUSD, penalty included."""
        seize_usd = mul_div(debt_to_cover, BPS + self._params.liq_penalty, BPS)
        base = mul_div(seize_usd, PRICE_PRECISION, price)
        return mul_div(base, PRECISION, self._rate_source.get_exchange_rate())

    @atomic
    def liquidate(self, caller: str, user: str, debt_to_cover: int) -> int:
        """Cover part of *user*'s debt and seize collateral; returns the amount seized."""
        self._require_not_paused()
        position = self._require_position(user)
        require_unsigned(debt_to_cover)
        price = self._oracle.get_price()

        health = self._health(position, price)
        if health >= HEALTHY:
            raise VaultError(VaultErrorKind.POSITION_HEALTHY, f"health {health}")
        if debt_to_cover > position.debt:
            raise VaultError(VaultErrorKind.EXCEEDS_DEBT, f"{debt_to_cover} > {position.debt}")
        if debt_to_cover == 0:
            raise VaultError(VaultErrorKind.INVALID_AMOUNT, "zero amount")

        seized = self.collateral_for_debt(debt_to_cover, price)
        if seized > position.collateral:
            raise VaultError(
                VaultErrorKind.INSUFFICIENT_COLLATERAL, f"seize {seized} > {position.collateral}"
            )
        total_collateral = checked_sub(self._total_collateral, seized)
        total_debt = checked_sub(self._total_debt, debt_to_cover)

        self._debt.burn(caller, debt_to_cover)
        self._collateral.transfer(self.address, caller, seized)

        self._store(
            dataclasses.replace(
                position,
                collateral=position.collateral - seized,
                debt=position.debt - debt_to_cover,
            )
        )
        self._total_collateral = total_collateral
        self._total_debt = total_debt
        logger.info(
            "%s liquidated %s: covered %d debt, seized %d collateral at price %d",
            caller, user, debt_to_cover, seized, price,
        )
        self._events.emit(
            Liquidate(
                user=user,
                liquidator=caller,
                debt_covered=debt_to_cover,
                collateral_seized=seized,
                price=price,
            )
        )
        return seized

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_position(self, user: str) -> Position | None:
        return self._positions.get(user)

    def positions(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    def get_health_factor(self, user: str) -> int:
        position = self._positions.get(user)
        if position is None:
            return 0
        return self._health(position, self._oracle.get_price())

    def is_liquidatable(self, user: str) -> bool:
        return self.get_health_factor(user) < HEALTHY

    def get_max_borrow(self, user: str) -> int:
        """Additional cUSD *user* could borrow right now."""
        position = self._positions.get(user)
        if position is None:
            return 0
        return saturating_sub(self._max_debt(position.collateral, self._oracle.get_price()), position.debt)

    def get_vault_stats(self) -> VaultStats:
        return VaultStats(
            total_collateral=self._total_collateral,
            total_debt=self._total_debt,
            price=self._oracle.get_price(),
        )

    def get_params(self) -> VaultParams:
        return self._params

    def get_total_debt(self) -> int:
        return self._total_debt

    @property
    def paused(self) -> bool:
        return self._paused

    def check_invariants(self) -> list[str]:
        violations: list[str] = []
        collateral_sum = sum(p.collateral for p in self._positions.values())
        debt_sum = sum(p.debt for p in self._positions.values())
        if self._total_collateral != collateral_sum:
            violations.append(
                f"total_collateral {self._total_collateral} != positions {collateral_sum}"
            )
        if self._total_debt != debt_sum:
            violations.append(f"total_debt {self._total_debt} != positions {debt_sum}")
        return violations

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    @atomic
    def set_params(self, caller: str, params: VaultParams) -> None:
        self._require_owner(caller)
        params.validate()
        self._params = params
        logger.info("Vault params updated: %s", params)

    @atomic
    def set_oracle(self, caller: str, oracle: PriceSource) -> None:
        self._require_owner(caller)
        self._oracle = oracle
        logger.info("Vault oracle replaced")

    @atomic
    def set_exchange_rate_source(self, caller: str, source: ExchangeRateSource) -> None:
        self._require_owner(caller)
        self._rate_source = source
        logger.info("Vault exchange rate source replaced")

    @atomic
    def pause(self, caller: str) -> None:
        self._require_owner(caller)
        self._paused = True
        logger.warning("Vault paused by %s", caller)

    @atomic
    def unpause(self, caller: str) -> None:
        self._require_owner(caller)
        self._paused = False
        logger.info("Vault unpaused by %s", caller)
