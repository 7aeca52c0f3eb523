"""Liquid staking pool: CSPR in, yield-bearing ySCSPR out.

Stakes are recorded per ``(user, validator)`` and queued as pending
delegations for the keeper to place on-chain. Unstaking burns the derivative
at the current exchange rate and opens a withdrawal request that matures
``unbonding_delay`` eras later. Harvested rewards raise ``total_staked``
without minting, which is what lifts the exchange rate.
"""
from __future__ import annotations

import dataclasses
import logging

from ..config import StakingConfig
from ..errors import StakingError, StakingErrorKind
from ..events import (
    Claimed,
    DelegationProcessed,
    RewardsHarvested,
    Staked,
    UndelegationProcessed,
    UnstakeRequested,
)
from ..fixed_point import (
    BPS,
    PRECISION,
    U64_MAX,
    U512_MAX,
    bps_of,
    checked_add,
    checked_sub,
    clamp,
    mul_div,
    require_unsigned,
    saturating_mul,
)
from ..interfaces import EventSink, TokenLedger, ValidatorView
from ..models import (
    LiquidStakingStats,
    PendingDelegation,
    PendingUndelegation,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .atomic import atomic

logger = logging.getLogger(__name__)


class LiquidStakingPool:
    # Withdrawal requests are append-only and written after the last fallible
    # step of a call, so they stay out of the rollback snapshot.
    _STATE_FIELDS = (
        "_keeper",
        "_user_stakes",
        "_validator_stakes",
        "_total_staked",
        "_total_pending_withdrawal",
        "_user_pending",
        "_next_request_id",
        "_last_harvest_era",
        "_pending_delegations",
        "_pending_undelegations",
        "_total_delegated",
        "_cumulative_rewards",
        "_protocol_fees",
    )

    def __init__(
        self,
        address: str,
        owner: str,
        keeper: str,
        registry: ValidatorView,
        derivative: TokenLedger,
        base_asset: TokenLedger,
        events: EventSink,
        config: StakingConfig | None = None,
    ) -> None:
        self.address = address
        self._owner = owner
        self._keeper = keeper
        self._registry = registry
        self._derivative = derivative
        self._base = base_asset
        self._events = events
        self._config = config or StakingConfig()

        self._user_stakes: dict[tuple[str, str], int] = {}
        self._validator_stakes: dict[str, int] = {}
        self._total_staked = 0
        self._total_pending_withdrawal = 0
        self._requests: dict[int, WithdrawalRequest] = {}
        self._user_pending: dict[str, tuple[int, ...]] = {}
        self._next_request_id = 1
        self._last_harvest_era = 0
        self._pending_delegations: dict[str, PendingDelegation] = {}
        self._pending_undelegations: dict[str, PendingUndelegation] = {}
        self._total_delegated = 0
        self._cumulative_rewards = 0
        self._protocol_fees = 0

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    def _require_keeper(self, caller: str) -> None:
        if caller not in (self._keeper, self._owner):
            raise StakingError(StakingErrorKind.UNAUTHORIZED, caller)

    @atomic
    def set_keeper(self, caller: str, new_keeper: str) -> None:
        if caller != self._owner:
            raise StakingError(StakingErrorKind.UNAUTHORIZED, caller)
        self._keeper = new_keeper
        logger.info("Pool keeper set to %s", new_keeper)

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    def calculate_multiplier(self, p_score: int, p_avg: int) -> int:
        """Mint multiplier in bps, relative to the network average score."""
        if p_avg == 0:
            return BPS
        raw = saturating_mul(p_score, BPS, U64_MAX) // p_avg
        return clamp(raw, self._config.min_multiplier, self._config.max_multiplier)

    @atomic
    def stake(self, caller: str, validator: str, era: int, amount: int) -> int:
        """Stake *amount* motes with *validator*; returns the ySCSPR minted."""
        cfg = self._config
        require_unsigned(amount, U512_MAX)
        if amount < cfg.min_stake:
            raise StakingError(StakingErrorKind.STAKE_TOO_LOW, f"{amount} < {cfg.min_stake}")
        if amount > cfg.max_single_stake:
            raise StakingError(
                StakingErrorKind.STAKE_TOO_HIGH, f"{amount} > {cfg.max_single_stake}"
            )
        if not self._registry.is_valid(validator, era):
            raise StakingError(StakingErrorKind.INVALID_VALIDATOR, validator)
        data = self._registry.get_validator(validator)
        if data is None:
            raise StakingError(StakingErrorKind.VALIDATOR_NOT_FOUND, validator)
        if data.p_score == 0:
            raise StakingError(StakingErrorKind.VALIDATOR_INACTIVE, validator)

        multiplier = self.calculate_multiplier(data.p_score, self._registry.get_network_p_avg())
        mint_amount = bps_of(amount, multiplier)

        key = (caller, validator)
        user_stake = checked_add(self._user_stakes.get(key, 0), amount, U512_MAX)
        validator_stake = checked_add(self._validator_stakes.get(validator, 0), amount, U512_MAX)
        total_staked = checked_add(self._total_staked, amount, U512_MAX)
        pending = self._pending_delegations.get(validator)
        if pending is None:
            pending = PendingDelegation(validator=validator, amount=amount, era=era)
        else:
            pending = dataclasses.replace(
                pending, amount=checked_add(pending.amount, amount, U512_MAX)
            )

        self._base.transfer_from(self.address, caller, self.address, amount)
        self._derivative.mint(caller, mint_amount)

        self._user_stakes = {**self._user_stakes, key: user_stake}
        self._validator_stakes = {**self._validator_stakes, validator: validator_stake}
        self._total_staked = total_staked
        self._pending_delegations = {**self._pending_delegations, validator: pending}

        logger.info(
            "%s staked %d with %s (multiplier %d, minted %d)",
            caller, amount, validator, multiplier, mint_amount,
        )
        self._events.emit(
            Staked(
                user=caller,
                validator=validator,
                cspr_amount=amount,
                yscspr_minted=mint_amount,
                multiplier=multiplier,
                era=era,
            )
        )
        return mint_amount

    @atomic
    def unstake(self, caller: str, validator: str, derivative_amount: int, era: int) -> int:
        """Burn ySCSPR and open a withdrawal request; returns its id."""
        require_unsigned(derivative_amount)
        if derivative_amount == 0:
            raise StakingError(StakingErrorKind.INVALID_AMOUNT, "zero amount")

        cspr_amount = mul_div(derivative_amount, self.get_exchange_rate(), PRECISION)
        key = (caller, validator)
        user_stake = self._user_stakes.get(key, 0)
        if cspr_amount > user_stake:
            raise StakingError(
                StakingErrorKind.INSUFFICIENT_STAKE, f"{cspr_amount} > staked {user_stake}"
            )
        max_withdrawal = bps_of(self._total_staked, self._config.max_unstake_share_bps, U512_MAX)
        if cspr_amount > max_withdrawal:
            raise StakingError(
                StakingErrorKind.EXCEEDS_MAX_WITHDRAWAL, f"{cspr_amount} > {max_withdrawal}"
            )

        request_id = self._next_request_id
        unlock_era = checked_add(era, self._config.unbonding_delay, U64_MAX)
        request = WithdrawalRequest(
            request_id=request_id, user=caller, amount=cspr_amount, unlock_era=unlock_era
        )
        next_request_id = checked_add(request_id, 1, U64_MAX)
        validator_stake = checked_sub(self._validator_stakes.get(validator, 0), cspr_amount)
        total_staked = checked_sub(self._total_staked, cspr_amount)
        total_pending = checked_add(self._total_pending_withdrawal, cspr_amount, U512_MAX)
        pending = self._pending_undelegations.get(validator)
        if pending is None:
            pending = PendingUndelegation(validator=validator, amount=cspr_amount, era=era)
        else:
            pending = dataclasses.replace(
                pending, amount=checked_add(pending.amount, cspr_amount, U512_MAX)
            )

        self._derivative.burn(caller, derivative_amount)

        self._user_stakes = {**self._user_stakes, key: user_stake - cspr_amount}
        self._validator_stakes = {**self._validator_stakes, validator: validator_stake}
        self._total_staked = total_staked
        self._total_pending_withdrawal = total_pending
        self._requests[request_id] = request
        self._user_pending = {
            **self._user_pending,
            caller: self._user_pending.get(caller, ()) + (request_id,),
        }
        self._next_request_id = next_request_id
        self._pending_undelegations = {**self._pending_undelegations, validator: pending}

        logger.info(
            "%s unstaked %d ySCSPR for %d motes (request %d, unlocks era %d)",
            caller, derivative_amount, cspr_amount, request_id, unlock_era,
        )
        self._events.emit(
            UnstakeRequested(
                user=caller,
                request_id=request_id,
                yscspr_burned=derivative_amount,
                cspr_amount=cspr_amount,
                unlock_era=unlock_era,
            )
        )
        return request_id

    @atomic
    def claim(self, caller: str, era: int) -> int:
        """Pay out every matured request of *caller*; returns the amount paid."""
        request_ids = self._user_pending.get(caller)
        if not request_ids:
            raise StakingError(StakingErrorKind.NO_PENDING_WITHDRAWALS, caller)

        updates: dict[int, WithdrawalRequest] = {}
        total = 0
        claimed: list[int] = []
        remaining: list[int] = []
        for request_id in request_ids:
            request = self._requests.get(request_id)
            if request is None:
                raise StakingError(StakingErrorKind.REQUEST_NOT_FOUND, str(request_id))
            if request.status is WithdrawalStatus.PENDING and request.unlock_era <= era:
                total = checked_add(total, request.amount, U512_MAX)
                updates[request_id] = dataclasses.replace(
                    request, status=WithdrawalStatus.CLAIMED
                )
                claimed.append(request_id)
            else:
                remaining.append(request_id)

        if total == 0:
            raise StakingError(StakingErrorKind.NO_MATURED_WITHDRAWALS, f"era {era}")

        total_pending = checked_sub(self._total_pending_withdrawal, total)
        self._base.transfer(self.address, caller, total)

        self._requests.update(updates)
        user_pending = dict(self._user_pending)
        if remaining:
            user_pending[caller] = tuple(remaining)
        else:
            del user_pending[caller]
        self._user_pending = user_pending
        self._total_pending_withdrawal = total_pending

        logger.info("%s claimed %d motes from requests %s", caller, total, claimed)
        self._events.emit(Claimed(user=caller, amount=total, request_ids=tuple(claimed)))
        return total

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    @atomic
    def harvest_rewards(self, caller: str, new_total_delegation: int, era: int) -> int:
        """Fold delegation growth into ``total_staked``; returns gross rewards."""
        self._require_keeper(caller)
        require_unsigned(new_total_delegation, U512_MAX)
        if era <= self._last_harvest_era:
            raise StakingError(
                StakingErrorKind.INVALID_ERA, f"era {era} <= last harvest {self._last_harvest_era}"
            )

        expected = checked_add(self._total_staked, self._total_pending_withdrawal, U512_MAX)
        if new_total_delegation <= expected:
            self._last_harvest_era = era
            logger.info("No rewards to harvest in era %d", era)
            return 0

        rewards = new_total_delegation - expected
        protocol_fee = bps_of(rewards, self._config.protocol_fee_bps, U512_MAX)
        self._total_staked = checked_add(self._total_staked, rewards - protocol_fee, U512_MAX)
        self._cumulative_rewards = checked_add(self._cumulative_rewards, rewards, U512_MAX)
        self._protocol_fees = checked_add(self._protocol_fees, protocol_fee, U512_MAX)
        self._last_harvest_era = era

        rate = self.get_exchange_rate()
        logger.info(
            "Harvested %d motes in era %d (fee %d), exchange rate now %d",
            rewards, era, protocol_fee, rate,
        )
        self._events.emit(
            RewardsHarvested(
                era=era, rewards=rewards, protocol_fee=protocol_fee, new_exchange_rate=rate
            )
        )
        return rewards

    def get_exchange_rate(self) -> int:
        supply = self._derivative.total_supply()
        if supply == 0:
            return PRECISION
        return mul_div(self._total_staked, PRECISION, supply)

    # ------------------------------------------------------------------
    # Keeper relay
    # ------------------------------------------------------------------

    def get_pending_delegations(self) -> list[PendingDelegation]:
        return list(self._pending_delegations.values())

    def get_pending_undelegations(self) -> list[PendingUndelegation]:
        return list(self._pending_undelegations.values())

    @atomic
    def withdraw_for_delegation(self, caller: str, validator: str, amount: int) -> int:
        """Hand *amount* of a pending delegation to the keeper for placement."""
        self._require_keeper(caller)
        pending = self._pending_delegations.get(validator)
        if pending is None or amount == 0 or amount > pending.amount:
            raise StakingError(StakingErrorKind.INVALID_AMOUNT, f"{amount} for {validator}")
        self._base.transfer(self.address, caller, amount)
        logger.info("Released %d motes to %s for delegation to %s", amount, caller, validator)
        return amount

    @atomic
    def confirm_delegation(self, caller: str, validator: str, amount: int) -> None:
        self._require_keeper(caller)
        self._pending_delegations = self._consume(self._pending_delegations, validator, amount)
        self._total_delegated = checked_add(self._total_delegated, amount, U512_MAX)
        logger.info("Delegation of %d to %s confirmed", amount, validator)
        self._events.emit(
            DelegationProcessed(
                validator=validator, amount=amount, total_delegated=self._total_delegated
            )
        )

    @atomic
    def confirm_undelegation(self, caller: str, validator: str, amount: int) -> None:
        self._require_keeper(caller)
        self._pending_undelegations = self._consume(
            self._pending_undelegations, validator, amount
        )
        self._total_delegated = checked_sub(self._total_delegated, amount)
        logger.info("Undelegation of %d from %s confirmed", amount, validator)
        self._events.emit(
            UndelegationProcessed(
                validator=validator, amount=amount, total_delegated=self._total_delegated
            )
        )

    @staticmethod
    def _consume(pending: dict, validator: str, amount: int) -> dict:
        intent = pending.get(validator)
        if intent is None:
            raise StakingError(StakingErrorKind.INVALID_VALIDATOR, validator)
        updated = dict(pending)
        if amount >= intent.amount:
            del updated[validator]
        else:
            updated[validator] = dataclasses.replace(intent, amount=intent.amount - amount)
        return updated

    @atomic
    def deposit_from_undelegation(self, caller: str, amount: int) -> None:
        """Return unbonded funds from the keeper to the pool."""
        self._require_keeper(caller)
        require_unsigned(amount, U512_MAX)
        if amount == 0:
            raise StakingError(StakingErrorKind.INVALID_AMOUNT, "zero amount")
        self._base.transfer_from(self.address, caller, self.address, amount)
        logger.info("Received %d unbonded motes from %s", amount, caller)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_stats(self) -> LiquidStakingStats:
        return LiquidStakingStats(
            total_staked=self._total_staked,
            total_pending_withdrawal=self._total_pending_withdrawal,
            cumulative_rewards=self._cumulative_rewards,
            exchange_rate=self.get_exchange_rate(),
            total_delegated=self._total_delegated,
            protocol_fees=self._protocol_fees,
        )

    def get_user_stake(self, user: str, validator: str) -> int:
        return self._user_stakes.get((user, validator), 0)

    def get_validator_stake(self, validator: str) -> int:
        return self._validator_stakes.get(validator, 0)

    def get_withdrawal_request(self, request_id: int) -> WithdrawalRequest | None:
        return self._requests.get(request_id)

    def get_user_pending_requests(self, user: str) -> list[WithdrawalRequest]:
        return [self._requests[rid] for rid in self._user_pending.get(user, ())]

    def get_total_staked(self) -> int:
        return self._total_staked

    def get_last_harvest_era(self) -> int:
        return self._last_harvest_era

    def check_invariants(self) -> list[str]:
        """Return a description of every broken accounting invariant."""
        violations: list[str] = []
        net_rewards = self._cumulative_rewards - self._protocol_fees
        stake_sum = sum(self._user_stakes.values())
        if self._total_staked != stake_sum + net_rewards:
            violations.append(
                f"total_staked {self._total_staked} != user stakes {stake_sum} "
                f"+ net rewards {net_rewards}"
            )

        per_validator: dict[str, int] = {}
        for (_, validator), amount in self._user_stakes.items():
            per_validator[validator] = per_validator.get(validator, 0) + amount
        for validator in set(per_validator) | set(self._validator_stakes):
            recorded = self._validator_stakes.get(validator, 0)
            if recorded != per_validator.get(validator, 0):
                violations.append(
                    f"validator {validator} total {recorded} != user stakes "
                    f"{per_validator.get(validator, 0)}"
                )

        pending_sum = sum(
            r.amount for r in self._requests.values() if r.status is WithdrawalStatus.PENDING
        )
        if self._total_pending_withdrawal != pending_sum:
            violations.append(
                f"total_pending_withdrawal {self._total_pending_withdrawal} "
                f"!= pending requests {pending_sum}"
            )
        return violations
