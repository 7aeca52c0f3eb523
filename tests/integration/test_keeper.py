"""Integration tests for the keeper relay against a local deployment."""
from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from helpers import (
    ALICE,
    BOB,
    CSPR,
    OWNER,
    VAL_A,
    VAL_B,
    VAL_INACTIVE,
    ManualClock,
    approve_vault,
    fund,
)
from stayer.config import AppConfig, KeeperConfig, RegistryConfig
from stayer.deployment import Deployment, deploy
from stayer.errors import StakingError, StakingErrorKind
from stayer.models import ValidatorInfo
from stayer.services import Keeper, LocalStakingBackend

VALIDATORS = [
    ValidatorInfo(pubkey=VAL_A, fee=5, is_active=True, total_stake=3_000),
    ValidatorInfo(pubkey=VAL_B, fee=5, is_active=True, total_stake=2_000),
    ValidatorInfo(pubkey=VAL_INACTIVE, fee=5, is_active=False, total_stake=9_000),
]


def _source(validators: list[ValidatorInfo] | None = None) -> AsyncMock:
    source = AsyncMock()
    source.fetch_validators = AsyncMock(
        return_value=list(VALIDATORS if validators is None else validators)
    )
    return source


@pytest.fixture()
def backend(system: Deployment) -> LocalStakingBackend:
    return LocalStakingBackend(system.cspr, system.keeper, era=1)


@pytest.fixture()
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def keeper(system: Deployment, backend: LocalStakingBackend, notifier: AsyncMock) -> Keeper:
    return Keeper(system, backend=backend, validator_source=_source(), notifiers=[notifier])


@pytest.fixture()
def staked(system: Deployment) -> Deployment:
    """Deployment with Alice and Bob funded and approved for the pool."""
    fund(system, ALICE, 10_000 * CSPR)
    fund(system, BOB, 10_000 * CSPR)
    return system


async def _register_and_stake(system: Deployment, keeper: Keeper) -> None:
    assert await keeper.update_validators() == 3
    system.pool.stake(ALICE, VAL_A, 1, 1_000 * CSPR)


class TestUpdateValidators:
    @pytest.mark.asyncio
    async def test_scores_and_submits_batch(self, system: Deployment, keeper: Keeper) -> None:
        assert await keeper.update_validators() == 3

        registry = system.registry
        a = registry.get_validator(VAL_A)
        b = registry.get_validator(VAL_B)
        inactive = registry.get_validator(VAL_INACTIVE)
        assert a is not None and a.p_score == 95
        assert b is not None and b.p_score == 95
        assert inactive is not None and inactive.p_score == 0
        assert registry.get_network_p_avg() == 95
        assert registry.get_last_update_era() == 1

    @pytest.mark.asyncio
    async def test_skips_when_era_already_recorded(self, keeper: Keeper) -> None:
        assert await keeper.update_validators() == 3
        assert await keeper.update_validators() == 0

    @pytest.mark.asyncio
    async def test_runs_again_next_era(
        self, keeper: Keeper, backend: LocalStakingBackend, system: Deployment
    ) -> None:
        await keeper.update_validators()
        backend.advance_era()
        assert await keeper.update_validators() == 3
        assert system.registry.get_last_update_era() == 2

    @pytest.mark.asyncio
    async def test_performance_scores_lower_decay(
        self, system: Deployment, backend: LocalStakingBackend
    ) -> None:
        performance = AsyncMock()
        performance.fetch_performance_scores = AsyncMock(return_value={VAL_A: 50.0})
        keeper = Keeper(system, backend, _source(), performance=performance)

        await keeper.update_validators()

        a = system.registry.get_validator(VAL_A)
        assert a is not None and a.decay_factor == 90 and a.p_score == 85
        performance.fetch_performance_scores.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_caps_batch_at_registry_limit(self, clock: ManualClock) -> None:
        cfg = AppConfig(owner=OWNER, registry=RegistryConfig(max_validators_per_update=2))
        system = deploy(cfg, clock)
        backend = LocalStakingBackend(system.cspr, system.keeper, era=1)
        keeper = Keeper(system, backend, _source())

        assert await keeper.update_validators() == 2
        assert system.registry.get_validator(VAL_A) is not None
        assert system.registry.get_validator(VAL_B) is not None
        assert system.registry.get_validator(VAL_INACTIVE) is None

    @pytest.mark.asyncio
    async def test_no_validators(self, system: Deployment, backend: LocalStakingBackend) -> None:
        keeper = Keeper(system, backend, _source([]))
        assert await keeper.update_validators() == 0
        assert system.registry.get_last_update_era() == 0


class TestDelegationRelay:
    @pytest.mark.asyncio
    async def test_delegates_pending_stake(
        self, staked: Deployment, keeper: Keeper, backend: LocalStakingBackend
    ) -> None:
        await _register_and_stake(staked, keeper)
        staked.pool.stake(BOB, VAL_B, 1, 100 * CSPR)

        assert await keeper.process_delegations() == 1

        assert backend.get_delegation(VAL_A) == 1_000 * CSPR
        assert staked.pool.get_stats().total_delegated == 1_000 * CSPR
        assert [p.validator for p in staked.pool.get_pending_delegations()] == [VAL_B]
        assert staked.cspr.balance_of(staked.keeper) == 0
        assert staked.cspr.balance_of(staked.pool.address) == 100 * CSPR

    @pytest.mark.asyncio
    async def test_failed_delegation_returns_funds(
        self, staked: Deployment, keeper: Keeper, backend: LocalStakingBackend
    ) -> None:
        await _register_and_stake(staked, keeper)
        backend.delegate = AsyncMock(side_effect=RuntimeError("deploy rejected"))

        assert await keeper.process_delegations() == 0

        assert staked.cspr.balance_of(staked.pool.address) == 1_000 * CSPR
        assert staked.cspr.balance_of(staked.keeper) == 0
        assert staked.pool.get_stats().total_delegated == 0
        assert len(staked.pool.get_pending_delegations()) == 1

    @pytest.mark.asyncio
    async def test_nothing_pending(self, keeper: Keeper) -> None:
        assert await keeper.process_delegations() == 0
        assert await keeper.process_undelegations() == 0

    @pytest.mark.asyncio
    async def test_undelegation_round_trip(
        self, staked: Deployment, keeper: Keeper, backend: LocalStakingBackend
    ) -> None:
        await _register_and_stake(staked, keeper)
        await keeper.process_delegations()
        staked.pool.unstake(ALICE, VAL_A, 100 * CSPR, 1)

        assert await keeper.process_undelegations() == 1

        assert backend.get_delegation(VAL_A) == 900 * CSPR
        assert staked.pool.get_pending_undelegations() == []
        assert staked.pool.get_stats().total_delegated == 900 * CSPR
        [record] = keeper.tracker.pending()
        assert record.complete_era == 8

        assert await keeper.deposit_matured_unbondings() == 0
        backend.advance_era(7)
        assert await keeper.deposit_matured_unbondings() == 100 * CSPR
        assert keeper.tracker.pending() == []
        assert staked.cspr.balance_of(staked.pool.address) == 100 * CSPR

        assert staked.pool.claim(ALICE, 8) == 100 * CSPR
        assert staked.pool.check_invariants() == []

    @pytest.mark.asyncio
    async def test_failed_undelegation_stays_pending(
        self, staked: Deployment, keeper: Keeper, backend: LocalStakingBackend
    ) -> None:
        await _register_and_stake(staked, keeper)
        await keeper.process_delegations()
        staked.pool.unstake(ALICE, VAL_A, 100 * CSPR, 1)
        backend.undelegate = AsyncMock(side_effect=RuntimeError("node down"))

        assert await keeper.process_undelegations() == 0
        assert len(staked.pool.get_pending_undelegations()) == 1
        assert keeper.tracker.pending() == []

    @pytest.mark.asyncio
    async def test_unconfirmed_undelegation_is_still_returned(
        self,
        staked: Deployment,
        keeper: Keeper,
        backend: LocalStakingBackend,
        notifier: AsyncMock,
    ) -> None:
        await _register_and_stake(staked, keeper)
        await keeper.process_delegations()
        staked.pool.unstake(ALICE, VAL_A, 100 * CSPR, 1)
        staked.pool.confirm_undelegation = MagicMock(
            side_effect=StakingError(StakingErrorKind.INVALID_VALIDATOR, VAL_A)
        )

        assert await keeper.process_undelegations() == 0

        assert backend.get_delegation(VAL_A) == 900 * CSPR
        assert [r.amount for r in keeper.tracker.pending()] == [100 * CSPR]
        assert "not confirmed" in notifier.send_alert.call_args.kwargs["subject"]

        backend.advance_era(7)
        assert await keeper.deposit_matured_unbondings() == 100 * CSPR
        assert staked.cspr.balance_of(staked.pool.address) == 100 * CSPR


class TestHarvest:
    @pytest.mark.asyncio
    async def test_harvests_backend_growth(
        self,
        staked: Deployment,
        keeper: Keeper,
        backend: LocalStakingBackend,
        notifier: AsyncMock,
    ) -> None:
        await _register_and_stake(staked, keeper)
        await keeper.process_delegations()
        backend.accrue_rewards(VAL_A, 100 * CSPR)
        backend.advance_era()

        assert await keeper.harvest_rewards() == 100 * CSPR
        assert staked.pool.get_exchange_rate() == 1_095_000_000
        notifier.send_log.assert_awaited()

        assert await keeper.harvest_rewards() == 0

    @pytest.mark.asyncio
    async def test_no_growth(self, staked: Deployment, keeper: Keeper) -> None:
        await _register_and_stake(staked, keeper)
        await keeper.process_delegations()
        assert await keeper.harvest_rewards() == 0
        assert staked.pool.get_last_harvest_era() == 1


class TestOracleRefresh:
    @pytest.mark.asyncio
    async def test_pulls_fetched_price(
        self, system: Deployment, backend: LocalStakingBackend
    ) -> None:
        price_client = AsyncMock()
        price_client.fetch_prices = AsyncMock(return_value={"CSPRUSD": 25_000_000})
        keeper = Keeper(system, backend, _source(), price_client=price_client)

        assert await keeper.refresh_price() == 25_000_000
        assert system.oracle.get_latest_price_data().round_id == 2
        assert system.feed_cache.latest("CSPRUSD") == 25_000_000

    @pytest.mark.asyncio
    async def test_no_price_while_fresh(self, keeper: Keeper, notifier: AsyncMock) -> None:
        assert await keeper.refresh_price() is None
        notifier.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_price_alerts(
        self, system: Deployment, keeper: Keeper, notifier: AsyncMock, clock: ManualClock
    ) -> None:
        clock.advance(system.config.oracle.max_age_seconds + 1)
        assert await keeper.refresh_price() is None
        notifier.send_alert.assert_awaited_once()
        assert "Stale" in notifier.send_alert.call_args.kwargs["subject"]


class TestCheckPositions:
    @pytest.mark.asyncio
    async def test_flags_warning_then_critical(
        self, staked: Deployment, keeper: Keeper, notifier: AsyncMock
    ) -> None:
        await _register_and_stake(staked, keeper)
        approve_vault(staked, ALICE)
        staked.vault.deposit(ALICE, 1_000 * CSPR)
        staked.vault.borrow(ALICE, staked.vault.get_max_borrow(ALICE))

        assert await keeper.check_positions() == []

        staked.oracle.update_price(OWNER, 10_000_000)
        assert await keeper.check_positions() == [(ALICE, 11000)]
        assert "WARNING" in notifier.send_alert.call_args.kwargs["subject"]

        staked.oracle.update_price(OWNER, 8_000_000)
        assert await keeper.check_positions() == [(ALICE, 8800)]
        assert "CRITICAL" in notifier.send_alert.call_args.kwargs["subject"]

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_stop_checks(
        self, staked: Deployment, backend: LocalStakingBackend
    ) -> None:
        failing = AsyncMock()
        failing.send_alert = AsyncMock(side_effect=RuntimeError("telegram down"))
        keeper = Keeper(staked, backend, _source(), notifiers=[failing])
        await _register_and_stake(staked, keeper)
        approve_vault(staked, ALICE)
        staked.vault.deposit(ALICE, 1_000 * CSPR)
        staked.vault.borrow(ALICE, staked.vault.get_max_borrow(ALICE))
        staked.oracle.update_price(OWNER, 8_000_000)

        assert await keeper.check_positions() == [(ALICE, 8800)]


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_the_rest(
        self, staked: Deployment, backend: LocalStakingBackend
    ) -> None:
        keeper = Keeper(staked, backend, _source())
        await _register_and_stake(staked, keeper)
        broken = AsyncMock()
        broken.fetch_validators = AsyncMock(side_effect=RuntimeError("rpc down"))
        keeper._validators = broken
        backend.advance_era()

        await keeper.run_once()

        assert backend.get_delegation(VAL_A) == 1_000 * CSPR
        assert staked.pool.get_last_harvest_era() == 2

    @pytest.mark.asyncio
    async def test_persists_unbonding_records(
        self, clock: ManualClock, tmp_path: Path
    ) -> None:
        path = tmp_path / "unbonding.json"
        cfg = AppConfig(owner=OWNER, keeper=KeeperConfig(unbonding_records_path=str(path)))
        system = deploy(cfg, clock)
        backend = LocalStakingBackend(system.cspr, system.keeper, era=1)
        keeper = Keeper(system, backend, _source())
        fund(system, ALICE, 10_000 * CSPR)
        await _register_and_stake(system, keeper)

        await keeper.run_once()
        system.pool.unstake(ALICE, VAL_A, 100 * CSPR, 1)
        await keeper.run_once()

        assert path.exists()
        restarted = Keeper(system, backend, _source())
        assert [r.amount for r in restarted.tracker.pending()] == [100 * CSPR]
