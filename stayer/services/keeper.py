"""Keeper relay: the off-chain half of the protocol.

Moves staked funds between the pool and the staking backend, keeps the
validator registry and oracle fresh, harvests rewards and watches vault
positions. Each step calls the core synchronously, so every core call stays
atomic; failures are logged per item and the loop carries on.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from ..chains.casper import CsprCloudClient
from ..deployment import Deployment
from ..errors import StakingErrorKind, StayerError
from ..fixed_point import BPS, PRECISION, PRICE_PRECISION, U512_MAX, clamp
from ..interfaces import Notifier, PriceFeedClient, StakingBackend, ValidatorSource
from ..models import Position, ValidatorInfo, ValidatorUpdate
from ..core.registry import compute_p_score
from .unbonding import UnbondingTracker

logger = logging.getLogger(__name__)


def decay_factor(info: ValidatorInfo, score: float | None, floor: int = 80) -> int:
    """Map a 0-100 performance score onto ``[floor, 100]``; 0 for inactive validators."""
    if not info.is_active:
        return 0
    if score is None:
        return 100
    return clamp(round(floor + score * (100 - floor) / 100), floor, 100)


def network_p_avg(batch: list[ValidatorUpdate], low: int, high: int, default: int) -> int:
    """Mean p-score of the active validators in *batch*, clamped to the registry band."""
    scores = [
        compute_p_score(u.fee, u.is_active, u.decay_factor) for u in batch if u.is_active
    ]
    if not scores:
        return default
    return clamp(sum(scores) // len(scores), low, high)


class Keeper:
    """Orchestrates relay, registry and monitoring steps against one deployment."""

    def __init__(
        self,
        deployment: Deployment,
        backend: StakingBackend,
        validator_source: ValidatorSource,
        price_client: PriceFeedClient | None = None,
        performance: CsprCloudClient | None = None,
        notifiers: list[Notifier] | None = None,
        tracker: UnbondingTracker | None = None,
    ) -> None:
        self._d = deployment
        self._config = deployment.config
        self._keeper_cfg = deployment.config.keeper
        self.address = self._keeper_cfg.address
        self._backend = backend
        self._validators = validator_source
        self._price_client = price_client
        self._performance = performance
        self._notifiers: list[Notifier] = list(notifiers or [])
        self._tracker = tracker or UnbondingTracker(
            self._keeper_cfg.unbonding_records_path or None,
            unbonding_delay=self._config.staking.unbonding_delay,
            clock=deployment.clock,
        )

    @property
    def tracker(self) -> UnbondingTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _format_address(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    def _build_position_alert(self, position: Position, health: int, critical: bool) -> str:
        header = "🚨 LIQUIDATABLE" if critical else "⚠️ WARNING"
        footer = (
            "Position can be liquidated now."
            if critical
            else "Consider adding collateral or repaying debt."
        )
        return (
            f"{header} · HF {health / BPS:.2f}\n"
            f"\n"
            f"Owner: {self._format_address(position.owner)}\n"
            f"Collateral: {position.collateral / PRECISION:,.4f} ySCSPR\n"
            f"Debt: {position.debt / PRICE_PRECISION:,.2f} cUSD\n"
            f"\n"
            f"{footer}\n"
            f"{self._now_str()} UTC"
        )

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Oracle and registry
    # ------------------------------------------------------------------

    async def refresh_price(self) -> int | None:
        """Fetch the feed price into the cache and pull it into the oracle."""
        feed_id = self._config.oracle.feed_id
        if self._price_client is not None:
            prices = await self._price_client.fetch_prices([feed_id])
            if feed_id in prices:
                self._d.feed_cache.record(feed_id, prices[feed_id])

        try:
            return self._d.oracle.fetch_from_styks(feed_id)
        except StayerError as e:
            logger.warning("Oracle refresh failed: %s", e)

        if self._d.oracle.is_price_stale():
            await self._send_alert(
                f"Oracle price is stale ({self._d.oracle.get_price_age()}s old) "
                f"and no fresh {feed_id} price could be fetched.",
                subject="🚨 Stale oracle price",
            )
        return None

    async def update_validators(self) -> int:
        """Submit this era's validator batch; returns the number of validators sent."""
        infos = await self._validators.fetch_validators()
        if not infos:
            logger.warning("No validators found")
            return 0

        era = await self._backend.get_current_era()
        registry = self._d.registry
        if era <= registry.get_last_update_era():
            logger.info("Validators already updated for era %d", era)
            return 0

        scores: dict[str, float] = {}
        if self._performance is not None:
            scores = await self._performance.fetch_performance_scores(era)

        cap = registry.max_batch_size
        if len(infos) > cap:
            ranked = sorted(infos, key=lambda v: (v.is_active, v.total_stake), reverse=True)
            skipped = ranked[cap:]
            infos = ranked[:cap]
            logger.warning(
                "Registry accepts %d validators per era; skipping %d: %s",
                cap, len(skipped), ", ".join(v.pubkey[:10] for v in skipped),
            )

        floor = self._keeper_cfg.decay_floor
        batch = [
            ValidatorUpdate(
                pubkey=info.pubkey,
                fee=info.fee,
                is_active=info.is_active,
                decay_factor=decay_factor(
                    info, scores.get(info.pubkey, info.performance_score), floor
                ),
            )
            for info in infos
        ]
        reg_cfg = self._config.registry
        p_avg = network_p_avg(
            batch, reg_cfg.min_p_avg, reg_cfg.max_p_avg, registry.get_network_p_avg()
        )

        try:
            registry.update_validators(self.address, batch, p_avg, era)
        except StayerError as e:
            logger.error("Validator update for era %d rejected: %s", era, e)
            return 0
        return len(batch)

    # ------------------------------------------------------------------
    # Delegation relay
    # ------------------------------------------------------------------

    def _return_to_pool(self, amount: int) -> None:
        self._d.cspr.approve(self.address, self._d.pool.address, amount)
        self._d.pool.deposit_from_undelegation(self.address, amount)

    async def process_delegations(self) -> int:
        """Place pending delegations on the backend; returns how many succeeded."""
        pool = self._d.pool
        pending = pool.get_pending_delegations()
        if not pending:
            logger.info("No pending delegations to process")
            return 0

        processed = 0
        for intent in pending:
            if intent.amount < self._keeper_cfg.min_delegation:
                logger.warning(
                    "Skipping delegation to %s: %d below minimum %d",
                    intent.validator, intent.amount, self._keeper_cfg.min_delegation,
                )
                continue

            try:
                pool.withdraw_for_delegation(self.address, intent.validator, intent.amount)
            except StayerError as e:
                logger.error("Withdraw for delegation to %s failed: %s", intent.validator, e)
                continue

            try:
                tx_hash = await self._backend.delegate(intent.validator, intent.amount)
            except Exception as e:
                logger.error("Delegation to %s failed, returning funds: %s", intent.validator, e)
                self._return_to_pool(intent.amount)
                continue

            pool.confirm_delegation(self.address, intent.validator, intent.amount)
            logger.info("Delegated %d to %s (%s)", intent.amount, intent.validator, tx_hash)
            processed += 1
        return processed

    async def process_undelegations(self) -> int:
        pool = self._d.pool
        pending = pool.get_pending_undelegations()
        if not pending:
            logger.info("No pending undelegations to process")
            return 0

        era = await self._backend.get_current_era()
        processed = 0
        for intent in pending:
            try:
                tx_hash = await self._backend.undelegate(intent.validator, intent.amount)
            except Exception as e:
                logger.error("Undelegation from %s failed: %s", intent.validator, e)
                continue
            # Funds are unbonding on chain now; track them so they return to the pool.
            self._tracker.add(intent.validator, intent.amount, era, tx_hash)
            try:
                pool.confirm_undelegation(self.address, intent.validator, intent.amount)
            except StayerError as e:
                logger.error("Confirm undelegation from %s failed: %s", intent.validator, e)
                await self._send_alert(
                    f"Undelegated {intent.amount / PRECISION:,.4f} CSPR from "
                    f"{self._format_address(intent.validator)} ({tx_hash}) but the pool "
                    f"rejected the confirmation: {e}",
                    subject="🚨 Undelegation not confirmed",
                )
                continue
            processed += 1
        return processed

    async def deposit_matured_unbondings(self) -> int:
        """Return every finished unbonding to the pool; returns the motes deposited."""
        era = await self._backend.get_current_era()
        deposited = 0
        for record in self._tracker.ready(era):
            try:
                self._return_to_pool(record.amount)
            except StayerError as e:
                logger.error("Deposit of unbonded %d failed: %s", record.amount, e)
                continue
            self._tracker.mark_deposited(record)
            deposited += record.amount
        if deposited:
            await self._send_log(f"Returned {deposited / PRECISION:,.4f} CSPR of unbonded stake")
        return deposited

    async def harvest_rewards(self) -> int:
        era = await self._backend.get_current_era()
        total = await self._backend.get_total_delegation()
        if total > U512_MAX:
            logger.error("Backend reported an impossible delegation total %d", total)
            return 0
        try:
            rewards = self._d.pool.harvest_rewards(self.address, total, era)
        except StayerError as e:
            if e.kind is StakingErrorKind.INVALID_ERA:
                logger.info("Rewards already harvested for era %d", era)
            else:
                logger.error("Harvest failed: %s", e)
            return 0
        if rewards:
            stats = self._d.pool.get_stats()
            await self._send_log(
                f"Harvested {rewards / PRECISION:,.4f} CSPR in era {era}; "
                f"exchange rate {stats.exchange_rate / PRECISION:.6f}"
            )
        return rewards

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def check_positions(self) -> list[tuple[str, int]]:
        """Alert on risky vault positions; returns ``(owner, health)`` for each one flagged."""
        vault = self._d.vault
        flagged: list[tuple[str, int]] = []
        for position in vault.positions():
            if position.debt == 0:
                continue
            try:
                health = vault.get_health_factor(position.owner)
            except StayerError as e:
                logger.error("Cannot value positions: %s", e)
                await self._send_alert(f"Position check failed: {e}", subject="🚨 Vault valuation")
                return flagged

            logger.info(
                "Position %s: collateral %d debt %d HF %d",
                position.owner, position.collateral, position.debt, health,
            )
            if health < BPS:
                flagged.append((position.owner, health))
                await self._send_alert(
                    self._build_position_alert(position, health, critical=True),
                    subject="🚨 CRITICAL: Liquidatable position",
                )
            elif health < self._keeper_cfg.health_warning_bps:
                flagged.append((position.owner, health))
                await self._send_alert(
                    self._build_position_alert(position, health, critical=False),
                    subject="⚠️ WARNING: Low health factor",
                )
        return flagged

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_once(self) -> None:
        steps = (
            self.refresh_price,
            self.update_validators,
            self.process_delegations,
            self.process_undelegations,
            self.deposit_matured_unbondings,
            self.harvest_rewards,
            self.check_positions,
        )
        for step in steps:
            try:
                await step()
            except Exception as e:
                logger.error("Keeper step %s failed: %s", step.__name__, e)
        self._tracker.cleanup()

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        """Run the keeper loop forever."""
        interval = check_interval_minutes or self._keeper_cfg.check_interval_minutes
        logger.info("Starting keeper loop (every %d minutes)", interval)

        while True:
            try:
                await self.run_once()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in keeper loop: %s", e)
                await asyncio.sleep(60)
