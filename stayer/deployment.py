"""Wire the core components and their ledgers from an ``AppConfig``."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import AppConfig
from .core import LiquidStakingPool, PriceOracle, ValidatorRegistry, VaultEngine
from .events import EventLog
from .feeds import FeedCache
from .fixed_point import U256_MAX
from .interfaces import Clock, SystemClock
from .tokens import InMemoryToken

logger = logging.getLogger(__name__)

POOL_ADDRESS = "liquid-staking"
VAULT_ADDRESS = "stayer-vault"


@dataclass
class Deployment:
    config: AppConfig
    clock: Clock
    events: EventLog
    feed_cache: FeedCache
    cspr: InMemoryToken
    yscspr: InMemoryToken
    cusd: InMemoryToken
    oracle: PriceOracle
    registry: ValidatorRegistry
    pool: LiquidStakingPool
    vault: VaultEngine

    @property
    def owner(self) -> str:
        return self.config.owner

    @property
    def keeper(self) -> str:
        return self.config.keeper.address


def deploy(config: AppConfig | None = None, clock: Clock | None = None) -> Deployment:
    """Build oracle, registry, pool and vault sharing one event log."""
    config = config or AppConfig()
    clock = clock or SystemClock()
    events = EventLog()
    feed_cache = FeedCache(clock, window_seconds=config.oracle.max_age_seconds)

    cspr = InMemoryToken("CSPR")
    yscspr = InMemoryToken("ySCSPR", bound=U256_MAX)
    cusd = InMemoryToken("cUSD", bound=U256_MAX)

    oracle = PriceOracle(
        owner=config.owner,
        initial_price=config.initial_price,
        feed=feed_cache,
        clock=clock,
        events=events,
        config=config.oracle,
    )
    oracle.add_updater(config.owner, config.keeper.address)

    registry = ValidatorRegistry(
        owner=config.owner,
        keeper=config.keeper.address,
        events=events,
        config=config.registry,
    )
    pool = LiquidStakingPool(
        address=POOL_ADDRESS,
        owner=config.owner,
        keeper=config.keeper.address,
        registry=registry,
        derivative=yscspr,
        base_asset=cspr,
        events=events,
        config=config.staking,
    )
    vault = VaultEngine(
        address=VAULT_ADDRESS,
        owner=config.owner,
        oracle=oracle,
        exchange_rate_source=pool,
        collateral_token=yscspr,
        debt_token=cusd,
        clock=clock,
        events=events,
        params=config.vault,
    )
    logger.info("Deployed Stayer core (owner=%s, keeper=%s)", config.owner, config.keeper.address)
    return Deployment(
        config=config,
        clock=clock,
        events=events,
        feed_cache=feed_cache,
        cspr=cspr,
        yscspr=yscspr,
        cusd=cusd,
        oracle=oracle,
        registry=registry,
        pool=pool,
        vault=vault,
    )
