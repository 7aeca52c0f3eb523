"""CSPR/USD price oracle with staleness circuit breaker and manual fallback.

A stored price older than ``max_age`` is never returned: reads switch to the
owner-set fallback price, or fail with ``STALE_PRICE_AND_NO_FALLBACK`` when no
fallback exists. Fallback mode can also be forced by the owner.
"""
from __future__ import annotations

import logging

from ..config import OracleConfig
from ..errors import OracleError, OracleErrorKind
from ..events import OracleConfigUpdated, PriceUpdated
from ..fixed_point import U256_MAX, checked_add, require_unsigned
from ..interfaces import Clock, EventSink, PriceFeed
from ..models import PriceData
from .atomic import atomic

logger = logging.getLogger(__name__)


class PriceOracle:
    """Single trusted price with round tracking."""

    _STATE_FIELDS = (
        "_price_data",
        "_max_age",
        "_updaters",
        "_fallback_price",
        "_use_fallback",
    )

    def __init__(
        self,
        owner: str,
        initial_price: int,
        feed: PriceFeed | None,
        clock: Clock,
        events: EventSink,
        config: OracleConfig | None = None,
    ) -> None:
        config = config or OracleConfig()
        require_unsigned(initial_price)
        self._owner = owner
        self._clock = clock
        self._events = events
        self._min_price = config.min_price
        self._max_price = config.max_price
        self.feed_id = config.feed_id

        self._price_data: PriceData | None = PriceData(
            price=initial_price, updated_at=clock.now(), round_id=1
        )
        self._max_age = config.max_age_seconds
        self._feed = feed
        self._updaters: set[str] = {owner}
        self._fallback_price: int | None = initial_price
        self._use_fallback = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _require_fallback(self, kind: OracleErrorKind) -> int:
        if self._fallback_price is None:
            raise OracleError(kind)
        return self._fallback_price

    def _require_data(self) -> PriceData:
        if self._price_data is None:
            raise OracleError(OracleErrorKind.PRICE_NOT_INITIALIZED)
        return self._price_data

    def get_price(self) -> int:
        """Current price, falling back when forced or when the data is stale."""
        if self._use_fallback:
            return self._require_fallback(OracleErrorKind.FALLBACK_NOT_SET)

        data = self._require_data()
        now = self._clock.now()
        if now > data.updated_at and now - data.updated_at > self._max_age:
            logger.warning(
                "Oracle price is stale (age %ds > %ds), using fallback",
                now - data.updated_at,
                self._max_age,
            )
            return self._require_fallback(OracleErrorKind.STALE_PRICE_AND_NO_FALLBACK)
        return data.price

    def get_latest_price_data(self) -> PriceData:
        if self._use_fallback:
            return PriceData(
                price=self._require_fallback(OracleErrorKind.FALLBACK_NOT_SET),
                updated_at=self._clock.now(),
                round_id=0,
            )
        return self._require_data()

    def is_price_stale(self) -> bool:
        if self._use_fallback:
            return False
        return self.get_price_age() > self._max_age

    def get_price_age(self) -> int:
        data = self._require_data()
        now = self._clock.now()
        if now <= data.updated_at:
            return 0
        return now - data.updated_at

    def get_max_age(self) -> int:
        return self._max_age

    @property
    def use_fallback(self) -> bool:
        return self._use_fallback

    @property
    def fallback_price(self) -> int | None:
        return self._fallback_price

    def is_updater(self, address: str) -> bool:
        return address in self._updaters

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    @atomic
    def update_price(self, caller: str, new_price: int) -> None:
        """Push model: an authorized updater submits a price."""
        if caller not in self._updaters:
            raise OracleError(OracleErrorKind.UNAUTHORIZED, caller)
        self._apply_price(new_price)

    @atomic
    def fetch_from_styks(self, feed_id: str | None = None) -> int:
        """Pull model: read the TWAP for *feed_id* from the configured feed."""
        if self._feed is None:
            raise OracleError(OracleErrorKind.INVALID_CONFIG, "no price feed configured")
        feed_id = feed_id or self.feed_id
        price = self._feed.get_twap_price(feed_id)
        if price is None:
            raise OracleError(OracleErrorKind.FEED_UNAVAILABLE, feed_id)
        self._apply_price(price)
        return price

    def _apply_price(self, new_price: int) -> None:
        if new_price < self._min_price or new_price > self._max_price:
            raise OracleError(
                OracleErrorKind.PRICE_OUT_OF_RANGE,
                f"{new_price} not in [{self._min_price}, {self._max_price}]",
            )
        current = self._require_data()
        now = self._clock.now()
        new_round = checked_add(current.round_id, 1)
        self._price_data = PriceData(price=new_price, updated_at=now, round_id=new_round)
        logger.info("Price updated to %d (round %d)", new_price, new_round)
        self._events.emit(PriceUpdated(price=new_price, round_id=new_round, timestamp=now))

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def _require_owner(self, caller: str) -> None:
        if caller != self._owner:
            raise OracleError(OracleErrorKind.UNAUTHORIZED, caller)

    def _config_updated(self, name: str, value: object) -> None:
        logger.info("Oracle config %s set to %s", name, value)
        self._events.emit(OracleConfigUpdated(config_name=name, new_value=str(value)))

    @atomic
    def set_styks_feed(self, caller: str, feed: PriceFeed) -> None:
        self._require_owner(caller)
        self._feed = feed
        self._config_updated("styks_oracle", "updated")

    @atomic
    def set_max_age(self, caller: str, new_max_age: int) -> None:
        self._require_owner(caller)
        if new_max_age <= 0:
            raise OracleError(OracleErrorKind.INVALID_CONFIG, "max_age must be positive")
        self._max_age = new_max_age
        self._config_updated("max_age", new_max_age)

    @atomic
    def set_fallback_price(self, caller: str, price: int) -> None:
        self._require_owner(caller)
        self._fallback_price = require_unsigned(price, U256_MAX)
        self._config_updated("fallback_price", price)

    @atomic
    def set_use_fallback(self, caller: str, enabled: bool) -> None:
        self._require_owner(caller)
        self._use_fallback = enabled
        self._config_updated("use_fallback", enabled)

    @atomic
    def add_updater(self, caller: str, updater: str) -> None:
        self._require_owner(caller)
        self._updaters = self._updaters | {updater}

    @atomic
    def remove_updater(self, caller: str, updater: str) -> None:
        self._require_owner(caller)
        self._updaters = self._updaters - {updater}
