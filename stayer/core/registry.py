"""Validator performance registry, refreshed in era-stamped batches by the keeper."""
from __future__ import annotations

import logging
from collections.abc import Sequence

from ..config import RegistryConfig
from ..errors import RegistryError, RegistryErrorKind
from ..events import ValidatorsUpdated
from ..fixed_point import U64_MAX, saturating_mul, saturating_sub
from ..interfaces import EventSink
from ..models import ValidatorData, ValidatorUpdate
from .atomic import atomic

logger = logging.getLogger(__name__)


def compute_p_score(fee: int, is_active: bool, decay_factor: int) -> int:
    """``(100 - fee) * 100 * decay_factor / 10000``; zero for inactive validators."""
    if not is_active:
        return 0
    fee_component = saturating_sub(100, fee)
    return saturating_mul(saturating_mul(fee_component, 100, U64_MAX), decay_factor, U64_MAX) // 10000


class ValidatorRegistry:
    _STATE_FIELDS = ("_validators", "_network_p_avg", "_last_update_era", "_keeper")

    def __init__(
        self,
        owner: str,
        keeper: str,
        events: EventSink,
        config: RegistryConfig | None = None,
    ) -> None:
        self._config = config or RegistryConfig()
        self._owner = owner
        self._events = events
        self._keeper = keeper
        self._validators: dict[str, ValidatorData] = {}
        self._network_p_avg = self._config.initial_p_avg
        self._last_update_era = 0

    @property
    def max_batch_size(self) -> int:
        return self._config.max_validators_per_update

    def _require_keeper(self, caller: str) -> None:
        if caller not in (self._keeper, self._owner):
            raise RegistryError(RegistryErrorKind.UNAUTHORIZED, caller)

    @atomic
    def update_validators(
        self,
        caller: str,
        batch: Sequence[ValidatorUpdate],
        network_p_avg: int,
        era: int,
    ) -> None:
        """Store a scored batch and move the network average and update era with it."""
        self._require_keeper(caller)
        cfg = self._config
        if len(batch) > cfg.max_validators_per_update:
            raise RegistryError(
                RegistryErrorKind.TOO_MANY_VALIDATORS,
                f"{len(batch)} > {cfg.max_validators_per_update}",
            )
        if network_p_avg < cfg.min_p_avg or network_p_avg > cfg.max_p_avg:
            raise RegistryError(RegistryErrorKind.INVALID_P_AVG, str(network_p_avg))
        if era <= self._last_update_era:
            raise RegistryError(
                RegistryErrorKind.INVALID_ERA, f"era {era} <= last update {self._last_update_era}"
            )

        validators = dict(self._validators)
        for update in batch:
            validators[update.pubkey] = ValidatorData(
                fee=update.fee,
                is_active=update.is_active,
                decay_factor=update.decay_factor,
                p_score=compute_p_score(update.fee, update.is_active, update.decay_factor),
                updated_era=era,
            )

        self._validators = validators
        self._network_p_avg = network_p_avg
        self._last_update_era = era
        logger.info("Updated %d validators for era %d (p_avg=%d)", len(batch), era, network_p_avg)
        self._events.emit(ValidatorsUpdated(era=era, count=len(batch), p_avg=network_p_avg))

    def get_validator(self, pubkey: str) -> ValidatorData | None:
        return self._validators.get(pubkey)

    def get_network_p_avg(self) -> int:
        return self._network_p_avg

    def get_last_update_era(self) -> int:
        return self._last_update_era

    def is_valid(self, pubkey: str, current_era: int) -> bool:
        # Staleness is global: one missed batch invalidates every validator.
        data = self._validators.get(pubkey)
        if data is None:
            return False
        age = saturating_sub(current_era, self._last_update_era)
        return data.p_score > 0 and data.is_active and age <= self._config.stale_data_eras

    @atomic
    def set_keeper(self, caller: str, new_keeper: str) -> None:
        if caller != self._owner:
            raise RegistryError(RegistryErrorKind.UNAUTHORIZED, caller)
        self._keeper = new_keeper
        logger.info("Registry keeper set to %s", new_keeper)
