"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import VaultError
from .fixed_point import PRECISION
from .models import VaultParams

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OracleConfig:
    max_age_seconds: int = 7200
    min_price: int = 10
    max_price: int = 1_000_000_000
    feed_id: str = "CSPRUSD"


@dataclass(frozen=True)
class RegistryConfig:
    min_p_avg: int = 10
    max_p_avg: int = 100
    max_validators_per_update: int = 50
    stale_data_eras: int = 3
    initial_p_avg: int = 80


@dataclass(frozen=True)
class StakingConfig:
    min_stake: int = 100 * PRECISION
    max_single_stake: int = 100_000 * PRECISION
    unbonding_delay: int = 7
    protocol_fee_bps: int = 500
    min_multiplier: int = 5000
    max_multiplier: int = 15000
    max_unstake_share_bps: int = 1000


@dataclass(frozen=True)
class KeeperConfig:
    address: str = "keeper"
    check_interval_minutes: int = 60
    min_delegation: int = 500 * PRECISION
    decay_floor: int = 80
    health_warning_bps: int = 12000
    unbonding_records_path: str = ""


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    keeper_public_key: str = ""


@dataclass(frozen=True)
class CloudConfig:
    api_url: str = ""
    api_key: str = ""
    eras_to_fetch: int = 10


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class AppConfig:
    owner: str = "owner"
    initial_price: int = 20_000_000
    oracle: OracleConfig = field(default_factory=OracleConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    vault: VaultParams = field(default_factory=VaultParams)
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    cloud: CloudConfig = field(default_factory=CloudConfig)
    pyth: PythConfig = field(default_factory=PythConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _int(raw: dict[str, Any], key: str, default: int) -> int:
    # Env-interpolated values arrive as strings, possibly with "_" separators.
    value = raw.get(key, default)
    if isinstance(value, str):
        value = value.replace("_", "")
    return int(value)


def _build_oracle(raw: dict[str, Any]) -> OracleConfig:
    d = OracleConfig()
    return OracleConfig(
        max_age_seconds=_int(raw, "max_age_seconds", d.max_age_seconds),
        min_price=_int(raw, "min_price", d.min_price),
        max_price=_int(raw, "max_price", d.max_price),
        feed_id=str(raw.get("feed_id", d.feed_id)),
    )


def _build_registry(raw: dict[str, Any]) -> RegistryConfig:
    d = RegistryConfig()
    return RegistryConfig(
        min_p_avg=_int(raw, "min_p_avg", d.min_p_avg),
        max_p_avg=_int(raw, "max_p_avg", d.max_p_avg),
        max_validators_per_update=_int(
            raw, "max_validators_per_update", d.max_validators_per_update
        ),
        stale_data_eras=_int(raw, "stale_data_eras", d.stale_data_eras),
        initial_p_avg=_int(raw, "initial_p_avg", d.initial_p_avg),
    )


def _build_staking(raw: dict[str, Any]) -> StakingConfig:
    d = StakingConfig()
    return StakingConfig(
        min_stake=_int(raw, "min_stake", d.min_stake),
        max_single_stake=_int(raw, "max_single_stake", d.max_single_stake),
        unbonding_delay=_int(raw, "unbonding_delay", d.unbonding_delay),
        protocol_fee_bps=_int(raw, "protocol_fee_bps", d.protocol_fee_bps),
        min_multiplier=_int(raw, "min_multiplier", d.min_multiplier),
        max_multiplier=_int(raw, "max_multiplier", d.max_multiplier),
        max_unstake_share_bps=_int(raw, "max_unstake_share_bps", d.max_unstake_share_bps),
    )


def _build_vault(raw: dict[str, Any]) -> VaultParams:
    d = VaultParams()
    return VaultParams(
        ltv=_int(raw, "ltv", d.ltv),
        liq_threshold=_int(raw, "liq_threshold", d.liq_threshold),
        liq_penalty=_int(raw, "liq_penalty", d.liq_penalty),
        stability_fee=_int(raw, "stability_fee", d.stability_fee),
        min_collateral=_int(raw, "min_collateral", d.min_collateral),
    )


def _build_keeper(raw: dict[str, Any]) -> KeeperConfig:
    d = KeeperConfig()
    return KeeperConfig(
        address=str(raw.get("address", d.address)),
        check_interval_minutes=_int(raw, "check_interval_minutes", d.check_interval_minutes),
        min_delegation=_int(raw, "min_delegation", d.min_delegation),
        decay_floor=_int(raw, "decay_floor", d.decay_floor),
        health_warning_bps=_int(raw, "health_warning_bps", d.health_warning_bps),
        unbonding_records_path=str(raw.get("unbonding_records_path", "")),
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        keeper_public_key=str(raw.get("keeper_public_key", "")),
    )


def _build_cloud(raw: dict[str, Any]) -> CloudConfig:
    return CloudConfig(
        api_url=str(raw.get("api_url", "")),
        api_key=str(raw.get("api_key", "")),
        eras_to_fetch=_int(raw, "eras_to_fetch", CloudConfig.eras_to_fetch),
    )


def _build_pyth(raw: dict[str, Any]) -> PythConfig:
    return PythConfig(
        hermes_url=raw.get("hermes_url", PythConfig.hermes_url),
        feeds=dict(raw.get("feeds", {})),
    )


def _build_telegram(raw: dict[str, Any]) -> TelegramConfig:
    return TelegramConfig(
        enabled=bool(raw.get("enabled", False)),
        alert_bot_token=raw.get("alert_bot_token", ""),
        log_bot_token=raw.get("log_bot_token", ""),
        chat_id=raw.get("chat_id", ""),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        owner=str(raw.get("owner", AppConfig.owner)),
        initial_price=_int(raw, "initial_price", AppConfig.initial_price),
        oracle=_build_oracle(raw.get("oracle") or {}),
        registry=_build_registry(raw.get("registry") or {}),
        staking=_build_staking(raw.get("staking") or {}),
        vault=_build_vault(raw.get("vault") or {}),
        keeper=_build_keeper(raw.get("keeper") or {}),
        chain=_build_chain(raw.get("chain") or {}),
        cloud=_build_cloud(raw.get("cloud") or {}),
        pyth=_build_pyth(raw.get("pyth") or {}),
        telegram=_build_telegram(raw.get("telegram") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    try:
        cfg.vault.validate()
    except VaultError as e:
        raise ValueError(f"Invalid vault parameters: {e}") from e

    if cfg.oracle.max_age_seconds <= 0:
        raise ValueError("oracle.max_age_seconds must be positive")
    if not 0 < cfg.oracle.min_price <= cfg.oracle.max_price:
        raise ValueError("oracle price bounds must satisfy 0 < min_price <= max_price")
    if not cfg.oracle.min_price <= cfg.initial_price <= cfg.oracle.max_price:
        raise ValueError(f"initial_price {cfg.initial_price} outside oracle bounds")

    reg = cfg.registry
    if not 0 < reg.min_p_avg <= reg.initial_p_avg <= reg.max_p_avg:
        raise ValueError("registry p_avg bounds must satisfy 0 < min <= initial <= max")

    st = cfg.staking
    if not 0 < st.min_stake <= st.max_single_stake:
        raise ValueError("staking stake bounds must satisfy 0 < min_stake <= max_single_stake")
    if not 0 < st.min_multiplier <= st.max_multiplier:
        raise ValueError("staking multiplier band must satisfy 0 < min <= max")
    if not 0 <= st.protocol_fee_bps <= 10_000:
        raise ValueError("staking.protocol_fee_bps must be within [0, 10000]")

    if st.unbonding_delay <= 0:
        raise ValueError("staking.unbonding_delay must be positive")

    if cfg.keeper.check_interval_minutes <= 0:
        raise ValueError("keeper.check_interval_minutes must be positive")
    if not 0 <= cfg.keeper.decay_floor <= 100:
        raise ValueError("keeper.decay_floor must be within [0, 100]")
    if cfg.cloud.eras_to_fetch <= 0:
        raise ValueError("cloud.eras_to_fetch must be positive")

    if cfg.telegram.enabled and not cfg.telegram.chat_id:
        raise ValueError("Telegram notifications enabled but no chat_id configured")
