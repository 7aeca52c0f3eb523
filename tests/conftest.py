"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from helpers import (
    ALICE,
    BOB,
    CSPR,
    KEEPER,
    OWNER,
    ManualClock,
    VaultEnv,
    fund,
    make_vault_env,
    register_validators,
)
from stayer.config import AppConfig, KeeperConfig, PythConfig, TelegramConfig
from stayer.deployment import Deployment, deploy

# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig(owner=OWNER, keeper=KeeperConfig(address=KEEPER))


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.example.com/v2/updates/price/latest",
        feeds={"CSPRUSD": "0xAAA111", "BTCUSD": "bbb222"},
    )


@pytest.fixture()
def sample_telegram_config() -> TelegramConfig:
    return TelegramConfig(
        enabled=True,
        alert_bot_token="alert-tok",
        log_bot_token="log-tok",
        chat_id="12345",
    )


# ---------------------------------------------------------------------------
# Deployed system
# ---------------------------------------------------------------------------


@pytest.fixture()
def system(app_config: AppConfig, clock: ManualClock) -> Deployment:
    return deploy(app_config, clock)


@pytest.fixture()
def staking_system(system: Deployment) -> Deployment:
    """Deployment with validators scored in era 1 and two funded users."""
    register_validators(system)
    fund(system, ALICE, 10_000 * CSPR)
    fund(system, BOB, 10_000 * CSPR)
    return system


@pytest.fixture()
def vault_env(clock: ManualClock) -> VaultEnv:
    return make_vault_env(clock)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    owner: protocol-owner
    initial_price: 25_000_000
    oracle:
      max_age_seconds: 3600
      feed_id: CSPRUSD
    staking:
      min_stake: "50_000_000_000"
      unbonding_delay: 7
    vault:
      ltv: 6000
      liq_threshold: 12000
      liq_penalty: 800
    keeper:
      address: keeper-1
      check_interval_minutes: 15
      unbonding_records_path: "${STAYER_DATA_DIR}/unbonding.json"
    chain:
      rpc_endpoints: ["https://rpc1.example.com", "https://rpc2.example.com"]
      rpc_timeout: 10
      keeper_public_key: "01abc"
    cloud:
      api_url: "https://api.cspr.example.com"
      api_key: "${CSPR_CLOUD_API_KEY}"
    pyth:
      hermes_url: "https://hermes.example.com"
      feeds: {CSPRUSD: "aaa"}
    telegram:
      enabled: true
      alert_bot_token: "tok1"
      log_bot_token: "tok2"
      chat_id: "999"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
