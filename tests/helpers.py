"""Test doubles and shared constants."""
from __future__ import annotations

from dataclasses import dataclass

from stayer.core import VaultEngine
from stayer.deployment import POOL_ADDRESS, Deployment
from stayer.events import EventLog
from stayer.fixed_point import PRECISION, PRICE_PRECISION
from stayer.models import ValidatorUpdate, VaultParams
from stayer.tokens import InMemoryToken

OWNER = "owner"
KEEPER = "keeper"
ALICE = "alice"
BOB = "bob"
LIQUIDATOR = "liquidator"

VAL_A = "01aaaa0000000000000000000000000000000000000000000000000000000000aa"
VAL_B = "01bbbb0000000000000000000000000000000000000000000000000000000000bb"
VAL_INACTIVE = "01cccc0000000000000000000000000000000000000000000000000000000000cc"

CSPR = PRECISION
USD = PRICE_PRECISION


class ManualClock:
    def __init__(self, start: int = 1_700_000_000) -> None:
        self.time = start

    def now(self) -> int:
        return self.time

    def advance(self, seconds: int) -> None:
        self.time += seconds


class StaticPrice:
    def __init__(self, price: int) -> None:
        self.price = price

    def get_price(self) -> int:
        return self.price


class StaticRate:
    def __init__(self, rate: int = PRECISION) -> None:
        self.rate = rate

    def get_exchange_rate(self) -> int:
        return self.rate


class StaticFeed:
    def __init__(self, prices: dict[str, int] | None = None) -> None:
        self.prices = dict(prices or {})

    def get_twap_price(self, feed_id: str) -> int | None:
        return self.prices.get(feed_id)


# ---------------------------------------------------------------------------
# Deployment helpers
# ---------------------------------------------------------------------------


def register_validators(system: Deployment, era: int = 1, p_avg: int = 95) -> None:
    """VAL_A scores 95, VAL_B scores 81, VAL_INACTIVE scores 0."""
    system.registry.update_validators(
        system.keeper,
        [
            ValidatorUpdate(pubkey=VAL_A, fee=5, is_active=True, decay_factor=100),
            ValidatorUpdate(pubkey=VAL_B, fee=10, is_active=True, decay_factor=90),
            ValidatorUpdate(pubkey=VAL_INACTIVE, fee=5, is_active=False, decay_factor=100),
        ],
        p_avg,
        era,
    )


def fund(system: Deployment, user: str, amount: int) -> None:
    """Mint CSPR to *user* and let the pool pull it."""
    system.cspr.mint(user, amount)
    system.cspr.approve(user, POOL_ADDRESS, system.cspr.allowance(user, POOL_ADDRESS) + amount)


def approve_vault(system: Deployment, user: str) -> None:
    system.yscspr.approve(user, system.vault.address, system.yscspr.balance_of(user))


# ---------------------------------------------------------------------------
# Standalone vault with fixed price and exchange rate
# ---------------------------------------------------------------------------


@dataclass
class VaultEnv:
    vault: VaultEngine
    price: StaticPrice
    rate: StaticRate
    collateral: InMemoryToken
    debt: InMemoryToken
    events: EventLog
    clock: ManualClock

    def give_collateral(self, user: str, amount: int) -> None:
        self.collateral.mint(user, amount)
        self.collateral.approve(
            user, self.vault.address, self.collateral.allowance(user, self.vault.address) + amount
        )

    def check(self) -> None:
        assert self.vault.check_invariants() == []
        assert self.debt.total_supply() == self.vault.get_total_debt()
        assert self.collateral.balance_of(self.vault.address) == (
            self.vault.get_vault_stats().total_collateral
        )


def make_vault_env(clock: ManualClock, params: VaultParams | None = None) -> VaultEnv:
    """Vault priced at 50 USD per CSPR with a 1:1 exchange rate."""
    price = StaticPrice(50 * USD)
    rate = StaticRate()
    collateral = InMemoryToken("ySCSPR")
    debt = InMemoryToken("cUSD")
    events = EventLog()
    vault = VaultEngine(
        address="vault",
        owner=OWNER,
        oracle=price,
        exchange_rate_source=rate,
        collateral_token=collateral,
        debt_token=debt,
        clock=clock,
        events=events,
        params=params,
    )
    env = VaultEnv(vault, price, rate, collateral, debt, events, clock)
    env.give_collateral(ALICE, 1_000 * CSPR)
    env.give_collateral(BOB, 1_000 * CSPR)
    return env
