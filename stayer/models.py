"""Data models: all frozen (immutable). Updates replace whole records."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from .errors import VaultError, VaultErrorKind
from .fixed_point import BPS, PRECISION

# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceData:
    """Trusted USD price (9 decimals) with its update time and round."""

    price: int
    updated_at: int
    round_id: int


# ---------------------------------------------------------------------------
# Validator registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidatorUpdate:
    """One entry of a keeper update batch."""

    pubkey: str
    fee: int
    is_active: bool
    decay_factor: int


@dataclass(frozen=True)
class ValidatorData:
    fee: int
    is_active: bool
    decay_factor: int
    p_score: int
    updated_era: int


# ---------------------------------------------------------------------------
# Liquid staking
# ---------------------------------------------------------------------------


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"


@dataclass(frozen=True)
class WithdrawalRequest:
    request_id: int
    user: str
    amount: int
    unlock_era: int
    status: WithdrawalStatus = WithdrawalStatus.PENDING


@dataclass(frozen=True)
class PendingDelegation:
    """Staked funds waiting for the keeper to delegate them."""

    validator: str
    amount: int
    era: int


@dataclass(frozen=True)
class PendingUndelegation:
    """Unstaked funds waiting for the keeper to undelegate them."""

    validator: str
    amount: int
    era: int


RelayIntent = Union[PendingDelegation, PendingUndelegation]


@dataclass(frozen=True)
class LiquidStakingStats:
    total_staked: int
    total_pending_withdrawal: int
    cumulative_rewards: int
    exchange_rate: int
    total_delegated: int = 0
    protocol_fees: int = 0


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Collateralized debt position of one user."""

    owner: str
    collateral: int
    debt: int
    entry_price: int
    opened_at: int


DEFAULT_LTV = 5000
DEFAULT_LIQ_THRESHOLD = 11000
DEFAULT_LIQ_PENALTY = 1000
DEFAULT_STABILITY_FEE = 200
DEFAULT_MIN_COLLATERAL = 100 * PRECISION
MAX_LIQ_PENALTY = 5000


@dataclass(frozen=True)
class VaultParams:
    """Risk parameters; ratios in basis points."""

    ltv: int = DEFAULT_LTV
    liq_threshold: int = DEFAULT_LIQ_THRESHOLD
    liq_penalty: int = DEFAULT_LIQ_PENALTY
    stability_fee: int = DEFAULT_STABILITY_FEE
    min_collateral: int = DEFAULT_MIN_COLLATERAL

    def validate(self) -> None:
        """Raise :class:`VaultError` for an out-of-range ratio."""
        if self.ltv <= 0 or self.ltv > BPS:
            raise VaultError(VaultErrorKind.INVALID_LTV, f"ltv={self.ltv}")
        if self.liq_threshold <= self.ltv:
            raise VaultError(
                VaultErrorKind.INVALID_THRESHOLD,
                f"liq_threshold={self.liq_threshold} <= ltv={self.ltv}",
            )
        if self.liq_penalty < 0 or self.liq_penalty > MAX_LIQ_PENALTY:
            raise VaultError(VaultErrorKind.INVALID_PENALTY, f"liq_penalty={self.liq_penalty}")
        if self.stability_fee < 0 or self.min_collateral < 0:
            raise VaultError(VaultErrorKind.INVALID_CONFIG, "negative fee or minimum")


@dataclass(frozen=True)
class VaultStats:
    total_collateral: int
    total_debt: int
    price: int


# ---------------------------------------------------------------------------
# Keeper-side views of the staking backend
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidatorInfo:
    """Validator as reported by the chain's auction state."""

    pubkey: str
    fee: int
    is_active: bool
    total_stake: int = 0
    performance_score: float | None = None
