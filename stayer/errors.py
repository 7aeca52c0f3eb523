"""Error kinds: numbered per component, all fatal to the current call."""
from __future__ import annotations

from enum import IntEnum


class OracleErrorKind(IntEnum):
    UNAUTHORIZED = 1
    PRICE_OUT_OF_RANGE = 2
    INVALID_CONFIG = 3
    FEED_UNAVAILABLE = 4
    PRICE_NOT_INITIALIZED = 5
    FALLBACK_NOT_SET = 6
    STALE_PRICE_AND_NO_FALLBACK = 7
    NOT_INITIALIZED = 8


class RegistryErrorKind(IntEnum):
    UNAUTHORIZED = 1
    NOT_INITIALIZED = 2
    TOO_MANY_VALIDATORS = 3
    INVALID_P_AVG = 4
    INVALID_ERA = 5


class StakingErrorKind(IntEnum):
    UNAUTHORIZED = 1
    NOT_INITIALIZED = 2
    INVALID_VALIDATOR = 3
    VALIDATOR_NOT_FOUND = 4
    VALIDATOR_INACTIVE = 5
    STAKE_TOO_LOW = 6
    STAKE_TOO_HIGH = 7
    INVALID_AMOUNT = 8
    EXCEEDS_MAX_WITHDRAWAL = 9
    NO_PENDING_WITHDRAWALS = 10
    NO_MATURED_WITHDRAWALS = 11
    REQUEST_NOT_FOUND = 12
    INVALID_ERA = 13
    INSUFFICIENT_STAKE = 14


class VaultErrorKind(IntEnum):
    UNAUTHORIZED = 1
    POSITION_NOT_FOUND = 2
    INSUFFICIENT_COLLATERAL = 3
    INSUFFICIENT_DEBT = 4
    EXCEEDS_COLLATERAL = 5
    POSITION_HEALTHY = 6
    COLLATERAL_TOO_LOW = 7
    INVALID_LTV = 8
    INVALID_THRESHOLD = 9
    INVALID_PENALTY = 10
    PAUSED = 11
    EXCEEDS_MAX_DEBT = 12
    EXCEEDS_DEBT = 13
    UNHEALTHY_POSITION = 14
    INVALID_CONFIG = 15
    INVALID_AMOUNT = 16


class TokenErrorKind(IntEnum):
    INSUFFICIENT_BALANCE = 1
    INSUFFICIENT_ALLOWANCE = 2
    INVALID_AMOUNT = 3


class ArithmeticKind(IntEnum):
    OVERFLOW = 100
    UNDERFLOW = 101
    DIVISION_BY_ZERO = 102


class StayerError(Exception):
    """Base error: carries a numbered ``kind`` and its integer ``code``."""

    def __init__(self, kind: IntEnum, detail: str = "") -> None:
        self.kind = kind
        self.code = int(kind)
        self.detail = detail
        message = f"{kind.name} ({self.code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class OracleError(StayerError):
    """Raised by the price oracle."""


class RegistryError(StayerError):
    """Raised by the validator registry."""


class StakingError(StayerError):
    """Raised by the liquid staking pool."""


class VaultError(StayerError):
    """Raised by the CDP vault."""


class TokenError(StayerError):
    """Raised by a token ledger."""


class ArithmeticFault(StayerError):
    """Checked arithmetic left its bounds. Never clamped silently."""
