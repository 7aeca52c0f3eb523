"""Checked fixed-point integer arithmetic.

Python ints never wrap, so every helper enforces the unsigned bound of the
quantity it works on (``U64``, ``U256``, ``U512``) and raises
:class:`~stayer.errors.ArithmeticFault` instead of producing a value outside
it. Integer division floors, which for non-negative operands matches the
truncating division the accounting formulas are written against.

Saturation is only offered through the explicitly named ``saturating_*`` and
``clamp`` helpers and is used where the policy asks for it (multiplier band,
p-score fee component, health-factor ceiling).
"""
from __future__ import annotations

from .errors import ArithmeticFault, ArithmeticKind

U64_MAX: int = 2**64 - 1
U256_MAX: int = 2**256 - 1
U512_MAX: int = 2**512 - 1

BPS: int = 10_000
PRECISION: int = 10**9  # motes per CSPR; also 1.0 for exchange rates
PRICE_PRECISION: int = 10**9  # USD price decimals


def _check(value: int, bound: int) -> int:
    if value < 0:
        raise ArithmeticFault(ArithmeticKind.UNDERFLOW, f"{value} < 0")
    if value > bound:
        raise ArithmeticFault(ArithmeticKind.OVERFLOW, f"{value} > 2^{bound.bit_length()}-1")
    return value


def require_unsigned(value: int, bound: int = U256_MAX) -> int:
    """Return *value* unchanged if it fits in ``[0, bound]``."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"expected int amount, got {type(value).__name__}")
    return _check(value, bound)


def checked_add(a: int, b: int, bound: int = U256_MAX) -> int:
    return _check(a + b, bound)


def checked_sub(a: int, b: int, bound: int = U256_MAX) -> int:
    return _check(a - b, bound)


def checked_mul(a: int, b: int, bound: int = U256_MAX) -> int:
    return _check(a * b, bound)


def checked_div(a: int, b: int) -> int:
    if b == 0:
        raise ArithmeticFault(ArithmeticKind.DIVISION_BY_ZERO, f"{a} / 0")
    return a // b


def mul_div(a: int, b: int, d: int, bound: int = U256_MAX) -> int:
    """``a * b // d`` with the intermediate product bounded by *bound*."""
    return checked_div(checked_mul(a, b, bound), d)


def saturating_sub(a: int, b: int) -> int:
    return a - b if a > b else 0


def saturating_mul(a: int, b: int, bound: int = U64_MAX) -> int:
    return min(a * b, bound)


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def bps_of(amount: int, bps: int, bound: int = U256_MAX) -> int:
    """``amount * bps // 10000``."""
    return mul_div(amount, bps, BPS, bound)
