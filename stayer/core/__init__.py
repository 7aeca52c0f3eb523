"""Accounting core: oracle, validator registry, staking pool and vault."""
from .oracle import PriceOracle
from .registry import ValidatorRegistry, compute_p_score
from .staking import LiquidStakingPool
from .vault import HEALTH_FACTOR_MAX, VaultEngine, health_factor

__all__ = [
    "HEALTH_FACTOR_MAX",
    "LiquidStakingPool",
    "PriceOracle",
    "ValidatorRegistry",
    "VaultEngine",
    "compute_p_score",
    "health_factor",
]
