"""Service modules"""
from .backend import LocalStakingBackend
from .keeper import Keeper
from .unbonding import UnbondingRecord, UnbondingTracker

__all__ = ["Keeper", "LocalStakingBackend", "UnbondingRecord", "UnbondingTracker"]
