"""Stayer: liquid staking and CDP accounting core with its keeper relay."""

__version__ = "0.1.0"
