"""Protocol interfaces for the Stayer core and keeper."""
from .ledger import TokenLedger
from .price import PriceFeed, PriceFeedClient, PriceSource
from .runtime import Clock, EventSink, Notifier, SystemClock
from .staking import ExchangeRateSource, StakingBackend, ValidatorSource, ValidatorView

__all__ = [
    "Clock",
    "EventSink",
    "ExchangeRateSource",
    "Notifier",
    "PriceFeed",
    "PriceFeedClient",
    "PriceSource",
    "StakingBackend",
    "SystemClock",
    "TokenLedger",
    "ValidatorSource",
    "ValidatorView",
]
