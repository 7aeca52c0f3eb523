"""Price feeds: Pyth HTTP client and the in-process TWAP cache."""
from .cache import FeedCache
from .pyth import PythFeedClient, to_fixed

__all__ = ["FeedCache", "PythFeedClient", "to_fixed"]
