"""Price protocols: trusted price reads and raw feed ingestion."""
from typing import Protocol


class PriceSource(Protocol):
    """Read side of the oracle as seen by the vault."""

    def get_price(self) -> int: ...


class PriceFeed(Protocol):
    """External TWAP feed the oracle pulls from (Styks feed contract)."""

    def get_twap_price(self, feed_id: str) -> int | None: ...


class PriceFeedClient(Protocol):
    """Off-engine transport that fetches fresh feed prices."""

    async def fetch_prices(self, feed_ids: list[str] | None = None) -> dict[str, int]: ...
