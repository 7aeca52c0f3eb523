"""Pyth Network (Hermes) price feed client."""
import logging
import ssl

import aiohttp
import certifi

from ..config import PythConfig
from ..fixed_point import PRICE_PRECISION

logger = logging.getLogger(__name__)

PRICE_DECIMALS = len(str(PRICE_PRECISION)) - 1


def to_fixed(price_raw: int, expo: int, decimals: int = PRICE_DECIMALS) -> int:
    """Convert a Pyth ``price * 10**expo`` pair into an int with *decimals* places."""
    shift = expo + decimals
    if shift >= 0:
        return price_raw * 10**shift
    return price_raw // 10**-shift


class PythFeedClient:
    """Fetch latest prices from Pyth Hermes as 9-decimal integers."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)

    async def fetch_prices(self, feed_ids: list[str] | None = None) -> dict[str, int]:
        """Fetch current prices keyed by configured feed name.

        Args:
            feed_ids: Optional list of feed names (e.g. ``CSPRUSD``). If None,
                      fetches all configured feeds.
        """
        prices: dict[str, int] = {}

        feeds = self.price_feeds
        if feed_ids is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in feed_ids}

        pyth_ids = sorted({pid for pid in feeds.values() if pid})
        if not pyth_ids:
            return prices

        query_params = "&".join(f"ids[]={pid}" for pid in pyth_ids)
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error("Error fetching prices from Pyth: HTTP %s", response.status)
                        return prices

                    data = await response.json()

            # Hermes returns ids without the 0x prefix.
            id_to_names: dict[str, list[str]] = {}
            for name, pyth_id in feeds.items():
                id_to_names.setdefault(pyth_id.lower().removeprefix("0x"), []).append(name)

            for item in data.get("parsed", []):
                pyth_id = str(item.get("id", "")).lower().removeprefix("0x")
                price_data = item.get("price", {})
                price = to_fixed(int(price_data.get("price", 0)), int(price_data.get("expo", 0)))
                if price <= 0:
                    logger.warning("Ignoring non-positive Pyth price for %s", pyth_id)
                    continue
                for name in id_to_names.get(pyth_id, []):
                    prices[name] = price

            for name, price in sorted(prices.items()):
                logger.info("Pyth %s: %d (1e-%d USD)", name, price, PRICE_DECIMALS)

        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)

        return prices
