"""CSPR.cloud validator performance client."""
import asyncio
import logging
import ssl

import aiohttp
import certifi

from ...config import CloudConfig

logger = logging.getLogger(__name__)

PERFORMANCE_PATH = "/validator-performance/get-historical-average-validators-performance"


class CsprCloudClient:
    """Average validator performance scores over the most recent eras."""

    def __init__(self, config: CloudConfig) -> None:
        self.api_url = config.api_url.rstrip("/")
        self.api_key = config.api_key
        self.eras_to_fetch = config.eras_to_fetch

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def _fetch_era(self, session: aiohttp.ClientSession, era: int) -> list[dict]:
        url = f"{self.api_url}{PERFORMANCE_PATH}?start_era={era}&end_era={era}"
        async with session.get(url, headers={"Authorization": f"Bearer {self.api_key}"}) as response:
            if response.status != 200:
                logger.warning("CSPR.cloud era %d: HTTP %s", era, response.status)
                return []
            data = await response.json()
            return data.get("data", [])

    async def fetch_performance_scores(self, current_era: int) -> dict[str, float]:
        """Map of validator public key to its mean score; empty if unavailable."""
        if not self.configured:
            logger.warning("CSPR.cloud API not configured")
            return {}

        eras = [current_era - i for i in range(self.eras_to_fetch) if current_era - i >= 0]
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        scores: dict[str, list[float]] = {}
        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                pages = await asyncio.gather(*(self._fetch_era(session, era) for era in eras))
        except Exception as e:
            logger.error("Failed to fetch performance: %s", e)
            return {}

        for page in pages:
            for entry in page:
                key = str(entry.get("public_key", "")).lower()
                if key and entry.get("score") is not None:
                    scores.setdefault(key, []).append(float(entry["score"]))

        return {key: sum(values) / len(values) for key, values in scores.items()}
