"""Casper node JSON-RPC client with fallback support."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig
from ...models import ValidatorInfo

logger = logging.getLogger(__name__)


def _bid_data(bid: dict[str, Any]) -> dict[str, Any] | None:
    """Validator bid body; Casper 2.x nests it under ``unified`` or ``validator``."""
    body = bid.get("bid")
    if not isinstance(body, dict):
        return None
    for key in ("unified", "validator"):
        if isinstance(body.get(key), dict):
            return body[key]
    return body


def _delegators(bid: dict[str, Any]) -> list[dict[str, Any]]:
    delegators = bid.get("delegators", [])
    if isinstance(delegators, dict):
        # Casper 1.x keys delegators by public key
        return [{"public_key": k, **v} for k, v in delegators.items()]
    return [d for d in delegators if isinstance(d, dict)]


class CasperClient:
    """Casper RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.keeper_public_key = config.keeper_public_key.lower()
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: Any = None) -> dict[str, Any]:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RuntimeError("No RPC endpoints configured")

        payload: dict[str, Any] = {"jsonrpc": "2.0", "id": 1, "method": method}
        if params is not None:
            payload["params"] = params

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result", {})
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def get_current_era(self) -> int:
        result = await self.rpc_call("info_get_status")
        block = result.get("last_added_block_info") or {}
        return int(block.get("era_id", 0))

    async def _get_bids(self) -> list[dict[str, Any]]:
        result = await self.rpc_call("state_get_auction_info")
        return result.get("auction_state", {}).get("bids", [])

    async def fetch_validators(self) -> list[ValidatorInfo]:
        """Validators from the latest auction state; empty on failure."""
        try:
            bids = await self._get_bids()
        except RuntimeError as e:
            logger.error("Error fetching validators: %s", e)
            return []

        validators: list[ValidatorInfo] = []
        for bid in bids:
            data = _bid_data(bid)
            if data is None or "delegation_rate" not in data:
                continue
            validators.append(
                ValidatorInfo(
                    pubkey=str(bid.get("public_key", "")).lower(),
                    fee=int(data["delegation_rate"]),
                    is_active=not data.get("inactive", False),
                    total_stake=int(data.get("staked_amount", 0)),
                )
            )
        logger.info("Fetched %d validators from auction state", len(validators))
        return validators

    async def get_total_delegation(self, delegator: str | None = None) -> int:
        """Sum of *delegator*'s stakes across all validators (default: the keeper)."""
        delegator = (delegator or self.keeper_public_key).lower()
        if not delegator:
            raise ValueError("No delegator public key configured")

        total = 0
        for bid in await self._get_bids():
            data = _bid_data(bid)
            if data is None:
                continue
            for entry in _delegators(data):
                key = str(entry.get("delegator_public_key") or entry.get("public_key", ""))
                if key.lower() == delegator:
                    amount = int(entry.get("staked_amount", 0))
                    total += amount
                    logger.debug("Delegation to %s: %d", bid.get("public_key"), amount)

        logger.info("Total delegation of %s...: %d motes", delegator[:10], total)
        return total
