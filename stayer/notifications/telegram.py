"""Telegram notifier for keeper alerts and relay logs."""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


def _prepare(message: str) -> str:
    text = html.escape(message, quote=False)
    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[: MAX_MESSAGE_LENGTH - 1] + "…"
    return text


class TelegramNotifier:
    """Alerts go through the unmuted bot, relay logs through the logs bot."""

    def __init__(self, config: TelegramConfig) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id

    async def _send_message(self, message: str, bot_token: str, silent: bool = False) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": _prepare(message),
            "parse_mode": "HTML",
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(url, json=payload) as response:
                    if response.status == 200:
                        return True
                    logger.error("Failed to send Telegram message: %s", response.status)
                    return False
        except aiohttp.ClientError as e:
            logger.error("Telegram request failed: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        if subject:
            message = f"{subject}\n\n{message}"
        if await self._send_message(message, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        if await self._send_message(message, self.log_bot_token, silent=silent):
            logger.debug("Telegram log sent")
            return True
        return False
