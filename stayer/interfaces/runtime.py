"""Runtime protocols: time, event output and operator notifications."""
import time
from typing import Protocol


class Clock(Protocol):
    """Block time in seconds."""

    def now(self) -> int: ...


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class EventSink(Protocol):
    def emit(self, event: object) -> None: ...


class Notifier(Protocol):
    """Abstract interface for keeper alerts and logs."""

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
