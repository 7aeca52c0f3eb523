"""Unbonding records kept by the keeper between undelegation and redeposit.

Records persist to a JSON file when a path is configured, so a restarted
keeper still returns funds that finished unbonding while it was down.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from ..interfaces import Clock, SystemClock

logger = logging.getLogger(__name__)

RETENTION_SECONDS = 30 * 24 * 60 * 60


@dataclass(frozen=True)
class UnbondingRecord:
    validator: str
    amount: int
    start_era: int
    complete_era: int
    tx_hash: str = ""
    created_at: int = 0
    deposited: bool = False


class UnbondingTracker:
    def __init__(
        self,
        path: str | Path | None = None,
        unbonding_delay: int = 7,
        clock: Clock | None = None,
    ) -> None:
        self._path = Path(path) if path else None
        self._delay = unbonding_delay
        self._clock = clock or SystemClock()
        self._records: list[UnbondingRecord] = []
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text())
            self._records = [UnbondingRecord(**item) for item in raw]
        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to load unbonding records from %s: %s", self._path, e)
            self._records = []
            return
        logger.info("Loaded %d unbonding record(s)", len(self._records))

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps([dataclasses.asdict(r) for r in self._records], indent=2)
        )

    def add(self, validator: str, amount: int, era: int, tx_hash: str = "") -> UnbondingRecord:
        record = UnbondingRecord(
            validator=validator,
            amount=amount,
            start_era=era,
            complete_era=era + self._delay,
            tx_hash=tx_hash,
            created_at=self._clock.now(),
        )
        self._records.append(record)
        self._save()
        logger.info(
            "Added unbonding record: validator=%s amount=%d complete_era=%d",
            validator, amount, record.complete_era,
        )
        return record

    def ready(self, current_era: int) -> list[UnbondingRecord]:
        return [r for r in self._records if not r.deposited and r.complete_era <= current_era]

    def pending(self) -> list[UnbondingRecord]:
        return [r for r in self._records if not r.deposited]

    def mark_deposited(self, record: UnbondingRecord) -> None:
        for i, existing in enumerate(self._records):
            if existing == record:
                self._records[i] = dataclasses.replace(existing, deposited=True)
                self._save()
                logger.info(
                    "Marked unbonding as deposited: validator=%s amount=%d",
                    record.validator, record.amount,
                )
                return
        raise KeyError(f"unknown unbonding record for {record.validator}")

    def cleanup(self, retention_seconds: int = RETENTION_SECONDS) -> int:
        """Drop deposited records older than the retention window."""
        cutoff = self._clock.now() - retention_seconds
        kept = [r for r in self._records if not r.deposited or r.created_at > cutoff]
        removed = len(self._records) - len(kept)
        if removed:
            self._records = kept
            self._save()
            logger.info("Cleaned up %d old unbonding record(s)", removed)
        return removed

    def stats(self, current_era: int) -> dict[str, int]:
        return {
            "total": len(self._records),
            "pending": len(self.pending()),
            "ready": len(self.ready(current_era)),
            "deposited": sum(1 for r in self._records if r.deposited),
        }
