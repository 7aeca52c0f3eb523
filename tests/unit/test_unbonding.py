"""Unit tests for the keeper's unbonding tracker."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from helpers import ManualClock
from stayer.services import UnbondingTracker
from stayer.services.unbonding import RETENTION_SECONDS


@pytest.fixture()
def tracker(clock: ManualClock) -> UnbondingTracker:
    return UnbondingTracker(unbonding_delay=7, clock=clock)


class TestUnbondingTracker:
    def test_add_sets_completion_era(self, tracker: UnbondingTracker, clock: ManualClock) -> None:
        record = tracker.add("val", 100, era=10, tx_hash="tx-1")
        assert record.complete_era == 17
        assert record.created_at == clock.now()
        assert tracker.pending() == [record]

    def test_ready_after_delay(self, tracker: UnbondingTracker) -> None:
        record = tracker.add("val", 100, era=10)
        assert tracker.ready(16) == []
        assert tracker.ready(17) == [record]

    def test_mark_deposited(self, tracker: UnbondingTracker) -> None:
        record = tracker.add("val", 100, era=10)
        tracker.mark_deposited(record)
        assert tracker.ready(20) == []
        assert tracker.pending() == []
        assert tracker.stats(20) == {"total": 1, "pending": 0, "ready": 0, "deposited": 1}

    def test_mark_unknown_record(self, tracker: UnbondingTracker) -> None:
        other = UnbondingTracker(unbonding_delay=7).add("val", 1, era=1)
        with pytest.raises(KeyError):
            tracker.mark_deposited(other)

    def test_cleanup_drops_old_deposited(
        self, tracker: UnbondingTracker, clock: ManualClock
    ) -> None:
        done = tracker.add("a", 100, era=1)
        tracker.add("b", 200, era=1)
        tracker.mark_deposited(done)

        assert tracker.cleanup() == 0
        clock.advance(RETENTION_SECONDS + 1)
        assert tracker.cleanup() == 1
        assert [r.validator for r in tracker.pending()] == ["b"]

    def test_persists_to_file(self, tmp_path: Path, clock: ManualClock) -> None:
        path = tmp_path / "data" / "unbonding.json"
        first = UnbondingTracker(path, unbonding_delay=7, clock=clock)
        record = first.add("val", 100, era=3, tx_hash="tx-9")

        second = UnbondingTracker(path, unbonding_delay=7, clock=clock)
        assert second.pending() == [record]
        assert json.loads(path.read_text())[0]["tx_hash"] == "tx-9"

    def test_corrupt_file_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "unbonding.json"
        path.write_text("{not json")
        assert UnbondingTracker(path).pending() == []
