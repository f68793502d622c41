"""Shared fixtures: fixed clocks, sample medications, a recording dispatcher
and a throwaway SQLite store per test."""
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from app.core.errors import DispatchError
from app.db.store import MedicationStore
from app.schemas.models import (
    DispatchResult,
    FrequencySpec,
    IntervalSpec,
    InventoryRecord,
    Medication,
    RenderedMessage,
    ScheduleSlot,
)

UTC = timezone.utc


def at(hour: int, minute: int = 0, day: int = 1, month: int = 3, year: int = 2025) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=UTC)


def make_medication(
    frequency: Optional[FrequencySpec] = None,
    med_id: str = "med_1",
    **overrides,
) -> Medication:
    data = dict(
        id=med_id,
        user_id="user_1",
        name="Metformin",
        dosage="500mg",
        frequency=frequency or FrequencySpec(interval=IntervalSpec(times_per_day=2)),
        first_dose_time="08:00",
        created_at=at(7, 0, day=1, month=1),
    )
    data.update(overrides)
    return Medication(**data)


def make_slots(times: List[str], med_id: str = "med_1") -> List[ScheduleSlot]:
    return [ScheduleSlot(id=f"slot_{i}", medication_id=med_id, time_local=t) for i, t in enumerate(times)]


def make_inventory(quantity: float = 10, dose: Optional[float] = 2, threshold: Optional[float] = 4,
                   med_id: str = "med_1") -> InventoryRecord:
    return InventoryRecord(medication_id=med_id, current_quantity=quantity, dose_amount=dose,
                           refill_threshold=threshold)


class RecordingDispatcher:
    """Keeps every message; optionally fails every send."""

    def __init__(self, fail: bool = False, error: type = DispatchError):
        self.fail = fail
        self.error = error
        self.sent: List[tuple] = []

    def send(self, channel, target, message: RenderedMessage) -> DispatchResult:
        if self.fail:
            raise self.error(f"{channel} relay down")
        self.sent.append((channel, target, message))
        return DispatchResult(success=True, channel=channel)

    @property
    def kinds(self) -> List[str]:
        return [m.kind for _, _, m in self.sent]


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(at(8, 0))


@pytest.fixture
def store(tmp_path):
    s = MedicationStore(str(tmp_path / "medications.db"))
    yield s
    s.close()
