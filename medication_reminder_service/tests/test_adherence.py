from datetime import timedelta

from app.schemas.models import DoseLogEntry
from app.services.adherence import compute_streaks
from conftest import at


def entry(day: int, status: str, hour: int = 8, late_minutes: int = 0, month: int = 3) -> DoseLogEntry:
    scheduled = at(hour, 0, day=day, month=month)
    return DoseLogEntry(
        id=f"log_{month}_{day}_{hour}_{status}",
        medication_id="med_1",
        slot_id="slot_0",
        scheduled_time=scheduled,
        actual_action_time=None if status == "missed" else scheduled + timedelta(minutes=late_minutes),
        status=status,
    )


def test_empty_log():
    s = compute_streaks([])
    assert s.current_streak == 0
    assert s.longest_streak == 0
    assert s.adherence_rate == 0


def test_missed_day_after_five_perfect_days():
    logs = [entry(d, "taken") for d in range(1, 6)] + [entry(6, "missed")]
    s = compute_streaks(logs)
    assert s.current_streak == 0
    assert s.longest_streak == 5
    assert s.days_with_perfect_adherence == 5
    assert s.adherence_rate == round(5 / 6 * 100, 1)


def test_current_streak_counts_back_from_latest_day():
    logs = [entry(1, "taken"), entry(2, "skipped")] + [entry(d, "taken") for d in range(3, 6)]
    s = compute_streaks(logs)
    assert s.current_streak == 3
    assert s.longest_streak == 3


def test_partial_day_breaks_streak():
    logs = [entry(1, "taken"), entry(1, "taken", hour=20), entry(2, "taken"), entry(2, "missed", hour=20)]
    s = compute_streaks(logs)
    assert s.current_streak == 0
    assert s.longest_streak == 1


def test_calendar_gap_breaks_streak():
    logs = [entry(1, "taken"), entry(2, "taken"), entry(4, "taken")]
    s = compute_streaks(logs)
    assert s.current_streak == 1
    assert s.longest_streak == 2


def test_delayed_entries_are_excluded():
    logs = [entry(1, "delayed"), entry(1, "taken", late_minutes=15), entry(2, "delayed")]
    s = compute_streaks(logs)
    assert s.delayed == 2
    assert s.total_doses == 1
    assert s.adherence_rate == 100.0
    assert s.current_streak == 1


def test_window_is_relative_to_now():
    logs = [entry(1, "missed", month=1)] + [entry(d, "taken") for d in range(1, 4)]
    s = compute_streaks(logs, window_days=30, now=at(12, 0, day=3))
    assert s.missed == 0
    assert s.taken == 3
    assert s.adherence_rate == 100.0
    assert compute_streaks(logs, window_days=30, now=at(12, 0, day=1, month=6)).total_doses == 0


def test_timing_statistics():
    logs = [entry(1, "taken", late_minutes=30), entry(2, "taken", late_minutes=90), entry(3, "missed")]
    s = compute_streaks(logs)
    assert s.avg_delay_minutes == 60
    assert s.consistency_score == 50
    assert s.last_taken_at == at(9, 30, day=2)
    assert s.recent_adherence_rate == round(2 / 3 * 100, 1)
