"""Adherence statistics over the dose log: streaks, rates and timing."""
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from app.core.settings import DEFAULT_WINDOW_DAYS, RECENT_WINDOW_DAYS
from app.schemas.models import DoseLogEntry, StreakSummary

# average lateness at which the consistency score reaches 0
_CONSISTENCY_ZERO_MINUTES = 120

_RESOLVED = ("taken", "missed", "skipped")

def _rate(taken: int, total: int) -> float:
    return round(taken / total * 100, 1) if total else 0.0

def _group_by_day(logs: List[DoseLogEntry]) -> Dict[date, List[DoseLogEntry]]:
    days: Dict[date, List[DoseLogEntry]] = defaultdict(list)
    for entry in logs:
        # delayed entries reschedule a dose, they never resolve one
        if entry.status in _RESOLVED:
            days[entry.scheduled_time.date()].append(entry)
    return days

def _all_taken(entries: List[DoseLogEntry]) -> bool:
    return bool(entries) and all(e.status == "taken" for e in entries)

def current_streak(days: Dict[date, List[DoseLogEntry]]) -> int:
    """Consecutive all-taken days counting back from the most recent logged day.

    A day with any missed or skipped dose ends the streak, and so does a gap:
    a calendar day with nothing logged.
    """
    streak = 0
    expected: Optional[date] = None
    for day in sorted(days, reverse=True):
        if expected is not None and day != expected:
            break
        if not _all_taken(days[day]):
            break
        streak += 1
        expected = day - timedelta(days=1)
    return streak

def longest_streak(days: Dict[date, List[DoseLogEntry]]) -> int:
    best = run = 0
    prev: Optional[date] = None
    for day in sorted(days):
        if _all_taken(days[day]):
            run = run + 1 if prev is not None and day - prev == timedelta(days=1) and run else 1
            best = max(best, run)
        else:
            run = 0
        prev = day
    return best

def compute_streaks(
    logs: List[DoseLogEntry],
    window_days: int = DEFAULT_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> StreakSummary:
    """Streaks and adherence for one medication's log.

    Only entries scheduled within `window_days` before `now` are counted (or
    before the latest entry when `now` is omitted). adherence_rate is
    taken / (taken + missed + skipped) as a percentage and 0 when nothing has
    been logged yet.
    """
    if not logs:
        return StreakSummary(window_days=window_days)

    end = now or max(e.scheduled_time for e in logs)
    start = end - timedelta(days=window_days)
    window = [e for e in logs if start <= e.scheduled_time <= end]

    days = _group_by_day(window)

    taken = [e for e in window if e.status == "taken"]
    missed = sum(1 for e in window if e.status == "missed")
    skipped = sum(1 for e in window if e.status == "skipped")
    delayed = sum(1 for e in window if e.status == "delayed")
    resolved = len(taken) + missed + skipped

    delays = [
        abs((e.actual_action_time - e.scheduled_time).total_seconds()) / 60
        for e in taken
        if e.actual_action_time is not None
    ]
    avg_delay = sum(delays) / len(delays) if delays else None
    consistency = (
        max(0.0, 100 - avg_delay / _CONSISTENCY_ZERO_MINUTES * 100) if avg_delay is not None else 0.0
    )

    recent_days = sorted(days, reverse=True)[:RECENT_WINDOW_DAYS]
    recent = [e for d in recent_days for e in days[d]]
    recent_taken = sum(1 for e in recent if e.status == "taken")

    last_taken = max(
        (e.actual_action_time or e.scheduled_time for e in taken),
        default=None,
    )

    return StreakSummary(
        current_streak=current_streak(days),
        longest_streak=longest_streak(days),
        adherence_rate=_rate(len(taken), resolved),
        window_days=window_days,
        taken=len(taken),
        missed=missed,
        skipped=skipped,
        delayed=delayed,
        total_doses=resolved,
        days_with_perfect_adherence=sum(1 for d in days.values() if _all_taken(d)),
        last_taken_at=last_taken,
        avg_delay_minutes=round(avg_delay, 1) if avg_delay is not None else None,
        consistency_score=round(consistency, 1),
        recent_adherence_rate=_rate(recent_taken, len(recent)),
    )
