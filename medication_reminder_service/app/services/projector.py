"""Project a medication's slots onto the clock.

Pure functions of (slots, now, recurrence): nothing here reads a global clock
or mutates its inputs, so projecting twice with the same inputs gives the same
answer.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from app.core.settings import GRACE_MINUTES
from app.schemas.models import DAILY, DoseStatus, Projection, Recurrence, ScheduleSlot, SlotStatusView
from app.utils.time_utils import at_time_of_day

# periodic schedules without an explicit anchor count from this Monday
_DEFAULT_ANCHOR = date(1970, 1, 5)

# most urgent first
STATUS_PRECEDENCE: Tuple[DoseStatus, ...] = ("overdue", "due", "missed", "skipped", "taken", "upcoming")

def _is_every_day(rec: Recurrence) -> bool:
    return rec.unit == "day" and rec.count == 1

def _step_days(rec: Recurrence) -> int:
    return rec.count * (7 if rec.unit == "week" else 1)

def _occurrence_on_or_before(day: date, rec: Recurrence) -> Optional[date]:
    if _is_every_day(rec) and rec.anchor is None:
        return day
    anchor = rec.anchor or _DEFAULT_ANCHOR
    if day < anchor:
        return None
    if rec.unit == "month":
        months = (day.year - anchor.year) * 12 + (day.month - anchor.month)
        k = months // rec.count
        while k >= 0:
            cand = anchor + relativedelta(months=k * rec.count)
            if cand <= day:
                return cand
            k -= 1
        return None
    step = _step_days(rec)
    k = (day - anchor).days // step
    return anchor + timedelta(days=k * step)

def _first_occurrence_after(day: date, rec: Recurrence) -> date:
    if _is_every_day(rec) and rec.anchor is None:
        return day + timedelta(days=1)
    anchor = rec.anchor or _DEFAULT_ANCHOR
    if day < anchor:
        return anchor
    if rec.unit == "month":
        months = (day.year - anchor.year) * 12 + (day.month - anchor.month)
        k = months // rec.count
        while True:
            cand = anchor + relativedelta(months=k * rec.count)
            if cand > day:
                return cand
            k += 1
    step = _step_days(rec)
    k = (day - anchor).days // step + 1
    return anchor + timedelta(days=k * step)

def previous_occurrence(time_local: str, at: datetime, recurrence: Recurrence = DAILY) -> Optional[datetime]:
    """Latest occurrence of the slot at or before `at` (None before the anchor)."""
    day = _occurrence_on_or_before(at.date(), recurrence)
    while day is not None:
        cand = at_time_of_day(day, time_local, at.tzinfo)
        if cand <= at:
            return cand
        day = _occurrence_on_or_before(day - timedelta(days=1), recurrence)
    return None

def next_occurrence(time_local: str, after: datetime, recurrence: Recurrence = DAILY) -> datetime:
    """Earliest occurrence of the slot strictly after `after`."""
    day = _occurrence_on_or_before(after.date(), recurrence)
    if day == after.date():
        cand = at_time_of_day(day, time_local, after.tzinfo)
        if cand > after:
            return cand
    return at_time_of_day(_first_occurrence_after(after.date(), recurrence), time_local, after.tzinfo)

def _next_open_occurrence(slot: ScheduleSlot, now: datetime, recurrence: Recurrence) -> datetime:
    """Next occurrence after `now`, skipping a cycle already resolved ahead of time."""
    nxt = next_occurrence(slot.time_local, now, recurrence)
    if slot.resolved_cycle is not None and slot.resolved_cycle == nxt:
        nxt = next_occurrence(slot.time_local, nxt, recurrence)
    return nxt

def _today_occurrence(slot: ScheduleSlot, now: datetime, recurrence: Recurrence) -> Optional[datetime]:
    prev = previous_occurrence(slot.time_local, now, recurrence)
    if prev is not None and prev.date() == now.date():
        return prev
    return None

def _resolved_status(slot: ScheduleSlot) -> DoseStatus:
    return slot.last_status if slot.last_status in ("taken", "missed", "skipped") else "taken"

def slot_status(
    slot: ScheduleSlot,
    now: datetime,
    recurrence: Recurrence = DAILY,
    grace_minutes: int = GRACE_MINUTES,
) -> SlotStatusView:
    scheduled = _today_occurrence(slot, now, recurrence)

    if scheduled is None:
        nxt = next_occurrence(slot.time_local, now, recurrence)
        # taken ahead of time for the coming cycle
        if slot.resolved_cycle is not None and slot.resolved_cycle == nxt:
            return SlotStatusView(slot_id=slot.id, time_local=slot.time_local, scheduled_at=nxt,
                                  status=_resolved_status(slot))
        return SlotStatusView(slot_id=slot.id, time_local=slot.time_local, scheduled_at=nxt, status="upcoming")

    if slot.resolved_cycle is not None and slot.resolved_cycle == scheduled:
        status = _resolved_status(slot)
    elif slot.delayed_until is not None and slot.delayed_until > now:
        status = "due"
    elif now - scheduled <= timedelta(minutes=grace_minutes):
        status = "due"
    else:
        status = "overdue"
    return SlotStatusView(slot_id=slot.id, time_local=slot.time_local, scheduled_at=scheduled, status=status)

def most_urgent(statuses: Iterable[DoseStatus]) -> DoseStatus:
    found = set(statuses)
    for s in STATUS_PRECEDENCE:
        if s in found:
            return s
    return "upcoming"

def project(
    slots: List[ScheduleSlot],
    now: datetime,
    recurrence: Recurrence = DAILY,
    grace_minutes: int = GRACE_MINUTES,
) -> Projection:
    """Next dose time, most recent slot today and the medication-level status.

    is_overdue refers to the most recent slot only; status is the most urgent
    status across all of today's slots.
    """
    if not slots:
        return Projection()

    next_dose_at = min(_next_open_occurrence(s, now, recurrence) for s in slots)

    most_recent: Optional[ScheduleSlot] = None
    most_recent_at: Optional[datetime] = None
    for s in slots:
        occ = _today_occurrence(s, now, recurrence)
        if occ is not None and (most_recent_at is None or occ > most_recent_at):
            most_recent, most_recent_at = s, occ

    views = [slot_status(s, now, recurrence, grace_minutes) for s in slots]
    views.sort(key=lambda v: v.scheduled_at)

    is_overdue = False
    if most_recent is not None:
        is_overdue = next(v.status for v in views if v.slot_id == most_recent.id) == "overdue"

    return Projection(
        next_dose_at=next_dose_at,
        most_recent_slot=most_recent,
        is_overdue=is_overdue,
        status=most_urgent(v.status for v in views),
        slot_statuses=views,
    )
