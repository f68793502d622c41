"""Scan for doses that need a reminder right now.

Invoked periodically by an external scheduler; there are no timers here.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Tuple

from app.core.settings import ALERT_LOOKAHEAD_MINUTES
from app.schemas.models import DueReminder, Medication, ScheduleSlot
from app.services.frequency import recurrence_for
from app.services.notifications import render_message
from app.services.projector import slot_status
from app.utils.time_utils import to_zone

def due_reminders(
    items: Iterable[Tuple[Medication, List[ScheduleSlot]]],
    now: datetime,
    lookahead_minutes: int = ALERT_LOOKAHEAD_MINUTES,
) -> List[DueReminder]:
    """Doses starting within the lookahead, currently due, or overdue.

    Slots already resolved for the cycle, or snoozed past `now`, are left
    alone.
    """
    horizon = timedelta(minutes=lookahead_minutes)
    out: List[DueReminder] = []
    for med, slots in items:
        if not med.active:
            continue
        local_now = to_zone(now, med.timezone)
        if med.end_date and local_now.date() > med.end_date:
            continue
        recurrence = recurrence_for(med)
        for slot in slots:
            if slot.delayed_until is not None and slot.delayed_until > now:
                continue
            view = slot_status(slot, local_now, recurrence)
            if view.status in ("taken", "missed", "skipped"):
                continue
            if view.status == "upcoming" and view.scheduled_at - local_now > horizon:
                continue
            overdue = view.status == "overdue"
            out.append(DueReminder(
                medication_id=med.id,
                slot_id=slot.id,
                due_at=view.scheduled_at,
                status=view.status,
                urgency="high" if overdue else "normal",
                message=render_message(med, "REMINDER", view.scheduled_at, overdue=overdue),
            ))
    out.sort(key=lambda r: r.due_at)
    return out
