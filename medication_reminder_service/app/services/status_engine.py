"""Dose state machine: take / miss / skip / delay against one schedule slot.

pending -> taken | missed | skipped resolves the slot's current cycle; delay
only pushes the next reminder out and leaves the cycle pending. The engine
works on plain records handed in by the caller and returns updated copies;
persisting them (with a version check on the slot) is the caller's job.

All timestamps are interpreted in the tzinfo of `now` / `at_time`, which the
caller sets to the medication's local zone.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from app.core.errors import DomainError, InactiveMedicationError, UnknownActionError, ValidationError
from app.core.settings import DEFAULT_DELAY_MINUTES, DELAY_REPLAY_SECONDS, EARLY_DOSE_WINDOW_MINUTES
from app.schemas.models import (
    ACTIONS,
    ActionOutcome,
    ConsumeResult,
    DoseLogEntry,
    InventoryRecord,
    Medication,
    Recurrence,
    ScheduleSlot,
)
from app.services.frequency import recurrence_for
from app.services.inventory import consume
from app.services.projector import next_occurrence, previous_occurrence, project

logger = logging.getLogger(__name__)

_LOG_STATUS = {"take": "taken", "miss": "missed", "skip": "skipped", "delay": "delayed"}
_RESOLVED = ("taken", "missed", "skipped")

def _log_id() -> str:
    return "log_" + uuid.uuid4().hex[:12]

def ensure_active(medication: Medication, at: datetime) -> None:
    if not medication.active:
        raise InactiveMedicationError(medication.id)
    day = at.date()
    if medication.start_date and day < medication.start_date:
        raise InactiveMedicationError(medication.id)
    if medication.end_date and day > medication.end_date:
        raise InactiveMedicationError(medication.id)

def cycle_for(
    slot: ScheduleSlot,
    at: datetime,
    recurrence: Recurrence,
    early_window_minutes: int = EARLY_DOSE_WINDOW_MINUTES,
) -> datetime:
    """Scheduled time of the cycle an action at `at` resolves.

    The latest occurrence no later than `at` plus the early-dose window, so a
    dose logged a little early counts for the coming cycle and a late one for
    the cycle it belongs to.
    """
    cycle = previous_occurrence(slot.time_local, at + timedelta(minutes=early_window_minutes), recurrence)
    if cycle is None:
        cycle = next_occurrence(slot.time_local, at, recurrence)
    return cycle

def select_slot(
    slots: List[ScheduleSlot],
    at: datetime,
    recurrence: Recurrence,
    slot_id: Optional[str] = None,
) -> ScheduleSlot:
    """Explicit slot id wins; otherwise the slot whose cycle is nearest to `at`.

    Unresolved cycles only win ties, so repeating an action without a slot id
    lands on the same cycle and replays instead of reaching back a day.
    """
    if not slots:
        raise DomainError("Medication has no schedule slots")
    if slot_id is not None:
        for s in slots:
            if s.id == slot_id:
                return s
        raise DomainError(f"Slot {slot_id} does not belong to this medication")

    def key(s: ScheduleSlot):
        cycle = cycle_for(s, at, recurrence)
        return (abs((at - cycle).total_seconds()), s.resolved_cycle == cycle, s.time_local)

    return min(slots, key=key)

def _find_log(logs: Optional[List[DoseLogEntry]], slot_id: str, cycle: datetime, statuses) -> Optional[DoseLogEntry]:
    """First matching entry; the store hands logs over newest first."""
    for entry in logs or []:
        if entry.slot_id == slot_id and entry.scheduled_time == cycle and entry.status in statuses:
            return entry
    return None

def _replay(action: str, slot: ScheduleSlot, cycle: datetime, log_entry: Optional[DoseLogEntry]) -> ActionOutcome:
    logger.debug("Replay of %s on slot %s cycle %s; returning prior result", action, slot.id, cycle.isoformat())
    return ActionOutcome(
        action=action,
        updated_slot=slot,
        expected_version=slot.version,
        next_reminder_at=slot.next_reminder_at,
        log_entry=log_entry,
        replayed=True,
    )

def apply_action(
    medication: Medication,
    slots: List[ScheduleSlot],
    action: str,
    *,
    now: datetime,
    slot_id: Optional[str] = None,
    reason: Optional[str] = None,
    quantity: Optional[float] = None,
    at_time: Optional[datetime] = None,
    delay_minutes: Optional[int] = None,
    inventory: Optional[InventoryRecord] = None,
    logs: Optional[List[DoseLogEntry]] = None,
    recurrence: Optional[Recurrence] = None,
) -> ActionOutcome:
    """Apply one action and return the slot, log entry and inventory changes.

    Replaying an action against a cycle that is already resolved, by the
    slot marker or by a resolved entry in `logs`, is a no-op: the prior state
    comes back with replayed=True, the matching entry from `logs` if one is
    supplied, and no inventory change. A delay whose target lands within
    DELAY_REPLAY_SECONDS of the pending one is a retry of that delay.
    An action on a cycle older than the slot marker is logged (and consumes
    stock) without moving the marker back.
    """
    if action not in ACTIONS:
        raise UnknownActionError(action)
    if quantity is not None and quantity <= 0:
        raise ValidationError(f"quantity must be positive, got {quantity}")
    if delay_minutes is not None and delay_minutes <= 0:
        raise ValidationError(f"delay_minutes must be positive, got {delay_minutes}")

    at = at_time or now
    ensure_active(medication, at)
    recurrence = recurrence or recurrence_for(medication)

    slot = select_slot(slots, at, recurrence, slot_id)
    cycle = cycle_for(slot, at, recurrence)

    resolved_entry = _find_log(logs, slot.id, cycle, _RESOLVED)
    if (slot.resolved_cycle is not None and slot.resolved_cycle == cycle) or resolved_entry is not None:
        if resolved_entry is None:
            prior = slot.last_status if slot.last_status != "pending" else "taken"
            resolved_entry = _find_log(logs, slot.id, cycle, (prior,))
        return _replay(action, slot, cycle, resolved_entry)

    update = {"version": slot.version + 1}
    if reason:
        update["reason"] = reason
    consumed = ConsumeResult()
    amount_taken = None

    if action == "delay":
        target = at + timedelta(minutes=delay_minutes or DEFAULT_DELAY_MINUTES)
        if slot.delayed_until is not None and abs(slot.delayed_until - target) <= timedelta(seconds=DELAY_REPLAY_SECONDS):
            return _replay(action, slot, cycle, _find_log(logs, slot.id, cycle, ("delayed",)))
        update.update(next_reminder_at=target, delayed_until=target)
        updated = slot.model_copy(update=update)
        next_reminder_at = target
    else:
        if action == "take":
            amount_taken = quantity or (inventory.dose_amount if inventory else None) or 1
            consumed = consume(inventory, amount_taken, at)

        if slot.resolved_cycle is not None and cycle < slot.resolved_cycle:
            # late entry for an older cycle: logged, but the slot keeps its newer marker
            updated = slot.model_copy(update=update)
            next_reminder_at = project(slots, now, recurrence).next_dose_at
        else:
            update.update(
                last_status=_LOG_STATUS[action],
                resolved_cycle=cycle,
                # one full cycle on from the scheduled time, not from `at`
                next_reminder_at=next_occurrence(slot.time_local, cycle, recurrence),
                delayed_until=None,
                taken_today=action == "take" and cycle.date() == at.date(),
            )
            if action == "take":
                update["last_taken_at"] = at
            updated = slot.model_copy(update=update)
            siblings = [updated if s.id == slot.id else s for s in slots]
            next_reminder_at = project(siblings, cycle, recurrence).next_dose_at

    entry = DoseLogEntry(
        id=_log_id(),
        medication_id=medication.id,
        slot_id=slot.id,
        scheduled_time=cycle,
        actual_action_time=None if action == "miss" else at,
        status=_LOG_STATUS[action],
        dosage_taken_amount=amount_taken,
        reason=reason,
        created_at=now,
    )

    logger.info(
        "Applied %s to %s slot %s (cycle %s); next reminder %s",
        action, medication.id, slot.id, cycle.isoformat(),
        next_reminder_at.isoformat() if next_reminder_at else None,
    )

    return ActionOutcome(
        action=action,
        updated_slot=updated,
        expected_version=slot.version,
        next_reminder_at=next_reminder_at,
        log_entry=entry,
        inventory_delta=consumed.delta,
        inventory=consumed,
    )

def reset_daily_status(slots: List[ScheduleSlot], now: datetime) -> List[ScheduleSlot]:
    """Clear taken_today on slots whose last resolved cycle is not today."""
    out: List[ScheduleSlot] = []
    for s in slots:
        stale = s.resolved_cycle is None or s.resolved_cycle.astimezone(now.tzinfo).date() != now.date()
        if s.taken_today and stale:
            out.append(s.model_copy(update={"taken_today": False, "version": s.version + 1}))
        else:
            out.append(s)
    return out
