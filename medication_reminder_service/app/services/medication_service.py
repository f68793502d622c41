# app/services/medication_service.py
"""Read-modify-write orchestration between the store and the pure engine.

Every status transition runs in one store transaction: slot, log entry and
inventory are written together or not at all. Notifications go out after the
commit and can only add warnings to the result.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from app.core.errors import ConflictError, ValidationError
from app.core.settings import DEFAULT_FIRST_DOSE_TIME, DEFAULT_WINDOW_DAYS
from app.db.store import MedicationStore
from app.schemas.models import (
    ActionRequest,
    ActionResponse,
    DueReminder,
    FrequencySpec,
    FrequencyUpdateRequest,
    InventoryRecord,
    Medication,
    MedicationCreateRequest,
    MedicationDetail,
    NotificationPreferences,
    RefillRequest,
    ScheduleSlot,
    StatusResponse,
    StreakSummary,
)
from app.services.adherence import compute_streaks
from app.services.frequency import doses_per_day, expand_to_slots, recurrence_for, validate_spec
from app.services.inventory import days_of_supply, needs_refill, refill
from app.services.notifications import NotificationDispatcher, NullDispatcher, broadcast, notify_for_action
from app.services.projector import project
from app.services.reminders import due_reminders
from app.services.status_engine import apply_action, reset_daily_status
from app.utils.time_utils import hhmm_to_minutes, parse_iso, to_zone, utcnow

logger = logging.getLogger(__name__)

def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"

def _first_dose_time(spec: FrequencySpec, requested: Optional[str]) -> str:
    if spec.fixed_times:
        return min(spec.fixed_times, key=hhmm_to_minutes)
    first = requested or DEFAULT_FIRST_DOSE_TIME
    hhmm_to_minutes(first)  # validates
    return first

def _build_slots(medication_id: str, spec: FrequencySpec, first_dose_time: str) -> List[ScheduleSlot]:
    return [
        ScheduleSlot(id=_new_id("slot"), medication_id=medication_id, time_local=t)
        for t in expand_to_slots(spec, first_dose_time)
    ]

def _inventory_status(record: Optional[InventoryRecord]) -> Optional[str]:
    if record is None:
        return None
    if record.current_quantity == 0:
        return "depleted"
    return "below_threshold" if needs_refill(record) else None

class MedicationService:
    def __init__(
        self,
        store: MedicationStore,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher or NullDispatcher()
        self.clock = clock

    # ---------------------------
    # medications
    # ---------------------------

    def create_medication(self, req: MedicationCreateRequest) -> MedicationDetail:
        now = self.clock()
        validate_spec(req.frequency)
        to_zone(now, req.timezone)  # rejects unknown zones
        if req.start_date and req.end_date and req.end_date < req.start_date:
            raise ValidationError("end_date is before start_date")

        med = Medication(
            id=_new_id("med"),
            user_id=req.user_id,
            name=req.name,
            dosage=req.dosage,
            instructions=req.instructions,
            frequency=req.frequency,
            first_dose_time=_first_dose_time(req.frequency, req.first_dose_time),
            start_date=req.start_date,
            end_date=req.end_date,
            with_food=req.with_food,
            timezone=req.timezone,
            created_at=now,
        )
        slots = _build_slots(med.id, med.frequency, med.first_dose_time)

        inventory = None
        if req.inventory is not None:
            inventory = InventoryRecord(
                medication_id=med.id,
                current_quantity=req.inventory.current_quantity,
                dose_amount=req.inventory.dose_amount,
                refill_threshold=req.inventory.refill_threshold,
                unit=req.inventory.unit,
                last_updated=now,
            )

        self.store.add_medication(med, slots, inventory)
        logger.info("Created medication %s (%s) with %d slots", med.id, med.name, len(slots))
        return MedicationDetail(medication=med, slots=slots, inventory=inventory)

    def get_detail(self, medication_id: str) -> MedicationDetail:
        return MedicationDetail(
            medication=self.store.get_medication(medication_id),
            slots=self.store.list_slots(medication_id),
            inventory=self.store.get_inventory(medication_id),
        )

    def list_medications(self, user_id: Optional[str] = None, active_only: bool = True) -> List[Medication]:
        return self.store.list_medications(user_id, active_only)

    def update_frequency(self, medication_id: str, req: FrequencyUpdateRequest) -> MedicationDetail:
        """Swap the frequency and rebuild the slots from scratch."""
        validate_spec(req.frequency)
        with self.store.transaction():
            med = self.store.get_medication(medication_id)
            first = _first_dose_time(req.frequency, req.first_dose_time or med.first_dose_time)
            med = med.model_copy(update={"frequency": req.frequency, "first_dose_time": first})
            slots = _build_slots(med.id, med.frequency, first)
            self.store.update_medication(med)
            self.store.replace_slots(med.id, slots)
        logger.info("Rescheduled medication %s to %d slots", med.id, len(slots))
        return MedicationDetail(medication=med, slots=slots, inventory=self.store.get_inventory(med.id))

    def delete_medication(self, medication_id: str, hard: bool = True) -> None:
        self.store.delete_medication(medication_id, hard=hard)

    # ---------------------------
    # status transitions
    # ---------------------------

    def _apply_and_persist(self, req: ActionRequest, now: datetime):
        with self.store.transaction():
            med = self.store.get_medication(req.medication_id)
            local_now = to_zone(now, med.timezone)
            at_time = to_zone(parse_iso(req.action_time_iso), med.timezone) if req.action_time_iso else None
            outcome = apply_action(
                med,
                self.store.list_slots(med.id),
                req.action,
                now=local_now,
                slot_id=req.slot_id,
                reason=req.reason,
                quantity=req.quantity,
                at_time=at_time,
                delay_minutes=req.delay_minutes,
                inventory=self.store.get_inventory(med.id),
                logs=self.store.list_logs(med.id),
            )
            if not outcome.replayed:
                self.store.update_slot(outcome.updated_slot, outcome.expected_version)
                self.store.append_log(outcome.log_entry)
                if outcome.inventory.record is not None:
                    self.store.upsert_inventory(outcome.inventory.record)
        return med, outcome

    def record_action(self, req: ActionRequest) -> ActionResponse:
        now = self.clock()
        try:
            med, outcome = self._apply_and_persist(req, now)
        except ConflictError as e:
            # someone resolved the cycle first; the re-read returns their result
            logger.info("Concurrent update on %s, re-reading", e.slot_id)
            med, outcome = self._apply_and_persist(req, now)

        warnings: List[str] = []
        if not outcome.replayed:
            prefs = self.store.get_preferences(med.user_id)
            scheduled = outcome.log_entry.scheduled_time if outcome.log_entry else None
            warnings = notify_for_action(self.dispatcher, prefs, med, outcome.action, scheduled, outcome.inventory)

        inventory = outcome.inventory.record or self.store.get_inventory(med.id)
        return ActionResponse(
            medication_id=med.id,
            action=outcome.action,
            slot=outcome.updated_slot,
            next_reminder_at=outcome.next_reminder_at,
            log_entry=outcome.log_entry,
            inventory_status=_inventory_status(inventory),
            current_quantity=inventory.current_quantity if inventory else None,
            replayed=outcome.replayed,
            warnings=warnings,
        )

    def refill(self, medication_id: str, req: RefillRequest) -> InventoryRecord:
        now = self.clock()
        with self.store.transaction():
            self.store.get_medication(medication_id)
            # a first refill starts tracking for medications created without stock
            record = self.store.get_inventory(medication_id) or InventoryRecord(medication_id=medication_id)
            result = refill(record, req.quantity, now)
            self.store.upsert_inventory(result.record)
        logger.info("Refilled %s by %s to %s", medication_id, req.quantity, result.new_quantity)
        return result.record

    def reset_daily(self) -> int:
        """Clear yesterday's taken_today flags; returns the number of slots touched."""
        now = self.clock()
        touched = 0
        for med in self.store.list_medications():
            local_now = to_zone(now, med.timezone)
            with self.store.transaction():
                slots = self.store.list_slots(med.id)
                for before, after in zip(slots, reset_daily_status(slots, local_now)):
                    if after is not before:
                        self.store.update_slot(after, before.version)
                        touched += 1
        logger.info("Daily reset cleared %d slots", touched)
        return touched

    # ---------------------------
    # read side
    # ---------------------------

    def status(self, medication_id: str) -> StatusResponse:
        med = self.store.get_medication(medication_id)
        now = to_zone(self.clock(), med.timezone)
        proj = project(self.store.list_slots(med.id), now, recurrence_for(med))
        inventory = self.store.get_inventory(med.id)
        return StatusResponse(
            medication_id=med.id,
            status=proj.status,
            next_dose_at=proj.next_dose_at,
            is_overdue=proj.is_overdue,
            most_recent_slot_id=proj.most_recent_slot.id if proj.most_recent_slot else None,
            slots=proj.slot_statuses,
            days_of_supply=days_of_supply(inventory, doses_per_day(med.frequency)),
            needs_refill=needs_refill(inventory),
        )

    def streaks(self, medication_id: str, window_days: int = DEFAULT_WINDOW_DAYS) -> StreakSummary:
        if window_days <= 0:
            raise ValidationError(f"window_days must be positive, got {window_days}")
        self.store.get_medication(medication_id)
        now = self.clock()
        logs = self.store.list_logs(medication_id, since=now - timedelta(days=window_days))
        return compute_streaks(logs, window_days, now=now)

    def due(self, user_id: Optional[str] = None, send: bool = False) -> List[DueReminder]:
        meds = self.store.list_medications(user_id)
        reminders = due_reminders([(m, self.store.list_slots(m.id)) for m in meds], self.clock())
        if send:
            owners = {m.id: m.user_id for m in meds}
            reminders = [
                r.model_copy(update={"warnings": broadcast(
                    self.dispatcher, self.store.get_preferences(owners[r.medication_id]), r.message,
                )})
                for r in reminders
            ]
        return reminders

    # ---------------------------
    # preferences
    # ---------------------------

    def get_preferences(self, user_id: str) -> NotificationPreferences:
        return self.store.get_preferences(user_id)

    def set_preferences(self, user_id: str, prefs: NotificationPreferences) -> NotificationPreferences:
        self.store.set_preferences(user_id, prefs)
        return prefs
