from datetime import date, datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

Action = Literal["take", "miss", "skip", "delay"]
SlotState = Literal["pending", "taken", "missed", "skipped"]
LogStatus = Literal["taken", "missed", "skipped", "delayed"]
DoseStatus = Literal["upcoming", "due", "overdue", "taken", "missed", "skipped"]
RecurrenceUnit = Literal["day", "week", "month"]
Channel = Literal["email", "sms", "esp32_http", "mqtt"]
Urgency = Literal["normal", "high"]
MessageKind = Literal["REMINDER", "TAKEN", "MISSED", "SKIPPED", "DELAYED", "LOW_STOCK", "DEPLETED"]

ACTIONS = ("take", "miss", "skip", "delay")

# ---------------------------
# Frequency
# ---------------------------

class IntervalSpec(BaseModel):
    times_per_day: int
    # derived as 24 / times_per_day when omitted
    hours_per_interval: Optional[float] = None

class PeriodicSpec(BaseModel):
    unit: RecurrenceUnit
    count: int = 1

class FrequencySpec(BaseModel):
    """Exactly one of the three variants is populated (checked by validate_spec)."""
    fixed_times: Optional[List[str]] = None
    interval: Optional[IntervalSpec] = None
    periodic: Optional[PeriodicSpec] = None

    @property
    def variant(self) -> Optional[str]:
        populated = [n for n in ("fixed_times", "interval", "periodic") if getattr(self, n) is not None]
        return populated[0] if len(populated) == 1 else None

class Recurrence(BaseModel):
    unit: RecurrenceUnit = "day"
    count: int = 1
    anchor: Optional[date] = None  # first occurrence date; None => every day

DAILY = Recurrence()

# ---------------------------
# Stored records
# ---------------------------

class Medication(BaseModel):
    id: str
    user_id: str
    name: str
    dosage: str
    instructions: Optional[str] = None
    frequency: FrequencySpec
    first_dose_time: str = "08:00"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    with_food: bool = False
    active: bool = True
    timezone: str = "UTC"
    created_at: Optional[datetime] = None

class ScheduleSlot(BaseModel):
    id: str
    medication_id: str
    time_local: str  # "HH:MM"
    taken_today: bool = False
    last_taken_at: Optional[datetime] = None
    last_status: SlotState = "pending"
    next_reminder_at: Optional[datetime] = None
    # scheduled time of the last cycle resolved by take/miss/skip
    resolved_cycle: Optional[datetime] = None
    delayed_until: Optional[datetime] = None
    reason: Optional[str] = None
    version: int = 0

class InventoryRecord(BaseModel):
    medication_id: str
    current_quantity: float = Field(0, ge=0)
    dose_amount: Optional[float] = None
    refill_threshold: Optional[float] = None
    refill_alert_sent: bool = False
    unit: Optional[str] = None
    last_refill_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

class DoseLogEntry(BaseModel):
    id: str
    medication_id: str
    slot_id: Optional[str] = None
    scheduled_time: datetime
    actual_action_time: Optional[datetime] = None
    status: LogStatus
    dosage_taken_amount: Optional[float] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

class NotificationPreferences(BaseModel):
    channels: List[Channel] = Field(default_factory=lambda: ["email"])
    email: Optional[str] = None
    phone_number: Optional[str] = None
    device_id: Optional[str] = None
    mqtt_topic: str = "medication/reminders"
    confirm_taken: bool = True
    missed_dose: bool = True
    skipped_dose: bool = True
    delayed_dose: bool = True
    refill_alerts: bool = True

# ---------------------------
# Engine results
# ---------------------------

class SlotStatusView(BaseModel):
    slot_id: str
    time_local: str
    scheduled_at: Optional[datetime] = None
    status: DoseStatus

class Projection(BaseModel):
    next_dose_at: Optional[datetime] = None
    most_recent_slot: Optional[ScheduleSlot] = None
    is_overdue: bool = False
    status: DoseStatus = "upcoming"
    slot_statuses: List[SlotStatusView] = Field(default_factory=list)

class ConsumeResult(BaseModel):
    record: Optional[InventoryRecord] = None
    new_quantity: Optional[float] = None
    crossed_threshold: bool = False
    depleted: bool = False
    delta: float = 0

class RefillResult(BaseModel):
    record: InventoryRecord
    new_quantity: float

class ActionOutcome(BaseModel):
    action: Action
    updated_slot: ScheduleSlot
    expected_version: int
    next_reminder_at: Optional[datetime] = None
    log_entry: Optional[DoseLogEntry] = None
    inventory_delta: float = 0
    inventory: ConsumeResult = Field(default_factory=ConsumeResult)
    replayed: bool = False

class StreakSummary(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    adherence_rate: float = 0.0
    window_days: int = 30
    taken: int = 0
    missed: int = 0
    skipped: int = 0
    delayed: int = 0
    total_doses: int = 0
    days_with_perfect_adherence: int = 0
    last_taken_at: Optional[datetime] = None
    avg_delay_minutes: Optional[float] = None
    consistency_score: float = 0.0
    recent_adherence_rate: float = 0.0

class RenderedMessage(BaseModel):
    kind: MessageKind
    medication_id: str
    medication_name: str
    dosage: str
    instructions: Optional[str] = None
    urgency: Urgency = "normal"
    scheduled_time: Optional[str] = None
    text: str

class DispatchResult(BaseModel):
    success: bool
    channel: Optional[Channel] = None
    error: Optional[str] = None

class DueReminder(BaseModel):
    medication_id: str
    slot_id: Optional[str] = None
    due_at: datetime
    status: DoseStatus
    urgency: Urgency = "normal"
    message: RenderedMessage
    # per-channel failures when the reminder was sent
    warnings: List[str] = Field(default_factory=list)

# ---------------------------
# API payloads
# ---------------------------

class InventoryInput(BaseModel):
    current_quantity: float = Field(..., ge=0)
    dose_amount: Optional[float] = Field(default=None, gt=0)
    refill_threshold: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None

class MedicationCreateRequest(BaseModel):
    user_id: str
    name: str
    dosage: str
    instructions: Optional[str] = None
    frequency: FrequencySpec
    first_dose_time: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    with_food: bool = False
    timezone: str = "UTC"
    inventory: Optional[InventoryInput] = None

class FrequencyUpdateRequest(BaseModel):
    frequency: FrequencySpec
    first_dose_time: Optional[str] = None

class MedicationDetail(BaseModel):
    medication: Medication
    slots: List[ScheduleSlot]
    inventory: Optional[InventoryRecord] = None

class ActionRequest(BaseModel):
    medication_id: str
    action: str  # validated by the engine so unknown values map to a domain error
    slot_id: Optional[str] = None
    reason: Optional[str] = None
    quantity: Optional[float] = None
    delay_minutes: Optional[int] = None
    action_time_iso: Optional[str] = None  # ISO8601 with timezone

class ActionResponse(BaseModel):
    medication_id: str
    action: Action
    slot: ScheduleSlot
    next_reminder_at: Optional[datetime] = None
    log_entry: Optional[DoseLogEntry] = None
    inventory_status: Optional[Literal["below_threshold", "depleted"]] = None
    current_quantity: Optional[float] = None
    replayed: bool = False
    warnings: List[str] = Field(default_factory=list)

class RefillRequest(BaseModel):
    quantity: float
    notes: Optional[str] = None

class StatusResponse(BaseModel):
    medication_id: str
    status: DoseStatus
    next_dose_at: Optional[datetime] = None
    is_overdue: bool = False
    most_recent_slot_id: Optional[str] = None
    slots: List[SlotStatusView] = Field(default_factory=list)
    days_of_supply: Optional[float] = None
    needs_refill: bool = False
