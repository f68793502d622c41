from datetime import date

import pytest

from app.core.errors import ConflictError, InactiveMedicationError, MedicationNotFoundError, ValidationError
from app.schemas.models import (
    ActionRequest,
    FrequencySpec,
    FrequencyUpdateRequest,
    IntervalSpec,
    InventoryInput,
    MedicationCreateRequest,
    NotificationPreferences,
    RefillRequest,
)
from app.services.medication_service import MedicationService
from conftest import FixedClock, RecordingDispatcher, at


def create_request(**overrides):
    data = dict(
        user_id="user_1",
        name="Metformin",
        dosage="500mg",
        frequency=FrequencySpec(interval=IntervalSpec(times_per_day=2)),
        first_dose_time="08:00",
        inventory=InventoryInput(current_quantity=10, dose_amount=2, refill_threshold=4),
    )
    data.update(overrides)
    return MedicationCreateRequest(**data)


@pytest.fixture
def svc(store, dispatcher, clock):
    service = MedicationService(store, dispatcher, clock=clock)
    service.set_preferences("user_1", NotificationPreferences(channels=["email"], email="a@example.com"))
    return service


@pytest.fixture
def med_id(svc):
    return svc.create_medication(create_request()).medication.id


class TestCreate:
    def test_builds_slots_and_inventory(self, svc):
        detail = svc.create_medication(create_request())
        assert [s.time_local for s in detail.slots] == ["08:00", "20:00"]
        assert detail.inventory.current_quantity == 10
        assert detail.medication.created_at == at(8, 0)
        assert svc.get_detail(detail.medication.id) == detail

    def test_fixed_times_set_first_dose(self, svc):
        detail = svc.create_medication(create_request(
            frequency=FrequencySpec(fixed_times=["21:00", "09:30"]), first_dose_time=None, inventory=None,
        ))
        assert detail.medication.first_dose_time == "09:30"
        assert [s.time_local for s in detail.slots] == ["09:30", "21:00"]
        assert detail.inventory is None

    @pytest.mark.parametrize("overrides", [
        {"timezone": "Mars/Olympus_Mons"},
        {"start_date": date(2025, 3, 10), "end_date": date(2025, 3, 1)},
        {"frequency": FrequencySpec(interval=IntervalSpec(times_per_day=30))},
        {"first_dose_time": "8 o'clock"},
    ])
    def test_rejects_bad_input(self, svc, store, overrides):
        with pytest.raises(ValidationError):
            svc.create_medication(create_request(**overrides))
        assert store.list_medications(active_only=False) == []


class TestRecordAction:
    def test_take_persists_everything(self, svc, store, dispatcher, clock, med_id):
        clock.now = at(8, 2)
        resp = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert resp.action == "take"
        assert resp.next_reminder_at == at(20, 0)
        assert resp.current_quantity == 8
        assert resp.inventory_status is None
        assert resp.warnings == []
        assert store.list_slots(med_id)[0].last_status == "taken"
        assert len(store.list_logs(med_id)) == 1
        assert store.get_inventory(med_id).current_quantity == 8
        assert dispatcher.kinds == ["TAKEN"]

    def test_replay_changes_nothing(self, svc, store, dispatcher, clock, med_id):
        clock.now = at(8, 2)
        first = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        clock.now = at(8, 3)
        again = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert again.replayed is True
        assert again.log_entry == first.log_entry
        assert again.current_quantity == 8
        assert len(store.list_logs(med_id)) == 1
        assert dispatcher.kinds == ["TAKEN"]

    def test_late_entry_then_retry_consumes_once(self, svc, store, clock, med_id):
        clock.now = at(8, 2)
        svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        clock.now = at(8, 5)
        late = svc.record_action(ActionRequest(
            medication_id=med_id, action="take", action_time_iso="2025-02-28T08:00:00Z",
        ))
        assert late.current_quantity == 6
        assert store.list_slots(med_id)[0].resolved_cycle == at(8, 0)

        clock.now = at(8, 6)
        retry = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert retry.replayed is True
        assert retry.current_quantity == 6
        assert [e.scheduled_time for e in store.list_logs(med_id)] == [at(8, 0), at(8, 0, day=28, month=2)]

    def test_threshold_crossing_alerts(self, svc, dispatcher, clock, med_id):
        for now in (at(8, 0), at(20, 0), at(8, 0, day=2)):
            clock.now = now
            resp = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert resp.current_quantity == 4
        assert resp.inventory_status == "below_threshold"
        assert dispatcher.kinds.count("LOW_STOCK") == 1

    def test_dispatch_failure_is_only_a_warning(self, store, clock, med_id):
        svc = MedicationService(store, RecordingDispatcher(fail=True), clock=clock)
        clock.now = at(8, 2)
        resp = svc.record_action(ActionRequest(medication_id=med_id, action="miss"))
        assert resp.warnings and "relay down" in resp.warnings[0]
        assert store.list_slots(med_id)[0].last_status == "missed"

    def test_unexpected_dispatcher_error_is_only_a_warning(self, store, clock, med_id):
        svc = MedicationService(store, RecordingDispatcher(fail=True, error=RuntimeError), clock=clock)
        clock.now = at(8, 2)
        resp = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert resp.warnings == ["email: RuntimeError: email relay down"]
        assert store.list_slots(med_id)[0].last_status == "taken"
        assert store.get_inventory(med_id).current_quantity == 8

    def test_action_time_in_medication_zone(self, svc, store, clock):
        med_id = svc.create_medication(create_request(timezone="Asia/Kolkata", inventory=None)).medication.id
        clock.now = at(15, 0)
        resp = svc.record_action(ActionRequest(
            medication_id=med_id, action="take", action_time_iso="2025-03-01T02:35:00Z",
        ))
        # 08:05 in Kolkata
        assert resp.log_entry.scheduled_time == at(2, 30)
        assert resp.slot.time_local == "08:00"

    def test_conflict_is_retried(self, svc, store, clock, med_id, monkeypatch):
        original = store.update_slot
        calls = []

        def flaky(slot, expected_version):
            calls.append(slot.id)
            if len(calls) == 1:
                raise ConflictError(slot.id, expected_version)
            return original(slot, expected_version)

        monkeypatch.setattr(store, "update_slot", flaky)
        clock.now = at(8, 2)
        resp = svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert len(calls) == 2
        assert resp.replayed is False
        assert len(store.list_logs(med_id)) == 1

    def test_errors_leave_no_trace(self, svc, store, med_id):
        with pytest.raises(ValidationError):
            svc.record_action(ActionRequest(medication_id=med_id, action="take", quantity=-1))
        with pytest.raises(MedicationNotFoundError):
            svc.record_action(ActionRequest(medication_id="med_missing", action="take"))
        svc.delete_medication(med_id, hard=False)
        with pytest.raises(InactiveMedicationError):
            svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        assert store.list_logs(med_id) == []


class TestMaintenance:
    def test_update_frequency_rebuilds_slots(self, svc, store, med_id):
        detail = svc.update_frequency(med_id, FrequencyUpdateRequest(
            frequency=FrequencySpec(interval=IntervalSpec(times_per_day=3)),
        ))
        assert [s.time_local for s in detail.slots] == ["08:00", "16:00", "00:00"]
        assert store.get_medication(med_id).frequency.interval.times_per_day == 3
        assert len(store.list_slots(med_id)) == 3

    def test_refill(self, svc, med_id):
        assert svc.refill(med_id, RefillRequest(quantity=20)).current_quantity == 30
        with pytest.raises(ValidationError):
            svc.refill(med_id, RefillRequest(quantity=0))

    def test_refill_starts_tracking(self, svc):
        med_id = svc.create_medication(create_request(inventory=None)).medication.id
        record = svc.refill(med_id, RefillRequest(quantity=30))
        assert record.current_quantity == 30
        assert record.last_refill_at == at(8, 0)

    def test_reset_daily(self, svc, store, clock, med_id):
        clock.now = at(8, 2)
        svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        clock.now = at(0, 30, day=2)
        assert svc.reset_daily() == 1
        assert store.list_slots(med_id)[0].taken_today is False
        assert svc.reset_daily() == 0


class TestReadSide:
    def test_status(self, svc, clock, med_id):
        clock.now = at(8, 35)
        status = svc.status(med_id)
        assert status.status == "overdue"
        assert status.is_overdue
        assert status.next_dose_at == at(20, 0)
        assert status.days_of_supply == 2.5
        assert status.needs_refill is False

    def test_status_follows_stock(self, svc, clock, med_id):
        for now in (at(8, 0), at(20, 0), at(8, 0, day=2)):
            clock.now = now
            svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        status = svc.status(med_id)
        assert status.days_of_supply == 1.0
        assert status.needs_refill is True

    def test_streaks(self, svc, clock, med_id):
        for day in (1, 2):
            for hour in (8, 20):
                clock.now = at(hour, 1, day=day)
                svc.record_action(ActionRequest(medication_id=med_id, action="take"))
        summary = svc.streaks(med_id)
        assert summary.current_streak == 2
        assert summary.adherence_rate == 100.0
        with pytest.raises(ValidationError):
            svc.streaks(med_id, window_days=0)

    def test_streaks_read_only_the_window(self, svc, store, clock, med_id, monkeypatch):
        seen = []
        original = store.list_logs

        def recording(medication_id, since=None):
            seen.append(since)
            return original(medication_id, since=since)

        monkeypatch.setattr(store, "list_logs", recording)
        clock.now = at(12, 0, day=15)
        svc.streaks(med_id, window_days=7)
        assert seen == [at(12, 0, day=8)]

    def test_due_sends_reminders(self, svc, dispatcher, clock, med_id):
        clock.now = at(7, 50)
        due = svc.due(send=True)
        assert [r.medication_id for r in due] == [med_id]
        assert dispatcher.kinds == ["REMINDER"]
        assert svc.due(user_id="someone_else") == []
        assert due[0].warnings == []

    def test_due_reports_failed_sends(self, store, clock, med_id):
        svc = MedicationService(store, RecordingDispatcher(fail=True), clock=clock)
        clock.now = at(7, 50)
        due = svc.due(send=True)
        assert len(due) == 1
        assert due[0].warnings and "relay down" in due[0].warnings[0]
        assert svc.due()[0].warnings == []
