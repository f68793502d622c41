import pytest

from app.core.errors import ConflictError, MedicationNotFoundError
from app.schemas.models import DoseLogEntry, NotificationPreferences
from conftest import at, make_inventory, make_medication, make_slots


@pytest.fixture
def seeded(store):
    med = make_medication()
    store.add_medication(med, make_slots(["22:00", "06:00", "14:00"]), make_inventory())
    return store


def _log(log_id, hour, status="taken"):
    return DoseLogEntry(id=log_id, medication_id="med_1", slot_id="slot_0", scheduled_time=at(hour, 0),
                        actual_action_time=at(hour, 5), status=status)


def test_medication_round_trip(seeded):
    med = seeded.get_medication("med_1")
    assert med == make_medication()
    assert med.frequency.interval.times_per_day == 2


def test_missing_medication(store):
    with pytest.raises(MedicationNotFoundError):
        store.get_medication("nope")


def test_slots_keep_cycle_order(seeded):
    assert [s.time_local for s in seeded.list_slots("med_1")] == ["22:00", "06:00", "14:00"]


def test_update_slot_checks_version(seeded):
    slot = seeded.list_slots("med_1")[0]
    updated = slot.model_copy(update={"last_status": "taken", "resolved_cycle": at(22, 0), "version": 1})
    seeded.update_slot(updated, expected_version=0)
    assert seeded.list_slots("med_1")[0] == updated
    with pytest.raises(ConflictError):
        seeded.update_slot(updated.model_copy(update={"version": 2}), expected_version=0)


def test_transaction_rolls_back(seeded):
    with pytest.raises(RuntimeError):
        with seeded.transaction():
            seeded.append_log(_log("log_1", 8))
            raise RuntimeError("boom")
    assert seeded.list_logs("med_1") == []


def test_inventory_upsert(seeded):
    inv = seeded.get_inventory("med_1")
    assert inv.current_quantity == 10
    seeded.upsert_inventory(inv.model_copy(update={"current_quantity": 4, "refill_alert_sent": True}))
    inv = seeded.get_inventory("med_1")
    assert inv.current_quantity == 4
    assert inv.refill_alert_sent is True


def test_logs_newest_first(seeded):
    seeded.append_log(_log("log_1", 8))
    seeded.append_log(_log("log_2", 20, status="missed"))
    logs = seeded.list_logs("med_1")
    assert [e.id for e in logs] == ["log_2", "log_1"]
    assert logs[1].actual_action_time == at(8, 5)
    assert [e.id for e in seeded.list_logs("med_1", since=at(12, 0))] == ["log_2"]


def test_hard_delete_cascades(seeded):
    seeded.append_log(_log("log_1", 8))
    seeded.delete_medication("med_1")
    assert seeded.list_slots("med_1") == []
    assert seeded.get_inventory("med_1") is None
    assert seeded.list_logs("med_1") == []
    with pytest.raises(MedicationNotFoundError):
        seeded.delete_medication("med_1")


def test_soft_delete_deactivates(seeded):
    seeded.delete_medication("med_1", hard=False)
    assert seeded.list_medications() == []
    assert seeded.list_medications(active_only=False)[0].active is False
    assert len(seeded.list_slots("med_1")) == 3


def test_list_filters_by_user(seeded):
    seeded.add_medication(make_medication(med_id="med_2", user_id="user_2", name="Aspirin"), [])
    assert [m.id for m in seeded.list_medications()] == ["med_2", "med_1"]
    assert [m.id for m in seeded.list_medications(user_id="user_1")] == ["med_1"]


def test_preferences(store):
    assert store.get_preferences("user_1") == NotificationPreferences()
    prefs = NotificationPreferences(channels=["sms"], phone_number="+15550100", missed_dose=False)
    store.set_preferences("user_1", prefs)
    assert store.get_preferences("user_1") == prefs
