# app/db/store.py
"""SQLite-backed records for medications, slots, inventory and dose logs.

The core engine never talks to this module; the service layer reads records,
hands them to the engine and writes the results back inside one transaction.
Slot writes are conditional on the slot's version so a stale
read-modify-write is detected instead of silently overwriting.
"""
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from app.core.errors import ConflictError, MedicationNotFoundError
from app.core.settings import DB_PATH
from app.db.db_config import get_sqlite_connection
from app.schemas.models import DoseLogEntry, InventoryRecord, Medication, NotificationPreferences, ScheduleSlot

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS medications (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    dosage TEXT NOT NULL,
    instructions TEXT,
    frequency TEXT NOT NULL,
    first_dose_time TEXT NOT NULL,
    start_date TEXT,
    end_date TEXT,
    with_food INTEGER NOT NULL DEFAULT 0,
    active INTEGER NOT NULL DEFAULT 1,
    timezone TEXT NOT NULL DEFAULT 'UTC',
    created_at TEXT
);
CREATE TABLE IF NOT EXISTS schedule_slots (
    id TEXT PRIMARY KEY,
    medication_id TEXT NOT NULL REFERENCES medications(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    time_local TEXT NOT NULL,
    taken_today INTEGER NOT NULL DEFAULT 0,
    last_taken_at TEXT,
    last_status TEXT NOT NULL DEFAULT 'pending',
    next_reminder_at TEXT,
    resolved_cycle TEXT,
    delayed_until TEXT,
    reason TEXT,
    version INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS medication_inventory (
    medication_id TEXT PRIMARY KEY REFERENCES medications(id) ON DELETE CASCADE,
    current_quantity REAL NOT NULL,
    dose_amount REAL,
    refill_threshold REAL,
    refill_alert_sent INTEGER NOT NULL DEFAULT 0,
    unit TEXT,
    last_refill_at TEXT,
    last_updated TEXT
);
CREATE TABLE IF NOT EXISTS medication_logs (
    id TEXT PRIMARY KEY,
    medication_id TEXT NOT NULL REFERENCES medications(id) ON DELETE CASCADE,
    slot_id TEXT,
    scheduled_time TEXT NOT NULL,
    actual_action_time TEXT,
    status TEXT NOT NULL,
    dosage_taken_amount REAL,
    reason TEXT,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_logs_med_time ON medication_logs (medication_id, scheduled_time);
CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id TEXT PRIMARY KEY,
    prefs TEXT NOT NULL
);
"""

_SLOT_COLUMNS = (
    "id", "medication_id", "time_local", "taken_today", "last_taken_at", "last_status",
    "next_reminder_at", "resolved_cycle", "delayed_until", "reason", "version",
)

def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}

def _med_from_row(row: sqlite3.Row) -> Medication:
    d = _row_to_dict(row)
    d["frequency"] = json.loads(d["frequency"])
    return Medication.model_validate(d)

class MedicationStore:
    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = get_sqlite_connection(self.db_path)
            self._conn.executescript(SCHEMA)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One writer at a time; rolls back on any exception."""
        with self._lock:
            conn = self.conn
            if conn.in_transaction:
                # nested use joins the outer transaction
                yield conn
                return
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _insert(self, table: str, data: Dict[str, Any]) -> None:
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        with self._lock:
            self.conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", tuple(data.values()))

    def _fetchall(self, sql: str, *params: Any) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, *params: Any) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    # ---------------------------
    # medications
    # ---------------------------

    def add_medication(self, med: Medication, slots: List[ScheduleSlot], inventory: Optional[InventoryRecord] = None) -> None:
        with self.transaction():
            data = med.model_dump(mode="json")
            data["frequency"] = json.dumps(data["frequency"])
            self._insert("medications", data)
            self._insert_slots(slots)
            if inventory is not None:
                self.upsert_inventory(inventory)

    def get_medication(self, medication_id: str) -> Medication:
        row = self._fetchone("SELECT * FROM medications WHERE id = ?", medication_id)
        if row is None:
            raise MedicationNotFoundError(f"Medication {medication_id} not found")
        return _med_from_row(row)

    def list_medications(self, user_id: Optional[str] = None, active_only: bool = True) -> List[Medication]:
        conditions, params = [], []
        if user_id is not None:
            conditions.append("user_id = ?")
            params.append(user_id)
        if active_only:
            conditions.append("active = 1")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self._fetchall(f"SELECT * FROM medications {where} ORDER BY name", *params)
        return [_med_from_row(r) for r in rows]

    def update_medication(self, med: Medication) -> None:
        data = med.model_dump(mode="json")
        data["frequency"] = json.dumps(data["frequency"])
        med_id = data.pop("id")
        assignments = ", ".join(f"{k} = ?" for k in data)
        with self._lock:
            cur = self.conn.execute(
                f"UPDATE medications SET {assignments} WHERE id = ?", (*data.values(), med_id)
            )
        if cur.rowcount == 0:
            raise MedicationNotFoundError(f"Medication {med_id} not found")

    def delete_medication(self, medication_id: str, hard: bool = True) -> None:
        """Hard delete cascades to slots, inventory and logs; soft delete deactivates."""
        with self.transaction() as conn:
            if hard:
                cur = conn.execute("DELETE FROM medications WHERE id = ?", (medication_id,))
            else:
                cur = conn.execute("UPDATE medications SET active = 0 WHERE id = ?", (medication_id,))
        if cur.rowcount == 0:
            raise MedicationNotFoundError(f"Medication {medication_id} not found")
        logger.info("Deleted medication %s (hard=%s)", medication_id, hard)

    # ---------------------------
    # slots
    # ---------------------------

    def _insert_slots(self, slots: List[ScheduleSlot]) -> None:
        for position, slot in enumerate(slots):
            data = slot.model_dump(mode="json")
            data["position"] = position
            self._insert("schedule_slots", data)

    def list_slots(self, medication_id: str) -> List[ScheduleSlot]:
        rows = self._fetchall(
            f"SELECT {', '.join(_SLOT_COLUMNS)} FROM schedule_slots WHERE medication_id = ? ORDER BY position",
            medication_id,
        )
        return [ScheduleSlot.model_validate(_row_to_dict(r)) for r in rows]

    def replace_slots(self, medication_id: str, slots: List[ScheduleSlot]) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM schedule_slots WHERE medication_id = ?", (medication_id,))
            self._insert_slots(slots)

    def update_slot(self, slot: ScheduleSlot, expected_version: int) -> None:
        """Write the slot only if nobody else moved its version since we read it."""
        data = slot.model_dump(mode="json")
        slot_id = data.pop("id")
        data.pop("medication_id")
        assignments = ", ".join(f"{k} = ?" for k in data)
        with self._lock:
            cur = self.conn.execute(
                f"UPDATE schedule_slots SET {assignments} WHERE id = ? AND version = ?",
                (*data.values(), slot_id, expected_version),
            )
        if cur.rowcount == 0:
            raise ConflictError(slot_id, expected_version)

    # ---------------------------
    # inventory
    # ---------------------------

    def get_inventory(self, medication_id: str) -> Optional[InventoryRecord]:
        row = self._fetchone("SELECT * FROM medication_inventory WHERE medication_id = ?", medication_id)
        return InventoryRecord.model_validate(_row_to_dict(row)) if row else None

    def upsert_inventory(self, record: InventoryRecord) -> None:
        data = record.model_dump(mode="json")
        cols = ", ".join(data)
        marks = ", ".join("?" for _ in data)
        updates = ", ".join(f"{k} = excluded.{k}" for k in data if k != "medication_id")
        with self._lock:
            self.conn.execute(
                f"INSERT INTO medication_inventory ({cols}) VALUES ({marks}) "
                f"ON CONFLICT(medication_id) DO UPDATE SET {updates}",
                tuple(data.values()),
            )

    # ---------------------------
    # logs
    # ---------------------------

    def append_log(self, entry: DoseLogEntry) -> None:
        self._insert("medication_logs", entry.model_dump(mode="json"))

    def list_logs(self, medication_id: str, since: Optional[datetime] = None) -> List[DoseLogEntry]:
        """Newest first."""
        rows = self._fetchall(
            "SELECT * FROM medication_logs WHERE medication_id = ? ORDER BY scheduled_time DESC",
            medication_id,
        )
        entries = [DoseLogEntry.model_validate(_row_to_dict(r)) for r in rows]
        if since is not None:
            entries = [e for e in entries if e.scheduled_time >= since]
        return entries

    # ---------------------------
    # preferences
    # ---------------------------

    def get_preferences(self, user_id: str) -> NotificationPreferences:
        row = self._fetchone("SELECT prefs FROM notification_preferences WHERE user_id = ?", user_id)
        if row is None:
            return NotificationPreferences()
        return NotificationPreferences.model_validate(json.loads(row["prefs"]))

    def set_preferences(self, user_id: str, prefs: NotificationPreferences) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO notification_preferences (user_id, prefs) VALUES (?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET prefs = excluded.prefs",
                (user_id, prefs.model_dump_json()),
            )
