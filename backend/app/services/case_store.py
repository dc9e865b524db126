import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app import settings
from app.services.record_filter import RecordFilter, is_identifier

logger = logging.getLogger(__name__)

CASES_TABLE = "cases"
BOOKINGS_TABLE = "consultation_bookings"
PROFILES_TABLE = "profiles"
SOAP_NOTES_TABLE = "soap_notes"


class CaseStoreError(ValueError):
    """Base class for errors raised by the case persistence layer."""


class CaseStoreValidationError(CaseStoreError):
    pass


class CaseStoreNotFoundError(CaseStoreError):
    pass


class CaseStoreUnavailableError(CaseStoreError):
    pass


class CaseStoreMissingTableError(CaseStoreError):
    def __init__(self, table: str) -> None:
        super().__init__(f"Table {table!r} does not exist")
        self.table = table


@dataclass
class CaseStore:
    db_path: str
    auto_migrate: bool = True
    seed_demo: bool = True

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        if self.auto_migrate:
            self._init_db()
        if self.seed_demo:
            self._seed_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cases (
                        id TEXT PRIMARY KEY,
                        case_number TEXT,
                        title TEXT NOT NULL DEFAULT '',
                        description TEXT NOT NULL DEFAULT '',
                        priority TEXT,
                        status TEXT NOT NULL DEFAULT 'new',
                        case_type TEXT,
                        pet_name TEXT,
                        customer_id TEXT,
                        assigned_nurse_id TEXT,
                        due_date TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS consultation_bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        provider_id TEXT,
                        pet_name TEXT NOT NULL,
                        consultation_type TEXT,
                        consultation_reason TEXT,
                        status TEXT NOT NULL DEFAULT 'pending',
                        triage_priority TEXT,
                        customer_name TEXT,
                        customer_email TEXT,
                        appointment_date TEXT,
                        appointment_time TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS profiles (
                        id TEXT PRIMARY KEY,
                        full_name TEXT,
                        email TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS soap_notes (
                        id TEXT PRIMARY KEY,
                        case_id TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'draft',
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.commit()

    def _seed_if_needed(self) -> None:
        now = datetime.now(timezone.utc)

        def ago(**delta: int) -> str:
            return (now - timedelta(**delta)).isoformat()

        seed_profiles = [
            ("cust_1", "Maya Chen", "maya.chen@example.com"),
            ("cust_2", "Tom Alvarez", "tom.alvarez@example.com"),
        ]
        seed_cases = [
            {
                "id": "case_1",
                "case_number": "VN-1001",
                "title": "Biscuit - persistent cough",
                "description": "Dry cough for five days, worse at night.",
                "priority": "serious",
                "status": "in_progress",
                "case_type": "Follow-up",
                "pet_name": "Biscuit",
                "customer_id": "cust_1",
                "assigned_nurse_id": "nurse_1",
                "due_date": (now + timedelta(days=1)).date().isoformat(),
                "created_at": ago(hours=30),
            },
            {
                "id": "case_2",
                "case_number": "VN-1002",
                "title": "Luna - post-op wound check",
                "description": "Owner reports redness around spay incision.",
                "priority": None,
                "status": "new",
                "case_type": "Health Check",
                "pet_name": "Luna",
                "customer_id": "cust_2",
                "assigned_nurse_id": None,
                "due_date": None,
                "created_at": ago(minutes=45),
            },
            {
                "id": "case_3",
                "case_number": "VN-1003",
                "title": "Pepper - itchy ears",
                "description": "Scratching at both ears, mild odour.",
                "priority": "mild",
                "status": "in_progress",
                "case_type": None,
                "pet_name": "Pepper",
                "customer_id": "cust_1",
                "assigned_nurse_id": "nurse_2",
                "due_date": None,
                "created_at": ago(days=3),
            },
        ]
        seed_bookings = [
            ("Milo", "Triage SOAP Review", "Vomiting since this morning", "pending", None, "Jess Park", "jess@example.com", 2),
            ("Rex", "Triage Consultation", "Ate a chocolate bar", "confirmed", "emergency", "Sam Ortiz", "sam@example.com", 1),
            ("Bella", "Mobile Consultation", "", "confirmed", None, "Priya Das", "priya@example.com", 5),
            ("Coco", "Health Check", "Annual check", "pending", None, "Liam Ng", "liam@example.com", 8),
            ("Ziggy", "Triage Consultation", "Limping", "cancelled", None, "Ava Stone", "ava@example.com", 12),
        ]

        with self._lock:
            with self._connect() as conn:
                try:
                    case_count = conn.execute("SELECT COUNT(*) AS total FROM cases").fetchone()["total"]
                    booking_count = conn.execute("SELECT COUNT(*) AS total FROM consultation_bookings").fetchone()["total"]
                except sqlite3.OperationalError:
                    logger.warning("Skipping case seed data: schema is not installed")
                    return
                if case_count or booking_count:
                    return

                conn.executemany(
                    "INSERT OR IGNORE INTO profiles (id, full_name, email) VALUES (?, ?, ?)",
                    seed_profiles,
                )
                for row in seed_cases:
                    conn.execute(
                        """
                        INSERT INTO cases (
                            id, case_number, title, description, priority, status, case_type, pet_name,
                            customer_id, assigned_nurse_id, due_date, created_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            row["id"],
                            row["case_number"],
                            row["title"],
                            row["description"],
                            row["priority"],
                            row["status"],
                            row["case_type"],
                            row["pet_name"],
                            row["customer_id"],
                            row["assigned_nurse_id"],
                            row["due_date"],
                            row["created_at"],
                            row["created_at"],
                        ),
                    )
                conn.execute(
                    "INSERT INTO soap_notes (id, case_id, status, created_at) VALUES (?, ?, ?, ?)",
                    ("soap_1", "case_1", "final", ago(hours=20)),
                )
                for pet_name, consultation_type, reason, status, triage_priority, customer, email, hours in seed_bookings:
                    created_at = ago(hours=hours)
                    conn.execute(
                        """
                        INSERT INTO consultation_bookings (
                            pet_name, consultation_type, consultation_reason, status, triage_priority,
                            customer_name, customer_email, appointment_date, appointment_time, created_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            pet_name,
                            consultation_type,
                            reason or None,
                            status,
                            triage_priority,
                            customer,
                            email,
                            (now + timedelta(days=1)).date().isoformat(),
                            "10:00",
                            created_at,
                            created_at,
                        ),
                    )
                conn.commit()

    async def ping(self) -> None:
        await asyncio.to_thread(self._ping_sync)

    async def fetch(self, table: str, record_filter: Optional[RecordFilter] = None) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetch_sync, table, record_filter or RecordFilter())

    async def update(self, table: str, record_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._update_sync, table, record_id, dict(changes))

    def _ping_sync(self) -> None:
        with self._lock:
            try:
                with self._connect() as conn:
                    conn.execute("SELECT 1").fetchone()
            except sqlite3.Error as exc:
                raise CaseStoreUnavailableError(f"Case database unavailable: {exc}") from exc

    def _fetch_sync(self, table: str, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        self._assert_identifiers([table, *record_filter.columns])
        clause, params = record_filter.to_sql()
        with self._lock:
            try:
                with self._connect() as conn:
                    rows = conn.execute(f"SELECT * FROM {table} WHERE {clause} ORDER BY rowid", params).fetchall()
            except sqlite3.Error as exc:
                raise self._translate_error(table, exc) from exc
        return [dict(row) for row in rows]

    def _update_sync(self, table: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        if not changes:
            raise CaseStoreValidationError("No changes supplied")
        self._assert_identifiers([table, *changes.keys()])
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._lock:
            try:
                with self._connect() as conn:
                    cursor = conn.execute(
                        f"UPDATE {table} SET {assignments} WHERE id = ?",
                        (*changes.values(), record_id),
                    )
                    if cursor.rowcount == 0:
                        raise CaseStoreNotFoundError(f"{table} record {record_id} not found")
                    conn.commit()
                    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
            except sqlite3.Error as exc:
                raise self._translate_error(table, exc) from exc
        return dict(row)

    def _assert_identifiers(self, names: Iterable[str]) -> None:
        for name in names:
            if not is_identifier(name):
                raise CaseStoreValidationError(f"Invalid identifier: {name!r}")

    def _translate_error(self, table: str, exc: sqlite3.Error) -> CaseStoreError:
        message = str(exc)
        if "no such table" in message:
            return CaseStoreMissingTableError(table)
        if "unable to open database" in message:
            return CaseStoreUnavailableError(f"Case database unavailable: {message}")
        return CaseStoreError(message)


case_store = CaseStore(
    db_path=settings.cases_db_path(),
    auto_migrate=settings.read_bool_env("CASES_DB_AUTO_MIGRATE", True),
    seed_demo=settings.read_bool_env("CASES_SEED_DEMO", True),
)
