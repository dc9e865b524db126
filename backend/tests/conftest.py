import os
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# The app module builds its sqlite store at import time; keep test runs off the dev database.
os.environ.setdefault("CASES_DB_PATH", str(Path(tempfile.mkdtemp(prefix="casedesk-tests-")) / "cases.sqlite3"))
os.environ.setdefault("CASE_TELEMETRY_ENABLED", "false")

from app.models import Case  # noqa: E402
from app.services.case_sources import CaseSourceAdapter  # noqa: E402
from app.services.case_store import CaseStoreMissingTableError, CaseStoreNotFoundError  # noqa: E402
from app.services.record_filter import RecordFilter  # noqa: E402


class FakeCaseStore:
    """In-memory stand-in for CaseStore honouring the same fetch/update contract."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables = {name: [dict(row) for row in rows] for name, rows in (tables or {}).items()}
        self.missing_tables: set = set()
        self.fetch_errors: Dict[str, Exception] = {}
        self.update_error: Optional[Exception] = None
        self.ping_error: Optional[Exception] = None
        self.fetches: List[tuple] = []
        self.updates: List[tuple] = []

    async def ping(self) -> None:
        if self.ping_error:
            raise self.ping_error

    async def fetch(self, table: str, record_filter: Optional[RecordFilter] = None) -> List[Dict[str, Any]]:
        self.fetches.append((table, record_filter))
        if table in self.missing_tables:
            raise CaseStoreMissingTableError(table)
        if table in self.fetch_errors:
            raise self.fetch_errors[table]
        record_filter = record_filter or RecordFilter()
        return [dict(row) for row in self.tables.get(table, []) if record_filter.matches(row)]

    async def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        self.updates.append((table, record_id, dict(changes)))
        if self.update_error:
            raise self.update_error
        for row in self.tables.get(table, []):
            if str(row.get("id")) == str(record_id):
                row.update(changes)
                return dict(row)
        raise CaseStoreNotFoundError(f"{table} record {record_id} not found")


class StubAdapter(CaseSourceAdapter):
    """Adapter whose contribution is fixed up front; goes through the real ``load`` boundary."""

    def __init__(self, source: str, cases: Optional[List[Case]] = None, error: Optional[Exception] = None, hook=None):
        super().__init__(FakeCaseStore(), timeout_seconds=1.0)
        self.source = source
        self._cases = list(cases or [])
        self._error = error
        self._hook = hook

    async def fetch_rows(self, actor_id: str) -> List[Dict[str, Any]]:
        return []

    def to_case(self, record: Any) -> Case:
        raise NotImplementedError

    async def collect(self, actor_id: str) -> List[Case]:
        if self._hook:
            await self._hook()
        if self._error:
            raise self._error
        return list(self._cases)


def build_case(case_id: str, severity: str = "pending", source: str = "cases", **overrides: Any) -> Case:
    values: Dict[str, Any] = {
        "id": case_id,
        "case_number": overrides.pop("case_number", case_id.upper()),
        "title": overrides.pop("title", f"Case {case_id}"),
        "status": overrides.pop("status", "new"),
        "service_type": overrides.pop("service_type", "General Case"),
        "severity": severity,
        "source": source,
    }
    values.update(overrides)
    return Case(**values)


CASE_ROWS = [
    {
        "id": "c1",
        "case_number": "VN-1",
        "title": "Rufus - limping",
        "description": "Left hind leg, since yesterday",
        "priority": "emergency",
        "status": "in_progress",
        "case_type": "Follow-up",
        "pet_name": "Rufus",
        "customer_id": "p1",
        "assigned_nurse_id": "nurse_a",
        "due_date": "2026-10-21",
        "created_at": "2026-10-18T09:00:00+00:00",
        "updated_at": "2026-10-18T09:00:00+00:00",
    },
    {
        "id": "c2",
        "case_number": "VN-2",
        "title": "Nala - not eating",
        "description": "",
        "priority": None,
        "status": "new",
        "case_type": None,
        "pet_name": "Nala",
        "customer_id": None,
        "assigned_nurse_id": None,
        "created_at": "2026-10-19T08:00:00+00:00",
        "updated_at": "2026-10-19T08:00:00+00:00",
    },
    {
        "id": "c3",
        "case_number": "VN-3",
        "title": "Otis - rash",
        "priority": "mild",
        "status": "in_progress",
        "assigned_nurse_id": "nurse_b",
        "created_at": "2026-10-17T08:00:00+00:00",
        "updated_at": "2026-10-17T08:00:00+00:00",
    },
    {
        "id": "c4",
        "case_number": "VN-4",
        "title": "Moss - discharged",
        "priority": "serious",
        "status": "closed",
        "assigned_nurse_id": "nurse_a",
        "created_at": "2026-10-10T08:00:00+00:00",
        "updated_at": "2026-10-12T08:00:00+00:00",
    },
    {
        "id": "c5",
        "case_number": "VN-5",
        "title": "Juno - lethargic",
        "priority": "high",
        "status": "in_progress",
        "assigned_nurse_id": "nurse_a",
        "created_at": "2026-10-16T08:00:00+00:00",
        "updated_at": "2026-10-16T08:00:00+00:00",
    },
]

BOOKING_ROWS = [
    {
        "id": 1,
        "pet_name": "Milo",
        "consultation_type": "Triage SOAP Review",
        "consultation_reason": "Vomiting since this morning",
        "status": "pending",
        "triage_priority": None,
        "customer_name": "Jess Park",
        "customer_email": "jess@example.com",
        "appointment_date": "2026-10-20",
        "appointment_time": "09:30",
        "created_at": "2026-10-19T07:00:00+00:00",
        "updated_at": "2026-10-19T07:00:00+00:00",
    },
    {
        "id": 2,
        "pet_name": "Rex",
        "consultation_type": "Triage Consultation",
        "consultation_reason": None,
        "status": "confirmed",
        "triage_priority": "serious",
        "customer_name": "Sam Ortiz",
        "customer_email": "sam@example.com",
        "created_at": "2026-10-18T12:00:00+00:00",
        "updated_at": "2026-10-18T12:00:00+00:00",
    },
    {
        "id": 3,
        "pet_name": "Bella",
        "consultation_type": "Mobile Consultation",
        "consultation_reason": None,
        "status": "confirmed",
        "triage_priority": "emergency",
        "customer_name": "Priya Das",
        "created_at": "2026-10-15T12:00:00+00:00",
        "updated_at": "2026-10-15T12:00:00+00:00",
    },
    {
        "id": 4,
        "pet_name": "Coco",
        "consultation_type": None,
        "consultation_reason": "Annual check",
        "status": "pending",
        "customer_name": "Liam Ng",
        "created_at": "2026-10-14T12:00:00+00:00",
        "updated_at": "2026-10-14T12:00:00+00:00",
    },
    {
        "id": 5,
        "pet_name": "Ziggy",
        "consultation_type": "Triage Consultation",
        "status": "cancelled",
        "created_at": "2026-10-13T12:00:00+00:00",
        "updated_at": "2026-10-13T12:00:00+00:00",
    },
    {
        "id": 6,
        "pet_name": "Pip",
        "consultation_type": "Health Check",
        "status": "completed",
        "created_at": "2026-10-12T12:00:00+00:00",
        "updated_at": "2026-10-12T12:00:00+00:00",
    },
]


@pytest.fixture
def fake_store() -> FakeCaseStore:
    return FakeCaseStore(
        {
            "cases": CASE_ROWS,
            "consultation_bookings": BOOKING_ROWS,
            "profiles": [{"id": "p1", "full_name": "Maya Chen", "email": "maya@example.com"}],
            "soap_notes": [
                {"id": "s1", "case_id": "c1", "status": "draft"},
                {"id": "s2", "case_id": "c1", "status": "final"},
            ],
        }
    )


@pytest.fixture
def make_case():
    return build_case


@pytest.fixture
def stub_adapter():
    return StubAdapter
