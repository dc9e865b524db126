"""Source adapters that project native records into worklist cases.

Each adapter owns one record family, validates rows into its own record model
and maps them into ``Case``. Adapters never raise out of ``load``: a failing
source contributes an empty list plus the captured error, and the aggregator
decides what that means for the worklist.

Registered sources, in merge order:
  cases                 NativeCaseAdapter           (cases table, priority column)
  triage_booking        TriageBookingAdapter        (bookings with a triage consultation type)
  consultation_booking  ConsultationBookingAdapter  (every other active booking)
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel, ValidationError

from app import settings
from app.models import (
    BookingRecord,
    Case,
    ConsultationBookingRecord,
    NativeCaseRecord,
    NativeRecord,
    ProfileRecord,
    TriageBookingRecord,
)
from app.services.case_store import BOOKINGS_TABLE, CASES_TABLE, PROFILES_TABLE, SOAP_NOTES_TABLE
from app.services.record_filter import eq, in_, not_in, where
from app.services.triage import coerce_severity

logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = ("pending", "confirmed", "in_progress")
CASE_TERMINAL_STATUSES = ("closed", "completed", "cancelled", "resolved")


@dataclass
class AdapterOutcome:
    source: str
    cases: List[Case] = field(default_factory=list)
    error: Optional[Exception] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class CaseSourceAdapter(ABC):
    source: str = ""
    record_model: Type[BaseModel] = BaseModel

    def __init__(self, store: Any, *, timeout_seconds: Optional[float] = None) -> None:
        self.store = store
        self.timeout_seconds = timeout_seconds or settings.adapter_timeout_seconds()

    @abstractmethod
    async def fetch_rows(self, actor_id: str) -> List[Dict[str, Any]]:
        """Read the raw rows relevant to ``actor_id`` from the store."""

    @abstractmethod
    def to_case(self, record: NativeRecord) -> Case:
        """Project one validated native record into a ``Case``."""

    def parse_rows(self, rows: Sequence[Dict[str, Any]]) -> List[Any]:
        records = []
        for row in rows:
            try:
                records.append(self.record_model.model_validate(row))
            except ValidationError:
                logger.warning("Skipping malformed %s row id=%s", self.source, row.get("id"))
        return records

    async def collect(self, actor_id: str) -> List[Case]:
        records = self.parse_rows(await self.fetch_rows(actor_id))
        return [self.to_case(record) for record in records]

    async def load(self, actor_id: str) -> AdapterOutcome:
        started = time.perf_counter()
        try:
            cases = await asyncio.wait_for(self.collect(actor_id), timeout=self.timeout_seconds)
        except Exception as exc:
            logger.exception("Case source %s failed for actor %s", self.source, actor_id)
            return AdapterOutcome(source=self.source, error=exc, elapsed_ms=_elapsed_ms(started))
        return AdapterOutcome(source=self.source, cases=cases, elapsed_ms=_elapsed_ms(started))


class NativeCaseAdapter(CaseSourceAdapter):
    source = "cases"
    record_model = NativeCaseRecord

    async def fetch_rows(self, actor_id: str) -> List[Dict[str, Any]]:
        # Unassigned "new" cases form a shared pick-up queue visible to every nurse.
        return await self.store.fetch(
            CASES_TABLE,
            where(
                not_in("status", CASE_TERMINAL_STATUSES),
                any_of=(eq("assigned_nurse_id", actor_id), eq("status", "new")),
            ),
        )

    async def collect(self, actor_id: str) -> List[Case]:
        records: List[NativeCaseRecord] = self.parse_rows(await self.fetch_rows(actor_id))
        if not records:
            return []
        customers = await self._load_customers(records)
        soap_counts = await self._count_soap_notes(records)
        return [
            self.to_case(
                record,
                customer=customers.get(record.customer_id or ""),
                soap_note_count=soap_counts.get(record.id, 0),
            )
            for record in records
        ]

    async def _load_customers(self, records: List[NativeCaseRecord]) -> Dict[str, ProfileRecord]:
        customer_ids = sorted({record.customer_id for record in records if record.customer_id})
        if not customer_ids:
            return {}
        rows = await self.store.fetch(PROFILES_TABLE, where(in_("id", customer_ids)))
        profiles: Dict[str, ProfileRecord] = {}
        for row in rows:
            try:
                profile = ProfileRecord.model_validate(row)
            except ValidationError:
                logger.warning("Skipping malformed profile row id=%s", row.get("id"))
                continue
            profiles[profile.id] = profile
        return profiles

    async def _count_soap_notes(self, records: List[NativeCaseRecord]) -> Dict[str, int]:
        rows = await self.store.fetch(SOAP_NOTES_TABLE, where(in_("case_id", [record.id for record in records])))
        counts: Dict[str, int] = {}
        for row in rows:
            case_id = str(row.get("case_id"))
            counts[case_id] = counts.get(case_id, 0) + 1
        return counts

    def to_case(
        self,
        record: NativeCaseRecord,
        customer: Optional[ProfileRecord] = None,
        soap_note_count: int = 0,
    ) -> Case:
        service_type = record.case_type or "General Case"
        title = record.title or f"{record.pet_name or 'Unnamed pet'} - {service_type}"
        return Case(
            id=record.id,
            case_number=record.case_number or f"CASE-{record.id}",
            title=title,
            description=record.description or "",
            severity=coerce_severity(record.priority, source=self.source),
            status=record.status,
            source="cases",
            pet_name=record.pet_name,
            customer_name=customer.full_name if customer else None,
            customer_email=customer.email if customer else None,
            service_type=service_type,
            created_at=record.created_at,
            updated_at=record.updated_at,
            assigned_nurse_id=record.assigned_nurse_id,
            due_date=record.due_date,
            soap_note_count=soap_note_count,
        )


class BookingSourceAdapter(CaseSourceAdapter):
    """Shared plumbing for the two adapters reading the consultation bookings table."""

    def __init__(
        self,
        store: Any,
        *,
        triage_types: Optional[Sequence[str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(store, timeout_seconds=timeout_seconds)
        self.triage_types = tuple(triage_types or settings.triage_consultation_types())

    def _booking_fields(self, record: BookingRecord) -> Dict[str, Any]:
        return {
            "pet_name": record.pet_name,
            "customer_name": record.customer_name,
            "customer_email": record.customer_email,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "booking_ref": record.booking_ref(),
        }


class TriageBookingAdapter(BookingSourceAdapter):
    source = "triage_booking"
    record_model = TriageBookingRecord

    async def fetch_rows(self, actor_id: str) -> List[Dict[str, Any]]:
        return await self.store.fetch(
            BOOKINGS_TABLE,
            where(in_("consultation_type", self.triage_types), in_("status", ACTIVE_BOOKING_STATUSES)),
        )

    def to_case(self, record: TriageBookingRecord) -> Case:
        consultation_type = record.consultation_type or ""
        return Case(
            id=f"booking_{record.id}",
            case_number=f"LT-{record.id}",
            title=f"{record.pet_name or 'Unnamed pet'} - {consultation_type}",
            description=record.consultation_reason or "Triage assessment required",
            severity=coerce_severity(record.triage_priority, source=self.source),
            status="pending_assessment" if record.status == "pending" else record.status,
            source="triage_booking",
            service_type=consultation_type,
            **self._booking_fields(record),
        )


class ConsultationBookingAdapter(BookingSourceAdapter):
    source = "consultation_booking"
    record_model = ConsultationBookingRecord

    async def fetch_rows(self, actor_id: str) -> List[Dict[str, Any]]:
        return await self.store.fetch(
            BOOKINGS_TABLE,
            where(not_in("consultation_type", self.triage_types), in_("status", ACTIVE_BOOKING_STATUSES)),
        )

    def to_case(self, record: ConsultationBookingRecord) -> Case:
        consultation_type = record.consultation_type or "Consultation"
        # General consultations carry no assessment signal; "pending" is reserved for awaiting triage.
        return Case(
            id=f"consultation_{record.id}",
            case_number=f"CS-{record.id}",
            title=f"{record.pet_name or 'Unnamed pet'} - {consultation_type}",
            description=record.consultation_reason or "Consultation scheduled",
            severity="moderate",
            status=record.status,
            source="consultation_booking",
            service_type=consultation_type,
            **self._booking_fields(record),
        )


def build_default_adapters(
    store: Any,
    *,
    triage_types: Optional[Sequence[str]] = None,
    timeout_seconds: Optional[float] = None,
) -> List[CaseSourceAdapter]:
    return [
        NativeCaseAdapter(store, timeout_seconds=timeout_seconds),
        TriageBookingAdapter(store, triage_types=triage_types, timeout_seconds=timeout_seconds),
        ConsultationBookingAdapter(store, triage_types=triage_types, timeout_seconds=timeout_seconds),
    ]
