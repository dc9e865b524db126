from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

Severity = Literal["emergency", "serious", "moderate", "mild", "pending"]
CaseSource = Literal["cases", "triage_booking", "consultation_booking"]
CaseFilter = Literal["all", "assigned", "emergency", "serious", "moderate", "mild", "pending"]
CaseSortMode = Literal["severity", "created_at", "case_number"]
BoardState = Literal["idle", "ready", "error", "setup_required"]


def _stringify(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return str(value)


# Native ids arrive as INTEGER or TEXT depending on the table.
RecordId = Annotated[str, BeforeValidator(_stringify)]


class BookingRef(BaseModel):
    booking_id: str
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None


class Case(BaseModel):
    id: str
    case_number: str
    title: str
    description: str = ""
    severity: Severity = "pending"
    status: str
    source: CaseSource = Field(frozen=True)
    pet_name: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    service_type: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    assigned_nurse_id: Optional[str] = None
    due_date: Optional[str] = None
    soap_note_count: int = 0
    booking_ref: Optional[BookingRef] = None


class NativeCaseRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["cases"] = "cases"
    id: RecordId
    case_number: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    status: str = "new"
    case_type: Optional[str] = None
    pet_name: Optional[str] = None
    customer_id: Optional[RecordId] = None
    assigned_nurse_id: Optional[RecordId] = None
    due_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BookingRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RecordId
    pet_name: Optional[str] = None
    consultation_type: Optional[str] = None
    consultation_reason: Optional[str] = None
    status: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def booking_ref(self) -> BookingRef:
        return BookingRef(
            booking_id=self.id,
            appointment_date=self.appointment_date,
            appointment_time=self.appointment_time,
        )


class TriageBookingRecord(BookingRecord):
    kind: Literal["triage_booking"] = "triage_booking"
    triage_priority: Optional[str] = None


class ConsultationBookingRecord(BookingRecord):
    kind: Literal["consultation_booking"] = "consultation_booking"


NativeRecord = Annotated[
    Union[NativeCaseRecord, TriageBookingRecord, ConsultationBookingRecord],
    Field(discriminator="kind"),
]


class ProfileRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RecordId
    full_name: Optional[str] = None
    email: Optional[str] = None


class CaseRefreshRequest(BaseModel):
    actor_user_id: str


class CaseLoadSummary(BaseModel):
    user_id: str
    state: BoardState
    total: int = 0
    failed_sources: list[str] = Field(default_factory=list)
    loaded_at: Optional[str] = None
    detail: Optional[str] = None


class CaseCard(BaseModel):
    case: Case
    severity_label: str
    severity_tone: str
    service_label: str
    time_ago: str
    primary_action: str
    can_quick_assess: bool


class CaseWorklistView(BaseModel):
    user_id: str
    state: BoardState
    filter: CaseFilter = "all"
    q: str = ""
    sort_by: CaseSortMode = "severity"
    total: int
    counts: Dict[str, int] = Field(default_factory=dict)
    cases: list[CaseCard] = Field(default_factory=list)


class SeverityUpdateRequest(BaseModel):
    actor_user_id: str
    severity: Severity


class SeverityUpdateResult(BaseModel):
    case_id: str
    applied: bool
    case: Optional[Case] = None


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
