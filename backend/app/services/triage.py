"""Severity taxonomy and ordering rules for the nurse case worklist."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.models import Case, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeverityLevel:
    label: str
    priority: int
    tone: str
    description: str


# Ordered from most to least urgent.
SEVERITY_LEVELS: Dict[str, SeverityLevel] = {
    "emergency": SeverityLevel("Emergency", 4, "red", "Immediate veterinary attention required"),
    "serious": SeverityLevel("Serious", 3, "orange", "Urgent veterinary care needed"),
    "moderate": SeverityLevel("Moderate", 2, "yellow", "Veterinary assessment recommended"),
    "mild": SeverityLevel("Mild", 1, "green", "Monitor and routine care"),
    "pending": SeverityLevel("Pending Assessment", 0, "blue", "Awaiting triage assessment"),
}

SEVERITY_VALUES = tuple(SEVERITY_LEVELS)
QUICK_ASSESS_SEVERITIES = ("mild", "moderate", "serious", "emergency")
SORT_MODES = ("severity", "created_at", "case_number")

SERVICE_TYPE_LABELS = {
    "Triage SOAP Review": "SOAP Review",
    "Triage Consultation": "Consultation",
    "Mobile Consultation": "Mobile Visit",
    "Emergency Care": "Emergency",
    "Health Check": "Health Check",
    "Follow-up": "Follow-up",
}


def severity_priority(severity: str) -> int:
    level = SEVERITY_LEVELS.get(severity)
    return level.priority if level else 0


def severity_level(severity: str) -> SeverityLevel:
    return SEVERITY_LEVELS.get(severity, SEVERITY_LEVELS["pending"])


def coerce_severity(raw: Any, *, source: str = "") -> Severity:
    """Map a stored priority value onto the severity enumeration.

    Empty values mean "not assessed yet". Values outside the taxonomy are
    treated the same way so they can never leak into the worklist.
    """
    if raw is None:
        return "pending"
    value = str(raw).strip().lower()
    if not value:
        return "pending"
    if value in SEVERITY_LEVELS:
        return value  # type: ignore[return-value]
    logger.warning("Unknown severity %r from %s; treating as pending", raw, source or "unknown source")
    return "pending"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_cases(cases: Sequence[Case], sort_by: str = "severity") -> List[Case]:
    """Return a new list ordered by ``sort_by``.

    All modes use a stable sort, so records that compare equal keep the order
    they arrived in.
    """
    ordered = list(cases)
    if sort_by == "created_at":
        # Records without a usable timestamp go last.
        ordered.sort(key=_newest_first_key)
        return ordered
    if sort_by == "case_number":
        ordered.sort(key=lambda case: case.case_number)
        return ordered
    ordered.sort(key=lambda case: -severity_priority(case.severity))
    return ordered


def _newest_first_key(case: Case) -> Tuple[bool, float]:
    created = parse_timestamp(case.created_at)
    return (created is None, -created.timestamp() if created else 0.0)


def service_type_label(service_type: Optional[str]) -> str:
    if not service_type:
        return "General Case"
    return SERVICE_TYPE_LABELS.get(service_type, service_type)


def can_quick_assess(case: Case) -> bool:
    return case.severity == "pending" and case.source in {"cases", "triage_booking"}


def primary_action(case: Case) -> str:
    if case.severity == "pending":
        return "Start Triage"
    if case.source == "triage_booking":
        return "Review"
    return "View Details"


def time_ago(value: Optional[str], now: Optional[datetime] = None) -> str:
    created = parse_timestamp(value)
    if not created:
        return ""
    current = now or datetime.now(timezone.utc)
    minutes = max(0, int((current - created).total_seconds() // 60))
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 1440:
        return f"{minutes // 60}h ago"
    return f"{minutes // 1440}d ago"
