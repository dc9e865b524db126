"""Pure filter/search/sort over an in-memory worklist.

Nothing here touches the store; callers re-run ``build_view`` on every
filter, search or sort change against the worklist they already hold.
"""

from typing import Dict, List, Optional, Sequence

from app.models import Case
from app.services.triage import SEVERITY_VALUES, SORT_MODES, sort_cases

SEARCH_FIELDS = ("title", "description", "case_number", "pet_name", "customer_name")


def filter_cases(cases: Sequence[Case], case_filter: str, actor_id: Optional[str]) -> List[Case]:
    if case_filter == "assigned":
        return [case for case in cases if actor_id and case.assigned_nurse_id == actor_id]
    if case_filter in SEVERITY_VALUES:
        return [case for case in cases if case.severity == case_filter]
    return list(cases)


def search_cases(cases: Sequence[Case], search: Optional[str]) -> List[Case]:
    term = (search or "").strip().lower()
    if not term:
        return list(cases)
    result: List[Case] = []
    for case in cases:
        for field_name in SEARCH_FIELDS:
            value = getattr(case, field_name)
            if value and term in value.lower():
                result.append(case)
                break
    return result


def build_view(
    cases: Sequence[Case],
    *,
    actor_id: Optional[str],
    case_filter: str = "all",
    search: Optional[str] = "",
    sort_by: str = "severity",
) -> List[Case]:
    filtered = filter_cases(cases, case_filter, actor_id)
    matched = search_cases(filtered, search)
    return sort_cases(matched, sort_by if sort_by in SORT_MODES else "severity")


def filter_counts(cases: Sequence[Case], actor_id: Optional[str]) -> Dict[str, int]:
    counts = {"all": len(cases)}
    for severity in SEVERITY_VALUES:
        counts[severity] = sum(1 for case in cases if case.severity == severity)
    counts["assigned"] = sum(1 for case in cases if actor_id and case.assigned_nurse_id == actor_id)
    return counts
