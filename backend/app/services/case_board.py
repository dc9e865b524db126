import logging
from datetime import datetime, timezone
from collections import OrderedDict
from threading import Lock
from typing import Any, Dict, List, Optional, Set, Tuple

from app import settings
from app.models import BoardState, Case
from app.services.case_aggregator import CaseAggregationError, CaseAggregator, CaseEngineError, CaseSetupRequiredError
from app.services.case_store import BOOKINGS_TABLE, CASES_TABLE, case_store
from app.services.case_view import build_view, filter_counts
from app.services.triage import QUICK_ASSESS_SEVERITIES, SEVERITY_LEVELS, can_quick_assess

logger = logging.getLogger(__name__)


class QuickAssessNotAllowedError(CaseEngineError):
    pass


class CaseBoard:
    """One browsing session's worklist for a single nurse.

    ``refresh`` is the only operation that reads the store. Each run is tagged
    with a generation number and a completion from a superseded run is dropped,
    so a slow load can never overwrite a newer worklist.
    A confirmed severity write also bumps the generation, so a load that read
    its rows before the write cannot roll the case back.
    """

    def __init__(self, actor_id: Optional[str], aggregator: CaseAggregator, store: Any) -> None:
        self.actor_id = actor_id
        self.aggregator = aggregator
        self.store = store
        self.state: BoardState = "idle"
        self.error_detail: Optional[str] = None
        self.failed_sources: List[str] = []
        self.loaded_at: Optional[str] = None
        self._cases: List[Case] = []
        self._generation = 0
        self._writes_in_flight: Set[str] = set()

    @property
    def cases(self) -> List[Case]:
        return list(self._cases)

    @property
    def generation(self) -> int:
        return self._generation

    def switch_actor(self, actor_id: Optional[str]) -> None:
        if actor_id == self.actor_id:
            return
        self.actor_id = actor_id
        self._generation += 1
        self._cases = []
        self.state = "idle"
        self.error_detail = None
        self.failed_sources = []
        self.loaded_at = None

    async def refresh(self) -> bool:
        self._generation += 1
        generation = self._generation
        actor_id = self.actor_id
        if not actor_id:
            return self._settle(generation, state="ready")
        try:
            result = await self.aggregator.aggregate(actor_id)
        except CaseSetupRequiredError as exc:
            return self._settle(generation, state="setup_required", detail=str(exc))
        except CaseAggregationError as exc:
            return self._settle(generation, state="error", detail=str(exc))
        return self._settle(
            generation,
            state="ready",
            cases=result.cases,
            failed_sources=result.failed_sources,
        )

    def _settle(
        self,
        generation: int,
        *,
        state: BoardState,
        cases: Optional[List[Case]] = None,
        detail: Optional[str] = None,
        failed_sources: Optional[List[str]] = None,
    ) -> bool:
        if generation != self._generation:
            logger.info(
                "Discarding stale case load for actor %s (generation %s, current %s)",
                self.actor_id,
                generation,
                self._generation,
            )
            return False
        self.state = state
        self._cases = list(cases or [])
        self.error_detail = detail
        self.failed_sources = list(failed_sources or [])
        self.loaded_at = datetime.now(timezone.utc).isoformat()
        return True

    def find(self, case_id: str) -> Optional[Case]:
        for case in self._cases:
            if case.id == case_id:
                return case
        return None

    def view(self, case_filter: str = "all", search: Optional[str] = "", sort_by: str = "severity") -> List[Case]:
        return build_view(
            self._cases,
            actor_id=self.actor_id,
            case_filter=case_filter,
            search=search,
            sort_by=sort_by,
        )

    def filter_counts(self) -> Dict[str, int]:
        return filter_counts(self._cases, self.actor_id)

    async def update_severity(self, case_id: str, severity: str) -> Optional[Case]:
        if severity not in SEVERITY_LEVELS:
            raise ValueError(f"Unknown severity: {severity}")
        case = self.find(case_id)
        if case is None:
            logger.info("Ignoring severity update for case %s: not in current worklist", case_id)
            return None

        if case_id in self._writes_in_flight:
            logger.info("Ignoring severity update for case %s: another write is in flight", case_id)
            return None
        plan = self._write_back_plan(case, severity)
        if plan is None:
            logger.info("Case %s from %s has no severity write-back path", case_id, case.source)
            return None
        table, record_id, changes = plan
        self._writes_in_flight.add(case_id)
        try:
            await self.store.update(table, record_id, changes)
        except Exception:
            logger.exception("Severity update failed for case %s (%s %s)", case_id, table, record_id)
            return None
        finally:
            self._writes_in_flight.discard(case_id)

        # Loads started before this write carry the old value.
        self._generation += 1

        local_changes = {key: changes[key] for key in ("status", "updated_at") if key in changes}
        local_changes["severity"] = severity
        updated = case.model_copy(update=local_changes)
        for index, current in enumerate(self._cases):
            if current.id == case_id:
                self._cases[index] = updated
                break
        return updated

    async def quick_assess(self, case_id: str, severity: str) -> Optional[Case]:
        if severity not in QUICK_ASSESS_SEVERITIES:
            raise QuickAssessNotAllowedError(f"Quick assessment cannot set severity to {severity}")
        case = self.find(case_id)
        if case is None:
            logger.info("Ignoring quick assessment for case %s: not in current worklist", case_id)
            return None
        if case_id in self._writes_in_flight:
            raise QuickAssessNotAllowedError(f"Case {case_id} is already being assessed")
        if not can_quick_assess(case):
            raise QuickAssessNotAllowedError(f"Case {case_id} is not awaiting triage")
        return await self.update_severity(case_id, severity)

    def _write_back_plan(self, case: Case, severity: str) -> Optional[Tuple[str, str, Dict[str, Any]]]:
        now = datetime.now(timezone.utc).isoformat()
        if case.source == "cases":
            return CASES_TABLE, case.id, {"priority": severity, "updated_at": now}
        if case.source == "triage_booking" and case.booking_ref:
            # Assessment is one-way; nothing in this flow moves a booking back out of "assessed".
            return (
                BOOKINGS_TABLE,
                case.booking_ref.booking_id,
                {"triage_priority": severity, "status": "assessed", "updated_at": now},
            )
        return None


class CaseBoardRegistry:
    """Boards keyed by actor, least recently used evicted past ``max_boards``."""

    def __init__(
        self,
        store: Any,
        aggregator: Optional[CaseAggregator] = None,
        *,
        max_boards: Optional[int] = None,
    ) -> None:
        self._lock = Lock()
        self.store = store
        self.aggregator = aggregator or CaseAggregator(store)
        self.max_boards = max_boards or settings.case_board_max_actors()
        self._boards: "OrderedDict[str, CaseBoard]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._boards)

    def get(self, actor_id: str) -> CaseBoard:
        with self._lock:
            board = self._boards.get(actor_id)
            if board is None:
                board = CaseBoard(actor_id=actor_id, aggregator=self.aggregator, store=self.store)
                self._boards[actor_id] = board
            self._boards.move_to_end(actor_id)
            while len(self._boards) > self.max_boards:
                evicted, _ = self._boards.popitem(last=False)
                logger.info("Evicted idle case board for actor %s", evicted)
            return board


case_boards = CaseBoardRegistry(case_store)
