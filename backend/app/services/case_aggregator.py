"""Concurrent fan-out over the source adapters into one severity-ordered worklist."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Set

from app import settings
from app.models import Case
from app.services.case_sources import AdapterOutcome, CaseSourceAdapter, build_default_adapters
from app.services.case_store import CASES_TABLE, CaseStoreMissingTableError
from app.services.triage import sort_cases

logger = logging.getLogger(__name__)

SETUP_HINT = "Run the case management migration to create the cases table."


class CaseEngineError(Exception):
    """Base class for worklist-level failures surfaced to callers."""


class CaseAggregationError(CaseEngineError):
    pass


class CaseSetupRequiredError(CaseEngineError):
    pass


@dataclass
class AggregationResult:
    cases: List[Case]
    outcomes: List[AdapterOutcome] = field(default_factory=list)

    @property
    def failed_sources(self) -> List[str]:
        return [outcome.source for outcome in self.outcomes if not outcome.ok]

    @property
    def partial(self) -> bool:
        return bool(self.failed_sources)


class CaseAggregator:
    def __init__(
        self,
        store: Any,
        adapters: Optional[Sequence[CaseSourceAdapter]] = None,
        *,
        telemetry_enabled: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.adapters = list(adapters) if adapters is not None else build_default_adapters(store)
        self.telemetry_enabled = settings.telemetry_enabled() if telemetry_enabled is None else telemetry_enabled

    async def aggregate(self, actor_id: str) -> AggregationResult:
        started = time.perf_counter()
        try:
            await self.store.ping()
        except Exception as exc:
            logger.exception("Case store unreachable before aggregation for actor %s", actor_id)
            raise CaseAggregationError("Case store is unreachable") from exc

        outcomes: List[AdapterOutcome] = list(
            await asyncio.gather(*(adapter.load(actor_id) for adapter in self.adapters))
        )

        for outcome in outcomes:
            error = outcome.error
            if isinstance(error, CaseStoreMissingTableError) and error.table == CASES_TABLE:
                self._log_telemetry(actor_id, outcomes, started, result="setup_required")
                raise CaseSetupRequiredError(SETUP_HINT) from error

        if outcomes and all(not outcome.ok for outcome in outcomes):
            self._log_telemetry(actor_id, outcomes, started, result="error")
            raise CaseAggregationError("Every case source failed")

        for outcome in outcomes:
            if not outcome.ok:
                logger.warning(
                    "Case source %s contributed no cases for actor %s: %s",
                    outcome.source,
                    actor_id,
                    outcome.error,
                )

        merged = self._merge(outcomes)
        self._log_telemetry(actor_id, outcomes, started, result="partial" if any(not o.ok for o in outcomes) else "ok")
        return AggregationResult(cases=sort_cases(merged, "severity"), outcomes=outcomes)

    def _merge(self, outcomes: Sequence[AdapterOutcome]) -> List[Case]:
        merged: List[Case] = []
        seen: Set[str] = set()
        for outcome in outcomes:
            for case in outcome.cases:
                if case.id in seen:
                    logger.warning("Dropping duplicate case id %s from %s", case.id, outcome.source)
                    continue
                seen.add(case.id)
                merged.append(case)
        return merged

    def _log_telemetry(
        self,
        actor_id: str,
        outcomes: Sequence[AdapterOutcome],
        started: float,
        *,
        result: str,
    ) -> None:
        if not self.telemetry_enabled:
            return
        payload = {
            "actor_id": actor_id,
            "result": result,
            "source_counts": {outcome.source: len(outcome.cases) for outcome in outcomes},
            "source_elapsed_ms": {outcome.source: outcome.elapsed_ms for outcome in outcomes},
            "failed_sources": [outcome.source for outcome in outcomes if not outcome.ok],
            "elapsed_ms": int((time.perf_counter() - started) * 1000),
        }
        logger.info("case_aggregation=%s", json.dumps(payload, sort_keys=True))
