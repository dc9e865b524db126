from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Query

from app.auth import assert_actor_authorized
from app.models import (
    Case,
    CaseCard,
    CaseFilter,
    CaseLoadSummary,
    CaseRefreshRequest,
    CaseSortMode,
    CaseWorklistView,
    SeverityUpdateRequest,
    SeverityUpdateResult,
)
from app.services.case_board import CaseBoard, QuickAssessNotAllowedError, case_boards
from app.services.triage import can_quick_assess, primary_action, service_type_label, severity_level, time_ago

router = APIRouter(prefix="/cases", tags=["cases"])


def _raise_unavailable_board(board: CaseBoard) -> None:
    if board.state == "setup_required":
        raise HTTPException(
            status_code=503,
            detail={"state": "setup_required", "message": board.error_detail or "Case tables are not installed"},
        )
    if board.state == "error":
        raise HTTPException(
            status_code=503,
            detail={"state": "error", "message": board.error_detail or "Unable to load cases"},
        )


def _summary(board: CaseBoard, user_id: str) -> CaseLoadSummary:
    return CaseLoadSummary(
        user_id=user_id,
        state=board.state,
        total=len(board.cases),
        failed_sources=board.failed_sources,
        loaded_at=board.loaded_at,
        detail=board.error_detail,
    )


def _to_card(case: Case, now: datetime) -> CaseCard:
    level = severity_level(case.severity)
    return CaseCard(
        case=case,
        severity_label=level.label,
        severity_tone=level.tone,
        service_label=service_type_label(case.service_type),
        time_ago=time_ago(case.created_at, now=now),
        primary_action=primary_action(case),
        can_quick_assess=can_quick_assess(case),
    )


async def _loaded_board(user_id: str) -> CaseBoard:
    board = case_boards.get(user_id)
    if board.state == "idle":
        await board.refresh()
    return board


@router.post("/refresh", response_model=CaseLoadSummary)
async def refresh_cases(
    request: CaseRefreshRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    board = case_boards.get(request.actor_user_id)
    await board.refresh()
    return _summary(board, request.actor_user_id)


@router.get("", response_model=CaseWorklistView)
async def list_cases(
    user_id: str = Query(...),
    case_filter: CaseFilter = Query(default="all", alias="filter"),
    q: str = Query(default=""),
    sort_by: CaseSortMode = Query(default="severity"),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    board = await _loaded_board(user_id)
    _raise_unavailable_board(board)
    now = datetime.now(timezone.utc)
    return CaseWorklistView(
        user_id=user_id,
        state=board.state,
        filter=case_filter,
        q=q,
        sort_by=sort_by,
        total=len(board.cases),
        counts=board.filter_counts(),
        cases=[_to_card(case, now) for case in board.view(case_filter, q, sort_by)],
    )


@router.get("/filters", response_model=Dict[str, int])
async def list_case_filter_counts(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    board = await _loaded_board(user_id)
    _raise_unavailable_board(board)
    return board.filter_counts()


@router.post("/{case_id}/severity", response_model=SeverityUpdateResult)
async def update_case_severity(
    case_id: str,
    request: SeverityUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    board = case_boards.get(request.actor_user_id)
    updated = await board.update_severity(case_id, request.severity)
    return SeverityUpdateResult(case_id=case_id, applied=updated is not None, case=updated)


@router.post("/{case_id}/quick-assess", response_model=SeverityUpdateResult)
async def quick_assess_case(
    case_id: str,
    request: SeverityUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=request.actor_user_id, authorization=authorization)
    board = case_boards.get(request.actor_user_id)
    try:
        updated = await board.quick_assess(case_id, request.severity)
    except QuickAssessNotAllowedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return SeverityUpdateResult(case_id=case_id, applied=updated is not None, case=updated)
