from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from ... import deps
from ....core.security import Identity
from ....models.result import Result
from ....models.session import ExamSession
from ....services.review_service import ReviewService
from ....schemas.admin import (
    SessionRow,
    SessionDetailResponse,
    ResultReview,
    ReviewRequest,
    ReassignRequest,
    ReassignResponse,
    ViolationRow,
    ResponseRow,
    LogRow,
)

router = APIRouter()


def _session_row(session: ExamSession, result: Optional[Result], violation_count: int) -> SessionRow:
    return SessionRow(
        session_id=session.id,
        student_id=session.student_id,
        exam_id=session.exam_id,
        phase=session.phase,
        created_at=session.created_at,
        started_at=session.started_at,
        submitted_at=session.submitted_at,
        violation_count=violation_count,
        score=result.score if result else None,
        risk_score=result.risk_score if result else None,
        confidence_score=result.confidence_score if result else None,
        admin_status=result.admin_status if result else None,
    )


def _result_review(result: Result) -> ResultReview:
    return ResultReview(
        result_id=result.id,
        total_answered=result.total_answered,
        correct_answers=result.correct_answers,
        score=result.score,
        violations_count=result.violations_count,
        risk_score=result.risk_score,
        confidence_score=result.confidence_score,
        admin_status=result.admin_status,
        admin_notes=result.admin_notes,
        reviewed_by=result.reviewed_by,
        reviewed_at=result.reviewed_at,
    )


@router.get("/sessions", response_model=List[SessionRow])
async def list_sessions(
    limit: int = Query(100, ge=1, le=500),
    phase: Optional[str] = None,
    exam_id: Optional[str] = Query(None, alias="examId"),
    admin: Identity = Depends(deps.get_current_admin),
    service: ReviewService = Depends(deps.get_review_service),
):
    """Most recent sessions with their score, risk and violation count"""
    summaries = await service.list_sessions(limit=limit, phase=phase, exam_id=exam_id)
    return [_session_row(s.session, s.result, s.violation_count) for s in summaries]


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
async def get_session_detail(
    session_id: str,
    admin: Identity = Depends(deps.get_current_admin),
    service: ReviewService = Depends(deps.get_review_service),
):
    detail = await service.session_detail(session_id)
    return SessionDetailResponse(
        session=_session_row(detail.session, detail.result, sum(detail.violation_summary.values())),
        identity_photo_ref=detail.session.captured_identity_photo_ref,
        client_metadata=detail.session.client_metadata,
        result=_result_review(detail.result) if detail.result else None,
        violations=[ViolationRow.model_validate(v) for v in detail.violations],
        violation_summary=detail.violation_summary,
        severity_summary=detail.severity_summary,
        responses=[ResponseRow.model_validate(r) for r in detail.responses],
        logs=[LogRow.model_validate(log) for log in detail.logs],
    )


@router.post("/sessions/{session_id}/review", response_model=ResultReview)
async def review_session(
    session_id: str,
    request: ReviewRequest,
    admin: Identity = Depends(deps.get_current_admin),
    service: ReviewService = Depends(deps.get_review_service),
):
    result = await service.review(session_id, admin, request.admin_status, request.admin_notes)
    return _result_review(result)


@router.post("/sessions/{session_id}/disqualify", response_model=SessionRow)
async def disqualify_session(
    session_id: str,
    admin: Identity = Depends(deps.get_current_admin),
    service: ReviewService = Depends(deps.get_review_service),
):
    await service.disqualify(session_id, admin)
    summary = await service.summary(session_id)
    return _session_row(summary.session, summary.result, summary.violation_count)


@router.post("/reassign", response_model=ReassignResponse)
async def reassign_exam(
    request: ReassignRequest,
    admin: Identity = Depends(deps.get_current_admin),
    service: ReviewService = Depends(deps.get_review_service),
):
    """Wipe a student's attempts at an exam so they can start over"""
    purged = await service.reassign(request.student_id, request.exam_id, admin)
    return ReassignResponse(purged_sessions=purged)
