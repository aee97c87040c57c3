from fastapi import APIRouter, Depends
from typing import List

from ... import deps
from ....core.exceptions import PermissionDenied, ResultNotFound
from ....core.security import Identity
from ....services.session_service import SessionLifecycleService
from ....services.state_machine import SessionScope
from ....schemas.session import (
    StartSessionRequest,
    StartSessionResponse,
    AdvanceRequest,
    PhaseResponse,
    AnswerRequest,
    OkResponse,
    SavedAnswer,
    QuestionItem,
    ViolationRequest,
    ViolationResponse,
    EventRequest,
    CheckpointRequest,
    SubmitRequest,
    SubmitResponse,
    TimeRemainingResponse,
    SessionView,
    ExamPolicy,
    ResultView,
)

router = APIRouter()


@router.post("/start", response_model=StartSessionResponse)
async def start_session(
    request: StartSessionRequest,
    identity: Identity = Depends(deps.get_current_identity),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    """Create a session for (student, exam) or resume the one already running"""
    student_id = request.student_id or identity.subject_id
    if student_id != identity.subject_id and not identity.is_admin:
        raise PermissionDenied("Cannot start an exam on behalf of another student")

    outcome = await service.start(student_id, request.exam_id)
    return StartSessionResponse(
        session_id=outcome.session.id,
        phase=outcome.session.phase,
        resumed=outcome.resumed,
    )


@router.get("/{session_id}", response_model=SessionView)
async def get_session(
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    snapshot = await service.describe(scope)
    session, exam = snapshot.session, snapshot.exam
    return SessionView(
        session_id=session.id,
        exam_id=session.exam_id,
        phase=session.phase,
        started_at=session.started_at,
        deadline_at=session.deadline_at,
        submitted_at=session.submitted_at,
        remaining_seconds=snapshot.remaining_seconds,
        violation_counts=snapshot.violation_counts,
        policy=ExamPolicy(
            exam_id=exam.exam_id,
            title=exam.title,
            duration_minutes=exam.duration_minutes,
            max_violations=exam.max_violations,
            max_tab_switches=exam.max_tab_switches,
            auto_save_interval_seconds=exam.auto_save_interval_seconds,
        ),
    )


@router.post("/{session_id}/advance", response_model=PhaseResponse)
async def advance_session(
    request: AdvanceRequest,
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    """Leave ``fromPhase`` for the next step of the pre-exam flow"""
    session = await service.advance(scope, request.from_phase, request.payload.model_dump())
    return PhaseResponse(phase=session.phase)


@router.post("/{session_id}/answer", response_model=OkResponse)
async def save_answer(
    request: AnswerRequest,
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    await service.save_answer(
        scope,
        question_id=request.question_id,
        selected_option=request.selected_option,
        marked_for_review=request.marked_for_review,
    )
    return OkResponse(ok=True)


@router.get("/{session_id}/questions", response_model=List[QuestionItem])
async def get_questions(
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    """Question paper for the answering phase, merged with saved answers"""
    paper = await service.get_questions(scope)
    return [
        QuestionItem(
            question_id=item.question.question_id,
            question_text=item.question.question_text,
            options=item.question.options,
            marks=item.question.marks,
            section=item.question.section,
            selected_option=item.response.selected_option if item.response else None,
            marked_for_review=item.response.marked_for_review if item.response else False,
        )
        for item in paper
    ]


@router.get("/{session_id}/answers", response_model=List[SavedAnswer])
async def get_answers(
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    responses = await service.get_answers(scope)
    return [SavedAnswer.model_validate(response) for response in responses]


@router.post("/{session_id}/violation", response_model=ViolationResponse)
async def log_violation(
    request: ViolationRequest,
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    """Record a client-observed integrity event"""
    outcome = await service.record_violation(scope, request.type, request.severity, request.details)
    return ViolationResponse(
        total_violations=outcome.total_violations,
        should_auto_submit=outcome.should_auto_submit,
    )


@router.post("/{session_id}/event", response_model=OkResponse)
async def log_event(
    request: EventRequest,
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    await service.log_event(scope, request.event_type, request.event_data)
    return OkResponse(ok=True)


@router.post("/{session_id}/checkpoint", response_model=TimeRemainingResponse)
async def checkpoint_time(
    request: CheckpointRequest,
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    time_status = await service.checkpoint_time(scope, request.time_remaining_seconds)
    return TimeRemainingResponse(
        remaining_seconds=time_status.remaining_seconds,
        phase=time_status.phase,
        auto_submitted=time_status.auto_submitted,
    )


@router.get("/{session_id}/time-remaining", response_model=TimeRemainingResponse)
async def get_time_remaining(
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    time_status = await service.time_remaining(scope)
    return TimeRemainingResponse(
        remaining_seconds=time_status.remaining_seconds,
        phase=time_status.phase,
        auto_submitted=time_status.auto_submitted,
    )


@router.post("/{session_id}/submit", response_model=SubmitResponse)
async def submit_session(
    request: SubmitRequest,
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    outcome = await service.submit(scope, automatic=request.automatic)
    return SubmitResponse(
        result_id=outcome.result.id,
        redirect_phase=outcome.phase,
        already_submitted=outcome.already_submitted,
    )


@router.get("/{session_id}/result", response_model=ResultView)
async def get_result(
    scope: SessionScope = Depends(deps.session_scope),
    service: SessionLifecycleService = Depends(deps.get_session_service),
):
    result = await service.get_result(scope)
    if result is None:
        raise ResultNotFound(scope.session_id)

    return ResultView(
        result_id=result.id,
        session_id=result.session_id,
        total_answered=result.total_answered,
        correct_answers=result.correct_answers,
        score=result.score,
        risk_score=result.risk_score,
        confidence_score=result.confidence_score,
        admin_status=result.admin_status,
        created_at=result.created_at,
    )
