from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Any
import json
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy import select

from ..core.config import settings
from ..core.exceptions import (
    DuplicateSession,
    InvalidPayload,
    InvalidTransition,
    ProctorError,
    QuestionNotFound,
    ScoringAlreadyPerformed,
    SessionTerminal,
)
from ..models.session import ExamSession, SessionPhase, active_key_for
from ..models.response import QuestionResponse
from ..models.proctoring_log import ProctoringLog
from ..models.result import Result
from ..utils.timezone import utc_now
from . import time_budget
from .catalog import Catalog, ExamConfig, QuestionView
from .rate_limit import ViolationRateLimiter
from .scoring import ScoringEngine, LinearRiskStrategy, marking_scheme_for
from .state_machine import SessionScope, SessionStateMachine, resolve_advance
from .violation_ledger import ViolationLedger

logger = logging.getLogger(__name__)

P = SessionPhase


@dataclass
class StartOutcome:
    session: ExamSession
    resumed: bool


@dataclass
class ViolationOutcome:
    total_violations: int
    should_auto_submit: bool


@dataclass
class SubmissionOutcome:
    result: Result
    phase: str
    already_submitted: bool


@dataclass
class SessionSnapshot:
    session: ExamSession
    exam: ExamConfig
    remaining_seconds: int
    violation_counts: Dict[str, int]


@dataclass
class PaperQuestion:
    question: QuestionView
    response: Optional[QuestionResponse] = None


@dataclass
class TimeStatus:
    remaining_seconds: int
    phase: str
    auto_submitted: bool = False


class SessionLifecycleService:
    """Creates, advances and closes exam sessions.

    Each public method is one short unit of work against durable storage and
    ends with a commit or a rollback; nothing about a session lives in memory
    between calls.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: Catalog,
        scoring: Optional[ScoringEngine] = None,
        rate_limiter: Optional[ViolationRateLimiter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.catalog = catalog
        self.machine = SessionStateMachine(db)
        self.ledger = ViolationLedger(db, rate_limiter)
        self.scoring = scoring or ScoringEngine(LinearRiskStrategy(settings.violation_normalizer))
        self.clock = clock

    # ------------------------------------------------------------------ start

    async def start(self, student_id: str, exam_id: str) -> StartOutcome:
        existing = await self._find_active(student_id, exam_id)
        if existing is not None:
            return await self._resume(existing)

        exam = await self.catalog.get_exam(exam_id)
        try:
            session = await self._create_session(student_id, exam)
        except DuplicateSession:
            logger.warning(f"Concurrent start for student {student_id} exam {exam_id}, resuming winner")
            existing = await self._find_active(student_id, exam_id)
            if existing is None:
                raise
            return await self._resume(existing)

        logger.info(f"Created session {session.id} for student {student_id} exam {exam_id}")
        return StartOutcome(session=session, resumed=False)

    async def _find_active(self, student_id: str, exam_id: str) -> Optional[ExamSession]:
        result = await self.db.execute(
            select(ExamSession)
            .where(ExamSession.active_key == active_key_for(student_id, exam_id))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _create_session(self, student_id: str, exam: ExamConfig) -> ExamSession:
        session = ExamSession(
            id=str(uuid.uuid4()),
            student_id=student_id,
            exam_id=exam.exam_id,
            # the candidate is routed straight to the device check
            phase=P.COMPATIBILITY_CHECK.value,
            active_key=active_key_for(student_id, exam.exam_id),
            time_remaining_seconds=exam.duration_seconds,
        )
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateSession(student_id, exam.exam_id) from e
        return session

    async def _resume(self, session: ExamSession) -> StartOutcome:
        if session.phase == P.IN_PROGRESS.value:
            if await self._expire_if_due(session) is not None:
                session = await self.machine.load(session.id)
                await self.db.commit()
                return StartOutcome(session=session, resumed=True)
        await self.db.commit()
        logger.info(f"Resumed session {session.id} in phase {session.phase}")
        return StartOutcome(session=session, resumed=True)

    # ---------------------------------------------------------------- advance

    async def advance(self, scope: SessionScope, from_phase: str, payload: Optional[Dict[str, Any]] = None) -> ExamSession:
        payload = payload or {}
        session = await self.machine.require_active(scope)
        await self._raise_if_expired(session)

        target, replay = resolve_advance(session.phase, from_phase)
        if replay:
            await self.db.commit()
            return session

        now = self.clock()
        if target == P.IN_PROGRESS.value:
            if not payload.get("accept_rules"):
                raise InvalidPayload("Exam rules must be accepted before starting")
            exam = await self.catalog.get_exam(session.exam_id)
            applied = await self.machine.enter_in_progress(session, exam.duration_seconds, now)
        else:
            applied = await self.machine.transition(session, target, **self._phase_values(target, payload))

        if not applied:
            await self.db.rollback()
            session = await self.machine.require_session(scope)
            if session.phase == target:
                return session
            raise InvalidTransition(session.phase, from_phase)

        await self.db.commit()
        return await self.machine.require_session(scope)

    def _phase_values(self, target: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if target == P.COMPATIBILITY_CHECK.value:
            return {}
        if target == P.AV_VERIFICATION.value:
            metadata = {key: payload.get(key) for key in ("browser_info", "screen_resolution") if payload.get(key)}
            return {"client_metadata": json.dumps(metadata) if metadata else None}
        if target == P.RULES.value:
            photo_ref = payload.get("photo_ref")
            if not photo_ref:
                raise InvalidPayload("An identity photo reference is required")
            return {"captured_identity_photo_ref": photo_ref}
        return {}

    # ---------------------------------------------------------------- answers

    async def save_answer(
        self,
        scope: SessionScope,
        question_id: str,
        selected_option: Optional[str] = None,
        marked_for_review: bool = False,
    ) -> QuestionResponse:
        session = await self.machine.require_active(scope)
        self.machine.require_phase(session, P.IN_PROGRESS, "answer")
        await self._raise_if_expired(session)

        answer_key = await self.catalog.get_answer_key(session.exam_id)
        if question_id not in answer_key:
            raise QuestionNotFound(question_id, session.exam_id)

        if not await self.machine.claim_in_progress(session):
            await self.db.rollback()
            session = await self.machine.require_session(scope)
            raise SessionTerminal(session.id, session.phase, await self.machine.result_id_for(session.id))

        await self._upsert_response(session.id, question_id, selected_option, marked_for_review)
        await self.db.commit()

        result = await self.db.execute(
            select(QuestionResponse)
            .where(QuestionResponse.session_id == session.id, QuestionResponse.question_id == question_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()

    async def _upsert_response(self, session_id: str, question_id: str, selected_option: Optional[str], marked_for_review: bool):
        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        values = {
            "session_id": session_id,
            "question_id": question_id,
            "selected_option": selected_option,
            "marked_for_review": bool(marked_for_review),
            "answered_at": self.clock(),
        }
        stmt = insert(QuestionResponse).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuestionResponse.session_id, QuestionResponse.question_id],
            set_={
                "selected_option": stmt.excluded.selected_option,
                "marked_for_review": stmt.excluded.marked_for_review,
                "answered_at": stmt.excluded.answered_at,
            },
        )
        await self.db.execute(stmt)

    async def get_questions(self, scope: SessionScope) -> List[PaperQuestion]:
        """The question paper in order, each question with the candidate's saved answer"""
        session = await self.machine.require_active(scope)
        self.machine.require_phase(session, P.IN_PROGRESS, "questions")
        await self._raise_if_expired(session)

        questions = await self.catalog.get_questions(session.exam_id)
        result = await self.db.execute(
            select(QuestionResponse)
            .where(QuestionResponse.session_id == session.id)
            .execution_options(populate_existing=True)
        )
        saved = {response.question_id: response for response in result.scalars().all()}
        await self.db.commit()
        return [PaperQuestion(question=question, response=saved.get(question.question_id)) for question in questions]

    async def get_answers(self, scope: SessionScope) -> List[QuestionResponse]:
        session = await self.machine.require_session(scope)
        result = await self.db.execute(
            select(QuestionResponse)
            .where(QuestionResponse.session_id == session.id)
            .order_by(QuestionResponse.id)
            .execution_options(populate_existing=True)
        )
        responses = list(result.scalars().all())
        await self.db.commit()
        return responses

    # ------------------------------------------------------------- integrity

    async def record_violation(
        self,
        scope: SessionScope,
        violation_type: str,
        severity: Optional[str] = None,
        details: Optional[str] = None,
    ) -> ViolationOutcome:
        session = await self.machine.require_active(scope)
        self.machine.require_phase(session, P.IN_PROGRESS, "violation")
        await self._raise_if_expired(session)

        total = await self.ledger.record(session.id, violation_type, severity, details, at=self.clock())
        exam = await self.catalog.get_exam(session.exam_id)
        should_auto_submit = await self.ledger.should_auto_submit(session.id, exam.max_violations)
        await self.db.commit()

        if should_auto_submit:
            logger.warning(f"Session {session.id} reached {total}/{exam.max_violations} violations")
        return ViolationOutcome(total_violations=total, should_auto_submit=should_auto_submit)

    async def log_event(self, scope: SessionScope, event_type: str, event_data: Optional[Dict[str, Any]] = None) -> ProctoringLog:
        session = await self.machine.require_active(scope)
        await self._raise_if_expired(session)
        entry = ProctoringLog(
            session_id=session.id,
            event_type=event_type,
            event_data=json.dumps(event_data or {}),
            timestamp=self.clock(),
        )
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def describe(self, scope: SessionScope) -> SessionSnapshot:
        """Everything the candidate UI needs to render the current phase"""
        status = await self.time_remaining(scope)
        session = await self.machine.require_session(scope)
        exam = await self.catalog.get_exam(session.exam_id)
        counts = await self.ledger.counts_by_type(session.id)
        await self.db.commit()
        return SessionSnapshot(
            session=session,
            exam=exam,
            remaining_seconds=status.remaining_seconds,
            violation_counts=counts,
        )

    # ------------------------------------------------------------------ time

    async def time_remaining(self, scope: SessionScope) -> TimeStatus:
        session = await self.machine.require_session(scope)
        if session.is_terminal:
            await self.db.commit()
            return TimeStatus(remaining_seconds=0, phase=session.phase)

        if session.phase == P.IN_PROGRESS.value:
            outcome = await self._expire_if_due(session)
            if outcome is not None:
                return TimeStatus(remaining_seconds=0, phase=outcome.phase, auto_submitted=not outcome.already_submitted)

        exam = await self.catalog.get_exam(session.exam_id)
        remaining = time_budget.remaining(session, exam.duration_seconds, self.clock())
        await self.db.commit()
        return TimeStatus(remaining_seconds=remaining, phase=session.phase)

    async def checkpoint_time(self, scope: SessionScope, client_remaining_seconds: int) -> TimeStatus:
        """Store the client's countdown as a display hint and answer with the real figure"""
        session = await self.machine.require_active(scope)
        self.machine.require_phase(session, P.IN_PROGRESS, "checkpoint")
        await self._raise_if_expired(session)

        if await self.machine.claim_in_progress(session):
            session.time_remaining_seconds = max(0, int(client_remaining_seconds))
            await self.db.commit()

        return await self.time_remaining(scope)

    async def _expire_if_due(self, session: ExamSession) -> Optional[SubmissionOutcome]:
        if session.phase != P.IN_PROGRESS.value or session.started_at is None:
            return None
        duration = session.duration_seconds or (await self.catalog.get_exam(session.exam_id)).duration_seconds
        if not time_budget.is_expired(session, duration, self.clock()):
            return None

        logger.info(f"Session {session.id} ran out of time, auto-submitting")
        return await self._submit(session, automatic=True)

    async def _raise_if_expired(self, session: ExamSession) -> None:
        outcome = await self._expire_if_due(session)
        if outcome is not None:
            raise SessionTerminal(session.id, outcome.phase, outcome.result.id)

    # ---------------------------------------------------------------- submit

    async def submit(self, scope: SessionScope, automatic: bool = False) -> SubmissionOutcome:
        session = await self.machine.require_session(scope)
        return await self._submit(session, automatic)

    async def get_result(self, scope: SessionScope) -> Optional[Result]:
        session = await self.machine.require_session(scope)
        result = await self._existing_result(session.id)
        await self.db.commit()
        return result

    async def expire_overdue(self, limit: int = 100) -> List[str]:
        """Auto-submit running sessions whose deadline has passed"""
        result = await self.db.execute(
            select(ExamSession.id)
            .where(ExamSession.phase == P.IN_PROGRESS.value, ExamSession.deadline_at <= self.clock())
            .order_by(ExamSession.deadline_at)
            .limit(limit)
        )
        session_ids = list(result.scalars().all())
        await self.db.commit()

        submitted = []
        for session_id in session_ids:
            session = await self.machine.load(session_id)
            if session is None or session.phase != P.IN_PROGRESS.value:
                await self.db.commit()
                continue
            try:
                outcome = await self._submit(session, automatic=True)
            except ProctorError as e:
                await self.db.rollback()
                logger.error(f"Could not auto-submit expired session {session_id}: {e.message}")
                continue
            if not outcome.already_submitted:
                submitted.append(session_id)
        return submitted

    async def _submit(self, session: ExamSession, automatic: bool) -> SubmissionOutcome:
        if session.is_terminal:
            return await self._observe_submission(session.id)
        self.machine.require_phase(session, P.IN_PROGRESS, "submit")

        # catalog reads happen before any write so an outage leaves the session running
        exam = await self.catalog.get_exam(session.exam_id)
        answer_key = await self.catalog.get_answer_key(session.exam_id)

        target = P.AUTO_SUBMITTED.value if automatic else P.SUBMITTED.value
        now = self.clock()
        if not await self.machine.transition(session, target, submitted_at=now):
            await self.db.rollback()
            return await self._observe_submission(session.id)

        try:
            result = await self._score(session, exam, answer_key)
        except ScoringAlreadyPerformed:
            await self.db.rollback()
            return await self._observe_submission(session.id)
        await self.db.commit()

        logger.info(
            f"Session {session.id} {target}: score={result.score} "
            f"risk={result.risk_score} violations={result.violations_count}"
        )
        session = await self.machine.load(session.id)
        return SubmissionOutcome(result=result, phase=session.phase, already_submitted=False)

    async def _score(self, session: ExamSession, exam: ExamConfig, answer_key) -> Result:
        responses = await self.db.execute(
            select(QuestionResponse).where(QuestionResponse.session_id == session.id)
        )
        violation_count = await self.ledger.total(session.id)

        card = self.scoring.score(
            responses.scalars().all(),
            answer_key,
            violation_count,
            marking=marking_scheme_for(exam.negative_marking),
        )
        result = Result(
            session_id=session.id,
            total_answered=card.total_answered,
            correct_answers=card.correct_answers,
            score=card.score,
            violations_count=card.violations_count,
            risk_score=card.risk_score,
            confidence_score=card.confidence_score,
        )
        self.db.add(result)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ScoringAlreadyPerformed(session.id, None) from e
        return result

    async def _existing_result(self, session_id: str) -> Optional[Result]:
        result = await self.db.execute(
            select(Result).where(Result.session_id == session_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _observe_submission(self, session_id: str) -> SubmissionOutcome:
        """Report the state another writer left behind"""
        session = await self.machine.load(session_id)
        result = await self._existing_result(session_id)
        await self.db.commit()

        if session is not None and session.is_terminal and result is not None:
            return SubmissionOutcome(result=result, phase=session.phase, already_submitted=True)
        if session is not None and session.is_terminal:
            raise SessionTerminal(session_id, session.phase)
        raise InvalidTransition(session.phase if session else "missing", "submit")
