from dataclasses import dataclass, field
from typing import Dict, List, Optional, Callable
from datetime import datetime
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func

from ..core.exceptions import InvalidPayload, InvalidTransition, ResultNotFound, SessionNotFound
from ..core.security import Identity
from ..models.session import ExamSession, SessionPhase
from ..models.response import QuestionResponse
from ..models.violation import ViolationEvent
from ..models.proctoring_log import ProctoringLog
from ..models.result import Result, AdminStatus
from ..utils.timezone import utc_now
from .state_machine import SessionStateMachine
from .violation_ledger import ViolationLedger

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    session: ExamSession
    result: Optional[Result]
    violation_count: int


@dataclass
class SessionDetail:
    session: ExamSession
    result: Optional[Result]
    violations: List[ViolationEvent] = field(default_factory=list)
    violation_summary: Dict[str, int] = field(default_factory=dict)
    severity_summary: Dict[str, int] = field(default_factory=dict)
    responses: List[QuestionResponse] = field(default_factory=list)
    logs: List[ProctoringLog] = field(default_factory=list)


class ReviewService:
    """Administrative view of sessions. Only review fields of a Result change here."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.machine = SessionStateMachine(db)
        self.ledger = ViolationLedger(db)
        self.clock = clock

    async def list_sessions(self, limit: int = 100, phase: Optional[str] = None, exam_id: Optional[str] = None) -> List[SessionSummary]:
        violation_counts = (
            select(ViolationEvent.session_id, func.count(ViolationEvent.id).label("total"))
            .group_by(ViolationEvent.session_id)
            .subquery()
        )
        query = (
            select(ExamSession, Result, func.coalesce(violation_counts.c.total, 0))
            .outerjoin(Result, Result.session_id == ExamSession.id)
            .outerjoin(violation_counts, violation_counts.c.session_id == ExamSession.id)
            .order_by(ExamSession.created_at.desc())
            .limit(limit)
        )
        if phase:
            query = query.where(ExamSession.phase == phase)
        if exam_id:
            query = query.where(ExamSession.exam_id == exam_id)

        rows = await self.db.execute(query)
        summaries = [
            SessionSummary(session=session, result=result, violation_count=int(total))
            for session, result, total in rows.all()
        ]
        await self.db.commit()
        return summaries

    async def session_detail(self, session_id: str) -> SessionDetail:
        session = await self._require(session_id)
        responses = await self.db.execute(
            select(QuestionResponse).where(QuestionResponse.session_id == session_id).order_by(QuestionResponse.id)
        )
        logs = await self.db.execute(
            select(ProctoringLog).where(ProctoringLog.session_id == session_id).order_by(ProctoringLog.timestamp)
        )
        detail = SessionDetail(
            session=session,
            result=await self._result(session_id),
            violations=await self.ledger.events(session_id),
            violation_summary=await self.ledger.counts_by_type(session_id),
            severity_summary=await self.ledger.counts_by_severity(session_id),
            responses=list(responses.scalars().all()),
            logs=list(logs.scalars().all()),
        )
        await self.db.commit()
        return detail

    async def summary(self, session_id: str) -> SessionSummary:
        session = await self._require(session_id)
        summary = SessionSummary(
            session=session,
            result=await self._result(session_id),
            violation_count=await self.ledger.total(session_id),
        )
        await self.db.commit()
        return summary

    async def review(self, session_id: str, reviewer: Identity, admin_status: str, admin_notes: Optional[str] = None) -> Result:
        if admin_status not in {status.value for status in AdminStatus}:
            raise InvalidPayload(f"Unknown admin status {admin_status!r}")

        session = await self._require(session_id)
        result = await self._result(session_id)
        if result is None:
            raise ResultNotFound(session_id)

        if admin_status == AdminStatus.DISQUALIFIED.value and session.phase != SessionPhase.DISQUALIFIED.value:
            if not await self.machine.transition(session, SessionPhase.DISQUALIFIED.value, admin=True):
                await self.db.rollback()
                session = await self._require(session_id)
                if session.phase != SessionPhase.DISQUALIFIED.value:
                    raise InvalidTransition(session.phase, SessionPhase.DISQUALIFIED.value)
                result = await self._result(session_id)

        result.admin_status = admin_status
        result.admin_notes = admin_notes
        result.reviewed_by = reviewer.subject_id
        result.reviewed_at = self.clock()

        await self.db.commit()
        logger.info(f"Session {session_id} reviewed by {reviewer.subject_id}: {admin_status}")
        return result

    async def disqualify(self, session_id: str, reviewer: Identity) -> ExamSession:
        """End a live attempt without scoring it"""
        session = await self._require(session_id)
        if session.phase == SessionPhase.DISQUALIFIED.value:
            await self.db.commit()
            return session

        if not await self.machine.transition(session, SessionPhase.DISQUALIFIED.value, admin=True):
            await self.db.rollback()
            session = await self._require(session_id)
            if session.phase != SessionPhase.DISQUALIFIED.value:
                raise InvalidTransition(session.phase, SessionPhase.DISQUALIFIED.value)
            return session

        await self.db.commit()
        logger.warning(f"Session {session_id} disqualified by {reviewer.subject_id}")
        return await self._require(session_id)

    async def reassign(self, student_id: str, exam_id: str, reviewer: Identity) -> int:
        """Purge every session of a (student, exam) pair so the student can restart clean"""
        rows = await self.db.execute(
            select(ExamSession.id).where(ExamSession.student_id == student_id, ExamSession.exam_id == exam_id)
        )
        session_ids = list(rows.scalars().all())
        if not session_ids:
            await self.db.commit()
            return 0

        for model in (Result, QuestionResponse, ViolationEvent, ProctoringLog):
            await self.db.execute(
                delete(model).where(model.session_id.in_(session_ids)).execution_options(synchronize_session=False)
            )
        await self.db.execute(
            delete(ExamSession).where(ExamSession.id.in_(session_ids)).execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.warning(
            f"Reassigned exam {exam_id} for student {student_id} "
            f"({len(session_ids)} session(s) purged by {reviewer.subject_id})"
        )
        return len(session_ids)

    async def _require(self, session_id: str) -> ExamSession:
        session = await self.machine.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def _result(self, session_id: str) -> Optional[Result]:
        result = await self.db.execute(
            select(Result).where(Result.session_id == session_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()
