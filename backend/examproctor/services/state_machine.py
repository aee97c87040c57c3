"""
Phase transitions for a single exam attempt.

Every write goes through a conditional update guarded on the phase the caller
last observed, so of two concurrent writers leaving the same phase exactly one
succeeds. The loser re-reads and decides what to do with the new state.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from ..core.exceptions import InvalidTransition, SessionNotFound, SessionTerminal
from ..models.session import ExamSession, SessionPhase, TERMINAL_PHASES
from ..models.result import Result
from .time_budget import deadline_for

logger = logging.getLogger(__name__)

P = SessionPhase

# forward edges a candidate may take
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    P.CREATED.value: frozenset({P.COMPATIBILITY_CHECK.value, P.DISQUALIFIED.value}),
    P.COMPATIBILITY_CHECK.value: frozenset({P.AV_VERIFICATION.value, P.DISQUALIFIED.value}),
    P.AV_VERIFICATION.value: frozenset({P.RULES.value, P.DISQUALIFIED.value}),
    # rules -> rules is a photo recapture re-entering the rules page
    P.RULES.value: frozenset({P.RULES.value, P.IN_PROGRESS.value, P.DISQUALIFIED.value}),
    P.IN_PROGRESS.value: frozenset({P.SUBMITTED.value, P.AUTO_SUBMITTED.value, P.DISQUALIFIED.value}),
}

# administrative review may still disqualify a scored attempt
ADMIN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    P.SUBMITTED.value: frozenset({P.DISQUALIFIED.value}),
    P.AUTO_SUBMITTED.value: frozenset({P.DISQUALIFIED.value}),
}

# the phase an "advance" request leaves from -> the phase it leads to
ADVANCE_STEPS: Dict[str, str] = {
    P.CREATED.value: P.COMPATIBILITY_CHECK.value,
    P.COMPATIBILITY_CHECK.value: P.AV_VERIFICATION.value,
    P.AV_VERIFICATION.value: P.RULES.value,
    P.RULES.value: P.IN_PROGRESS.value,
}


@dataclass(frozen=True)
class SessionScope:
    """Explicit identity-and-session value handed to every candidate call"""
    student_id: str
    session_id: str
    # set for admins, who may act on any student's session
    any_student: bool = False


def is_terminal(phase: str) -> bool:
    return phase in TERMINAL_PHASES


def can_transition(current: str, target: str, admin: bool = False) -> bool:
    if target in TRANSITIONS.get(current, frozenset()):
        return True
    return admin and target in ADMIN_TRANSITIONS.get(current, frozenset())


def resolve_advance(current: str, from_phase: str) -> Tuple[str, bool]:
    """Work out where an advance request leads.

    Returns ``(target, replay)``. ``replay`` is true when the session is
    already in the target phase because an identical request won earlier, in
    which case nothing should be written.
    """
    if is_terminal(current):
        raise InvalidTransition(current, from_phase)

    target = ADVANCE_STEPS.get(from_phase)
    if target is None:
        raise InvalidTransition(current, from_phase)

    if current == from_phase:
        return target, False
    if current == target:
        # re-posting the photo from the rules page re-enters rules
        if can_transition(current, target) and from_phase == P.AV_VERIFICATION.value:
            return target, False
        return target, True
    raise InvalidTransition(current, from_phase)


class SessionStateMachine:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, session_id: str) -> Optional[ExamSession]:
        result = await self.db.execute(
            select(ExamSession)
            .where(ExamSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def require_session(self, scope: SessionScope) -> ExamSession:
        session = await self.load(scope.session_id)
        # another student's session is reported as missing, not forbidden
        if session is None or (session.student_id != scope.student_id and not scope.any_student):
            raise SessionNotFound(scope.session_id)
        return session

    async def require_active(self, scope: SessionScope) -> ExamSession:
        session = await self.require_session(scope)
        if session.is_terminal:
            raise SessionTerminal(session.id, session.phase, await self.result_id_for(session.id))
        return session

    def require_phase(self, session: ExamSession, phase: SessionPhase, requested: str) -> None:
        if session.phase != phase.value:
            raise InvalidTransition(session.phase, requested)

    async def result_id_for(self, session_id: str) -> Optional[int]:
        return await self.db.scalar(select(Result.id).where(Result.session_id == session_id))

    async def transition(self, session: ExamSession, target: str, admin: bool = False, **values) -> bool:
        """Move ``session`` out of the phase it was loaded in.

        Returns False when another writer changed the phase first; the caller
        must re-read the session before deciding anything else.
        """
        if not can_transition(session.phase, target, admin=admin):
            raise InvalidTransition(session.phase, target)

        values["phase"] = target
        if is_terminal(target):
            values["active_key"] = None

        result = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == session.id, ExamSession.phase == session.phase)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        if applied:
            logger.info(f"Session {session.id}: {session.phase} -> {target}")
        else:
            logger.warning(f"Session {session.id}: lost race leaving {session.phase} for {target}")
        return applied

    async def enter_in_progress(self, session: ExamSession, duration_seconds: int, now: datetime) -> bool:
        """The only transition that stamps the start time and the deadline"""
        return await self.transition(
            session,
            P.IN_PROGRESS.value,
            started_at=now,
            deadline_at=deadline_for(now, duration_seconds),
            duration_seconds=duration_seconds,
            time_remaining_seconds=duration_seconds,
        )

    async def claim_in_progress(self, session: ExamSession) -> bool:
        """Take the session row for a write that must not interleave with submission"""
        result = await self.db.execute(
            update(ExamSession)
            .where(ExamSession.id == session.id, ExamSession.phase == P.IN_PROGRESS.value)
            .values(phase=P.IN_PROGRESS.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
