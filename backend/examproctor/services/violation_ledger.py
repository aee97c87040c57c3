from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Dict, List, Optional
from datetime import datetime
import logging

from ..core.exceptions import InvalidPayload, InvalidTransition, SessionNotFound, SessionTerminal
from ..models.session import ExamSession, SessionPhase, TERMINAL_PHASES
from ..models.violation import ViolationEvent
from ..utils.timezone import utc_now
from .rate_limit import ViolationRateLimiter, UnlimitedViolations

logger = logging.getLogger(__name__)

SEVERITIES = ("low", "medium", "high")
DEFAULT_SEVERITY = "medium"


def threshold_reached(total: int, max_violations: int) -> bool:
    return total >= max_violations


class ViolationLedger:
    """Append-only record of client-reported integrity events.

    Events are untrusted signals and are only aggregated. The ledger reports
    whether the auto-submit threshold is reached; acting on it is the
    caller's job.
    """

    def __init__(self, db: AsyncSession, rate_limiter: Optional[ViolationRateLimiter] = None):
        self.db = db
        self.rate_limiter = rate_limiter or UnlimitedViolations()

    async def record(
        self,
        session_id: str,
        violation_type: str,
        severity: Optional[str] = None,
        details: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> int:
        """Append an event and return the session's updated total"""
        phase = await self.db.scalar(select(ExamSession.phase).where(ExamSession.id == session_id))
        if phase is None:
            raise SessionNotFound(session_id)
        if phase in TERMINAL_PHASES:
            raise SessionTerminal(session_id, phase)
        if phase != SessionPhase.IN_PROGRESS.value:
            raise InvalidTransition(phase, "violation")

        severity = severity or DEFAULT_SEVERITY
        if severity not in SEVERITIES:
            raise InvalidPayload(f"Unknown severity {severity!r}")

        await self.rate_limiter.admit(session_id)

        self.db.add(ViolationEvent(
            session_id=session_id,
            violation_type=violation_type,
            severity=severity,
            details=details,
            timestamp=at or utc_now(),
        ))
        await self.db.flush()

        total = await self.total(session_id)
        logger.info(f"Violation {violation_type}/{severity} recorded for session {session_id} (total {total})")
        return total

    async def total(self, session_id: str) -> int:
        count = await self.db.scalar(
            select(func.count(ViolationEvent.id)).where(ViolationEvent.session_id == session_id)
        )
        return int(count or 0)

    async def counts_by_type(self, session_id: str) -> Dict[str, int]:
        rows = await self.db.execute(
            select(ViolationEvent.violation_type, func.count(ViolationEvent.id))
            .where(ViolationEvent.session_id == session_id)
            .group_by(ViolationEvent.violation_type)
        )
        return {violation_type: int(count) for violation_type, count in rows.all()}

    async def counts_by_severity(self, session_id: str) -> Dict[str, int]:
        stats = {severity: 0 for severity in SEVERITIES}
        rows = await self.db.execute(
            select(ViolationEvent.severity, func.count(ViolationEvent.id))
            .where(ViolationEvent.session_id == session_id)
            .group_by(ViolationEvent.severity)
        )
        for severity, count in rows.all():
            stats[severity] = int(count)
        return stats

    async def events(self, session_id: str) -> List[ViolationEvent]:
        result = await self.db.execute(
            select(ViolationEvent)
            .where(ViolationEvent.session_id == session_id)
            .order_by(ViolationEvent.timestamp, ViolationEvent.id)
        )
        return list(result.scalars().all())

    async def should_auto_submit(self, session_id: str, max_violations: int) -> bool:
        return threshold_reached(await self.total(session_id), max_violations)
