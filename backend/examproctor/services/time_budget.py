"""
Server-side time accounting for exam sessions.

The deadline is always derived from the stored start timestamp plus the exam
duration. Values reported by the client are display hints and never feed in.
"""
from datetime import datetime, timedelta
from typing import Optional
import math

from ..models.session import ExamSession


def deadline_for(started_at: datetime, duration_seconds: int) -> datetime:
    return started_at + timedelta(seconds=duration_seconds)


def remaining_seconds(started_at: Optional[datetime], duration_seconds: int, now: datetime) -> int:
    """Whole seconds left, clamped to [0, duration_seconds]"""
    if started_at is None:
        return duration_seconds

    elapsed = (now - started_at).total_seconds()
    left = math.floor(duration_seconds - elapsed)
    return max(0, min(duration_seconds, left))


def remaining(session: ExamSession, duration_seconds: int, now: datetime) -> int:
    """Remaining time for a session.

    Sessions that never entered the answering phase get the full configured
    duration. Once started, the duration snapshotted at start wins over the
    current catalog value so an edited exam cannot move a running deadline.
    """
    if session.started_at is None:
        return duration_seconds
    return remaining_seconds(session.started_at, session.duration_seconds or duration_seconds, now)


def is_expired(session: ExamSession, duration_seconds: int, now: datetime) -> bool:
    return session.started_at is not None and remaining(session, duration_seconds, now) == 0
