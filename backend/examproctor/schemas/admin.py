from pydantic import field_serializer
from datetime import datetime
from typing import Optional, Dict, List, Literal

from .session import CamelModel
from ..utils.timezone import format_display_time


class ResultReview(CamelModel):
    result_id: int
    total_answered: int
    correct_answers: int
    score: float
    violations_count: int
    risk_score: float
    confidence_score: float
    admin_status: str
    admin_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class SessionRow(CamelModel):
    session_id: str
    student_id: str
    exam_id: str
    phase: str
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    violation_count: int = 0
    score: Optional[float] = None
    risk_score: Optional[float] = None
    confidence_score: Optional[float] = None
    admin_status: Optional[str] = None

    created_at_local: Optional[str] = None

    @field_serializer("created_at_local")
    def serialize_created_at_local(self, value):
        return format_display_time(self.created_at)


class ViolationRow(CamelModel):
    id: int
    violation_type: str
    severity: str
    details: Optional[str] = None
    timestamp: datetime


class ResponseRow(CamelModel):
    question_id: str
    selected_option: Optional[str] = None
    marked_for_review: bool
    answered_at: Optional[datetime] = None


class LogRow(CamelModel):
    id: int
    event_type: Optional[str] = None
    event_data: Optional[str] = None
    timestamp: datetime


class SessionDetailResponse(CamelModel):
    session: SessionRow
    identity_photo_ref: Optional[str] = None
    client_metadata: Optional[str] = None
    result: Optional[ResultReview] = None
    violations: List[ViolationRow] = []
    violation_summary: Dict[str, int] = {}
    severity_summary: Dict[str, int] = {}
    responses: List[ResponseRow] = []
    logs: List[LogRow] = []


class ReviewRequest(CamelModel):
    admin_status: Literal["pending", "approved", "flagged", "disqualified"]
    admin_notes: Optional[str] = None


class ReassignRequest(CamelModel):
    student_id: str
    exam_id: str


class ReassignResponse(CamelModel):
    purged_sessions: int
