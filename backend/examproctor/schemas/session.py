from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import List, Optional, Dict, Any, Literal


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class StartSessionRequest(CamelModel):
    exam_id: str
    student_id: Optional[str] = None


class StartSessionResponse(CamelModel):
    session_id: str
    phase: str
    resumed: bool = False


class AdvancePayload(CamelModel):
    browser_info: Optional[str] = None
    screen_resolution: Optional[str] = None
    photo_ref: Optional[str] = None
    accept_rules: bool = False


class AdvanceRequest(CamelModel):
    from_phase: str
    payload: AdvancePayload = Field(default_factory=AdvancePayload)


class PhaseResponse(CamelModel):
    phase: str


class AnswerRequest(CamelModel):
    question_id: str
    selected_option: Optional[str] = None
    marked_for_review: bool = False


class OkResponse(CamelModel):
    ok: bool = True


class SavedAnswer(CamelModel):
    question_id: str
    selected_option: Optional[str] = None
    marked_for_review: bool
    answered_at: Optional[datetime] = None


class QuestionItem(CamelModel):
    question_id: str
    question_text: str
    options: List[str] = []
    marks: float
    section: Optional[str] = None
    selected_option: Optional[str] = None
    marked_for_review: bool = False


class ViolationRequest(CamelModel):
    type: str = Field(min_length=1, max_length=64)
    severity: Optional[Literal["low", "medium", "high"]] = None
    details: Optional[str] = None


class ViolationResponse(CamelModel):
    total_violations: int
    should_auto_submit: bool


class EventRequest(CamelModel):
    event_type: str = Field(min_length=1, max_length=64)
    event_data: Optional[Dict[str, Any]] = None


class CheckpointRequest(CamelModel):
    time_remaining_seconds: int = Field(ge=0)


class SubmitRequest(CamelModel):
    automatic: bool = False


class SubmitResponse(CamelModel):
    result_id: int
    redirect_phase: str
    already_submitted: bool = False


class TimeRemainingResponse(CamelModel):
    remaining_seconds: int
    phase: str
    auto_submitted: bool = False


class ExamPolicy(CamelModel):
    exam_id: str
    title: str
    duration_minutes: int
    max_violations: int
    max_tab_switches: int
    auto_save_interval_seconds: int


class SessionView(CamelModel):
    session_id: str
    exam_id: str
    phase: str
    started_at: Optional[datetime] = None
    deadline_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    remaining_seconds: int
    violation_counts: Dict[str, int] = {}
    policy: ExamPolicy


class ResultView(CamelModel):
    result_id: int
    session_id: str
    total_answered: int
    correct_answers: int
    score: float
    risk_score: float
    confidence_score: float
    admin_status: str
    created_at: Optional[datetime] = None


class ErrorResponse(CamelModel):
    error: str
    message: str
    redirect_phase: Optional[str] = None
    result_id: Optional[int] = None


