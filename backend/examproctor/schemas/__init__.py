from .session import (
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
    ErrorResponse,
)
from .admin import (
    SessionRow,
    SessionDetailResponse,
    ResultReview,
    ReviewRequest,
    ReassignRequest,
    ReassignResponse,
)

__all__ = [
    "StartSessionRequest",
    "StartSessionResponse",
    "AdvanceRequest",
    "PhaseResponse",
    "AnswerRequest",
    "OkResponse",
    "SavedAnswer",
    "QuestionItem",
    "ViolationRequest",
    "ViolationResponse",
    "EventRequest",
    "CheckpointRequest",
    "SubmitRequest",
    "SubmitResponse",
    "TimeRemainingResponse",
    "SessionView",
    "ExamPolicy",
    "ResultView",
    "ErrorResponse",
    "SessionRow",
    "SessionDetailResponse",
    "ResultReview",
    "ReviewRequest",
    "ReassignRequest",
    "ReassignResponse",
]
