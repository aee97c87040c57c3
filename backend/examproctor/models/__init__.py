from .catalog import Exam, Question
from .session import ExamSession, SessionPhase, TERMINAL_PHASES, active_key_for
from .response import QuestionResponse
from .violation import ViolationEvent
from .proctoring_log import ProctoringLog
from .result import Result, AdminStatus

__all__ = [
    "Exam",
    "Question",
    "ExamSession",
    "SessionPhase",
    "TERMINAL_PHASES",
    "active_key_for",
    "QuestionResponse",
    "ViolationEvent",
    "ProctoringLog",
    "Result",
    "AdminStatus",
]
