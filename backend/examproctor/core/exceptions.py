"""
Typed failures raised by the exam session core.

Each carries enough context for the API layer to send the candidate to the
phase their session is actually in instead of showing a broken page.
"""
from typing import Optional


class ProctorError(Exception):
    """Base class for every failure surfaced by the core"""

    code = "proctor_error"

    def __init__(self, message: str, redirect_phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.redirect_phase = redirect_phase


class SessionNotFound(ProctorError):
    code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Exam session {session_id} not found")
        self.session_id = session_id


class SessionTerminal(ProctorError):
    code = "session_terminal"

    def __init__(self, session_id: str, phase: str, result_id: Optional[int] = None):
        super().__init__(f"Exam session {session_id} already terminated ({phase})", redirect_phase=phase)
        self.session_id = session_id
        self.phase = phase
        self.result_id = result_id


class InvalidTransition(ProctorError):
    code = "invalid_transition"

    def __init__(self, current_phase: str, requested: str):
        super().__init__(
            f"Cannot move from {current_phase} via {requested}",
            redirect_phase=current_phase,
        )
        self.current_phase = current_phase
        self.requested = requested


class DuplicateSession(ProctorError):
    code = "duplicate_session"

    def __init__(self, student_id: str, exam_id: str):
        super().__init__(f"Student {student_id} already has an active session for exam {exam_id}")
        self.student_id = student_id
        self.exam_id = exam_id


class ScoringAlreadyPerformed(ProctorError):
    code = "scoring_already_performed"

    def __init__(self, session_id: str, result_id: Optional[int]):
        super().__init__(f"Exam session {session_id} has already been scored")
        self.session_id = session_id
        self.result_id = result_id


class UpstreamUnavailable(ProctorError):
    code = "upstream_unavailable"
    retry_after = 5


class ExamNotFound(ProctorError):
    code = "exam_not_found"

    def __init__(self, exam_id: str):
        super().__init__(f"Exam {exam_id} not found or inactive")
        self.exam_id = exam_id


class QuestionNotFound(ProctorError):
    code = "question_not_found"

    def __init__(self, question_id: str, exam_id: str):
        super().__init__(f"Question {question_id} does not belong to exam {exam_id}")
        self.question_id = question_id


class ViolationRateLimited(ProctorError):
    code = "violation_rate_limited"

    def __init__(self, retry_after: int):
        super().__init__("Too many violation reports, slow down")
        self.retry_after = retry_after


class PermissionDenied(ProctorError):
    code = "permission_denied"


class InvalidPayload(ProctorError):
    code = "invalid_payload"


class ResultNotFound(ProctorError):
    code = "result_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"No result recorded for exam session {session_id}")
        self.session_id = session_id
