import enum
from sqlalchemy import Column, String, DateTime, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class SessionPhase(str, enum.Enum):
    CREATED = "created"
    COMPATIBILITY_CHECK = "compatibility_check"
    AV_VERIFICATION = "av_verification"
    RULES = "rules"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    DISQUALIFIED = "disqualified"


TERMINAL_PHASES = frozenset({
    SessionPhase.SUBMITTED.value,
    SessionPhase.AUTO_SUBMITTED.value,
    SessionPhase.DISQUALIFIED.value,
})


def active_key_for(student_id: str, exam_id: str) -> str:
    return f"{student_id}:{exam_id}"


class ExamSession(Base):
    __tablename__ = "exam_sessions"
    __table_args__ = (
        # set while non-terminal, NULL afterwards; NULLs never collide
        UniqueConstraint("active_key", name="uq_exam_sessions_active_key"),
    )

    id = Column(String(36), primary_key=True, index=True)
    student_id = Column(String, nullable=False, index=True)
    exam_id = Column(String, nullable=False, index=True)
    phase = Column(String, nullable=False, default=SessionPhase.CREATED.value)
    active_key = Column(String, nullable=True)

    started_at = Column(DateTime, nullable=True)
    deadline_at = Column(DateTime, nullable=True, index=True)
    duration_seconds = Column(Integer, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    time_remaining_seconds = Column(Integer, nullable=True)

    captured_identity_photo_ref = Column(String, nullable=True)
    client_metadata = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    responses = relationship("QuestionResponse", back_populates="session", cascade="all, delete-orphan")
    violations = relationship("ViolationEvent", back_populates="session", cascade="all, delete-orphan")
    proctoring_logs = relationship("ProctoringLog", back_populates="session", cascade="all, delete-orphan")
    result = relationship("Result", back_populates="session", uselist=False, cascade="all, delete-orphan")

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def __repr__(self):
        return f"<ExamSession {self.id} {self.student_id}/{self.exam_id} {self.phase}>"
