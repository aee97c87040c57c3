import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Float, Text, Integer
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class AdminStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    FLAGGED = "flagged"
    DISQUALIFIED = "disqualified"


class Result(Base):
    """Scoring record written once at submission; only review fields change later"""
    __tablename__ = "results"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, unique=True)

    total_answered = Column(Integer, nullable=False, default=0)
    correct_answers = Column(Integer, nullable=False, default=0)
    score = Column(Float, nullable=False, default=0.0)
    violations_count = Column(Integer, nullable=False, default=0)
    risk_score = Column(Float, nullable=False, default=0.0)
    confidence_score = Column(Float, nullable=False, default=100.0)

    admin_status = Column(String, nullable=False, default=AdminStatus.PENDING.value)
    admin_notes = Column(Text, nullable=True)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now)

    session = relationship("ExamSession", back_populates="result")
