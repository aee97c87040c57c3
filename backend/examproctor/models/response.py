from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class QuestionResponse(Base):
    __tablename__ = "responses"
    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_responses_session_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(String, nullable=False)
    selected_option = Column(String, nullable=True)
    marked_for_review = Column(Boolean, nullable=False, default=False)
    answered_at = Column(DateTime, default=utc_now)

    session = relationship("ExamSession", back_populates="responses")
