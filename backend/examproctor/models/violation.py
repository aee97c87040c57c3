from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class ViolationEvent(Base):
    __tablename__ = "violation_events"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    violation_type = Column(String, nullable=False)
    severity = Column(String, nullable=False, default="medium")
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utc_now)

    session = relationship("ExamSession", back_populates="violations")

    def __repr__(self):
        return f"<ViolationEvent {self.violation_type} for session {self.session_id}>"
