from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class ProctoringLog(Base):
    __tablename__ = "proctoring_logs"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("exam_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, default=utc_now)
    event_type = Column(String, index=True)
    event_data = Column(Text, nullable=True)

    session = relationship("ExamSession", back_populates="proctoring_logs")
