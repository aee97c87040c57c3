from sqlalchemy import Column, String, Integer, Float, Boolean, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.timezone import utc_now


class Exam(Base):
    """Read-only exam configuration served through the catalog"""
    __tablename__ = "exams"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    max_violations = Column(Integer, nullable=True)
    max_tab_switches = Column(Integer, nullable=False, default=3)
    total_marks = Column(Float, nullable=True)
    auto_save_interval = Column(Integer, nullable=False, default=30)
    negative_marking = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utc_now)

    questions = relationship("Question", back_populates="exam", order_by="Question.sort_order")


class Question(Base):
    __tablename__ = "questions"

    id = Column(String, primary_key=True, index=True)
    exam_id = Column(String, ForeignKey("exams.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)
    correct_option = Column(String, nullable=True)
    marks = Column(Float, nullable=False, default=1.0)
    section = Column(String, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="questions")
