from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Any
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select

from ..core.cache import CacheManager, acached
from ..core.config import settings
from ..core.exceptions import ExamNotFound, UpstreamUnavailable
from ..models.catalog import Exam, Question
from .scoring import AnswerKeyEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExamConfig:
    exam_id: str
    title: str
    duration_minutes: int
    max_violations: int
    max_tab_switches: int
    total_marks: Optional[float]
    auto_save_interval_seconds: int
    negative_marking: float = 0.0

    @property
    def duration_seconds(self) -> int:
        return self.duration_minutes * 60


@dataclass(frozen=True)
class QuestionView:
    """A question as the candidate sees it. Carries no answer key."""
    question_id: str
    question_text: str
    options: List[str]
    marks: float
    section: Optional[str] = None


class Catalog(ABC):
    """Read-only source of exam configuration, question papers and answer keys"""

    @abstractmethod
    async def get_exam(self, exam_id: str) -> ExamConfig:
        ...

    @abstractmethod
    async def get_answer_key(self, exam_id: str) -> Dict[str, AnswerKeyEntry]:
        ...

    @abstractmethod
    async def get_questions(self, exam_id: str) -> List[QuestionView]:
        """Questions in paper order"""
        ...


class SqlCatalog(Catalog):
    """Catalog backed by the ``exams``/``questions`` tables, cached in Redis"""

    def __init__(self, db: AsyncSession, cache: Optional[CacheManager] = None):
        self.db = db
        self.cache = cache

    async def get_exam(self, exam_id: str) -> ExamConfig:
        data = await self._exam_config(exam_id)
        if not data:
            raise ExamNotFound(exam_id)
        return ExamConfig(**data)

    async def get_answer_key(self, exam_id: str) -> Dict[str, AnswerKeyEntry]:
        rows = await self._answer_key(exam_id)
        return {row["question_id"]: AnswerKeyEntry(**row) for row in rows}

    async def get_questions(self, exam_id: str) -> List[QuestionView]:
        rows = await self._questions(exam_id)
        return [QuestionView(**row) for row in rows]

    @acached(ttl=300, key_prefix="exam_config")
    async def _exam_config(self, exam_id: str) -> Optional[Dict[str, Any]]:
        try:
            exam = await self.db.scalar(select(Exam).where(Exam.id == exam_id, Exam.is_active.is_(True)))
        except SQLAlchemyError as e:
            logger.error(f"Catalog lookup failed for exam {exam_id}: {e}", exc_info=True)
            raise UpstreamUnavailable("Exam catalog is unavailable") from e

        if exam is None:
            return None

        return asdict(ExamConfig(
            exam_id=exam.id,
            title=exam.title,
            duration_minutes=exam.duration_minutes,
            max_violations=exam.max_violations or settings.default_max_violations,
            max_tab_switches=exam.max_tab_switches,
            total_marks=exam.total_marks,
            auto_save_interval_seconds=exam.auto_save_interval,
            negative_marking=exam.negative_marking or 0.0,
        ))

    @acached(ttl=300, key_prefix="answer_key")
    async def _answer_key(self, exam_id: str) -> list:
        try:
            result = await self.db.execute(
                select(Question.id, Question.correct_option, Question.marks)
                .where(Question.exam_id == exam_id)
                .order_by(Question.sort_order)
            )
        except SQLAlchemyError as e:
            logger.error(f"Answer key lookup failed for exam {exam_id}: {e}", exc_info=True)
            raise UpstreamUnavailable("Exam catalog is unavailable") from e

        return [
            {"question_id": question_id, "correct_option": correct_option, "marks": float(marks)}
            for question_id, correct_option, marks in result.all()
        ]

    @acached(ttl=300, key_prefix="questions")
    async def _questions(self, exam_id: str) -> list:
        try:
            result = await self.db.execute(
                select(Question.id, Question.question_text, Question.options, Question.marks, Question.section)
                .where(Question.exam_id == exam_id)
                .order_by(Question.sort_order)
            )
        except SQLAlchemyError as e:
            logger.error(f"Question paper lookup failed for exam {exam_id}: {e}", exc_info=True)
            raise UpstreamUnavailable("Exam catalog is unavailable") from e

        return [
            {
                "question_id": question_id,
                "question_text": question_text,
                "options": list(options or []),
                "marks": float(marks),
                "section": section,
            }
            for question_id, question_text, options, marks, section in result.all()
        ]

    async def invalidate(self, exam_id: str) -> None:
        """Drop cached entries after the exam or its questions change"""
        if self.cache is None:
            return
        await self.cache.adelete_pattern(f"exam_config:{exam_id}")
        await self.cache.adelete_pattern(f"answer_key:{exam_id}")
        await self.cache.adelete_pattern(f"questions:{exam_id}")
