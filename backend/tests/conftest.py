"""
Pytest configuration for the exam proctor tests

Every test gets its own file-backed SQLite database so concurrent callers
really run on separate connections.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["CACHE_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-proctor-suite"
os.environ["VIOLATION_RATE_LIMIT_PER_MINUTE"] = "0"

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from examproctor.core.database import build_async_engine, build_session_factory, create_db_and_tables, get_async_db
from examproctor.core.exceptions import ExamNotFound, UpstreamUnavailable
from examproctor.core.security import create_access_token, ADMIN_ROLE
from examproctor.models.catalog import Exam, Question
from examproctor.services.catalog import Catalog, ExamConfig, QuestionView
from examproctor.services.scoring import AnswerKeyEntry
from examproctor.services.session_service import SessionLifecycleService
from examproctor.services.state_machine import SessionScope


class FakeClock:
    """Controllable replacement for utc_now"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeCatalog(Catalog):
    """In-memory catalog; flip ``available`` to simulate an outage"""

    def __init__(self):
        self.exams: Dict[str, ExamConfig] = {}
        self.keys: Dict[str, Dict[str, AnswerKeyEntry]] = {}
        self.papers: Dict[str, List[QuestionView]] = {}
        self.available = True

    def add_exam(
        self,
        exam_id: str = "midterm",
        duration_minutes: int = 60,
        max_violations: int = 10,
        questions: int = 20,
        negative_marking: float = 0.0,
    ) -> ExamConfig:
        exam = ExamConfig(
            exam_id=exam_id,
            title=f"Exam {exam_id}",
            duration_minutes=duration_minutes,
            max_violations=max_violations,
            max_tab_switches=3,
            total_marks=float(questions),
            auto_save_interval_seconds=30,
            negative_marking=negative_marking,
        )
        self.exams[exam_id] = exam
        self.keys[exam_id] = {
            f"q{i}": AnswerKeyEntry(question_id=f"q{i}", correct_option="A", marks=1.0)
            for i in range(1, questions + 1)
        }
        self.papers[exam_id] = [
            QuestionView(
                question_id=f"q{i}",
                question_text=f"Question {i}",
                options=["A", "B", "C", "D"],
                marks=1.0,
                section="Part A" if i <= questions // 2 else "Part B",
            )
            for i in range(1, questions + 1)
        ]
        return exam

    async def get_exam(self, exam_id: str) -> ExamConfig:
        if not self.available:
            raise UpstreamUnavailable("Exam catalog is unavailable")
        if exam_id not in self.exams:
            raise ExamNotFound(exam_id)
        return self.exams[exam_id]

    async def get_answer_key(self, exam_id: str) -> Dict[str, AnswerKeyEntry]:
        if not self.available:
            raise UpstreamUnavailable("Exam catalog is unavailable")
        return self.keys.get(exam_id, {})

    async def get_questions(self, exam_id: str) -> List[QuestionView]:
        if not self.available:
            raise UpstreamUnavailable("Exam catalog is unavailable")
        return self.papers.get(exam_id, [])


@pytest.fixture
async def engine(tmp_path):
    engine = build_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'proctor.db'}")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def catalog():
    catalog = FakeCatalog()
    catalog.add_exam()
    return catalog


@pytest.fixture
def service_for(session_factory, catalog, clock):
    """Opens a fresh database session per call, like one request each"""

    @asynccontextmanager
    async def factory(**kwargs):
        async with session_factory() as db:
            yield SessionLifecycleService(db, catalog, clock=clock, **kwargs)

    return factory


@pytest.fixture
def walk_to_in_progress(service_for):
    """Drive a session through the pre-exam checks"""

    async def walk(scope: SessionScope, photo_ref: str = "photos/identity.jpg"):
        steps = [
            ("compatibility_check", {"browser_info": "Firefox 128", "screen_resolution": "1920x1080"}),
            ("av_verification", {"photo_ref": photo_ref}),
            ("rules", {"accept_rules": True}),
        ]
        session = None
        for from_phase, payload in steps:
            async with service_for() as service:
                session = await service.advance(scope, from_phase, payload)
        return session

    return walk


@pytest.fixture
async def started(service_for, walk_to_in_progress):
    """A session for student s-1 sitting in in_progress at the clock's start"""
    async with service_for() as service:
        outcome = await service.start("s-1", "midterm")
    scope = SessionScope(student_id="s-1", session_id=outcome.session.id)
    await walk_to_in_progress(scope)
    return scope


async def seed_exam(
    session_factory,
    exam_id: str = "midterm",
    questions: int = 5,
    duration_minutes: int = 60,
    max_violations: Optional[int] = 3,
):
    async with session_factory() as db:
        db.add(Exam(
            id=exam_id,
            title="Midterm",
            duration_minutes=duration_minutes,
            max_violations=max_violations,
            max_tab_switches=3,
            total_marks=float(questions),
            auto_save_interval=30,
        ))
        for i in range(questions, 0, -1):
            db.add(Question(
                id=f"{exam_id}-q{i}",
                exam_id=exam_id,
                question_text=f"Question {i}",
                options=["A", "B", "C", "D"],
                correct_option="A",
                marks=1.0,
                section="Part A" if i <= 3 else "Part B",
                sort_order=i,
            ))
        await db.commit()


@pytest.fixture
async def client(session_factory):
    from examproctor.main import app

    await seed_exam(session_factory)

    async def override_get_async_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = override_get_async_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(subject_id: str, role: str = "student") -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject_id, role=role)}"}


@pytest.fixture
def student_headers():
    return auth_headers("s-1")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", role=ADMIN_ROLE)
