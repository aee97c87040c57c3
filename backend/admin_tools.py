#!/usr/bin/env python3
"""
Admin tools for the Exam Proctor API

    python admin_tools.py seed-exam --file exam.json
    python admin_tools.py sessions --exam-id midterm --phase in_progress
    python admin_tools.py reassign --student-id s-1 --exam-id midterm
    python admin_tools.py issue-token --subject s-1 --role student
"""

import os
import argparse
import asyncio
import json
from datetime import timedelta
from typing import Optional, Dict, Any

from dotenv import load_dotenv
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

from sqlalchemy import delete

from examproctor.core.cache import cache
from examproctor.core.database import AsyncSessionLocal, async_engine, create_db_and_tables
from examproctor.core.security import Identity, create_access_token, ADMIN_ROLE, STUDENT_ROLE
from examproctor.models.catalog import Exam, Question
from examproctor.services.catalog import SqlCatalog
from examproctor.services.review_service import ReviewService
from examproctor.utils.timezone import format_display_time

OPERATOR = Identity(subject_id="admin-cli", role=ADMIN_ROLE)


def load_exam_file(path: str) -> Dict[str, Any]:
    """Read an exam definition: {"id", "title", "durationMinutes", ..., "questions": [...]}"""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)

    for key in ("id", "title", "questions"):
        if key not in data:
            raise ValueError(f"Exam file is missing '{key}'")
    for index, question in enumerate(data["questions"]):
        if "id" not in question or "text" not in question:
            raise ValueError(f"Question #{index + 1} needs 'id' and 'text'")
    return data


async def seed_exam(data: Dict[str, Any]) -> int:
    """Insert or replace an exam and its questions. Returns the question count."""
    await create_db_and_tables()
    async with AsyncSessionLocal() as db:
        exam = await db.get(Exam, data["id"])
        if exam is None:
            exam = Exam(id=data["id"])
            db.add(exam)

        exam.title = data["title"]
        exam.duration_minutes = int(data.get("durationMinutes", 60))
        exam.max_violations = data.get("maxViolations")
        exam.max_tab_switches = int(data.get("maxTabSwitches", 3))
        exam.total_marks = data.get("totalMarks")
        exam.auto_save_interval = int(data.get("autoSaveIntervalSeconds", 30))
        exam.negative_marking = float(data.get("negativeMarking", 0.0))
        exam.is_active = bool(data.get("isActive", True))

        await db.execute(delete(Question).where(Question.exam_id == exam.id))
        for order, question in enumerate(data["questions"]):
            db.add(Question(
                id=question["id"],
                exam_id=exam.id,
                question_text=question["text"],
                options=question.get("options"),
                correct_option=question.get("correctOption"),
                marks=float(question.get("marks", 1.0)),
                section=question.get("section"),
                sort_order=order,
            ))
        await db.commit()

        await SqlCatalog(db, cache=cache).invalidate(exam.id)
    return len(data["questions"])


async def list_sessions(limit: int, phase: Optional[str], exam_id: Optional[str]) -> None:
    async with AsyncSessionLocal() as db:
        summaries = await ReviewService(db).list_sessions(limit=limit, phase=phase, exam_id=exam_id)

    if not summaries:
        print("No sessions found")
        return

    print(f"{'SESSION':36}  {'STUDENT':16}  {'EXAM':16}  {'PHASE':20}  {'VIOL':>4}  {'SCORE':>6}  {'RISK':>6}  CREATED")
    for summary in summaries:
        session, result = summary.session, summary.result
        score = f"{result.score:.2f}" if result else "-"
        risk = f"{result.risk_score:.2f}" if result else "-"
        print(
            f"{session.id:36}  {session.student_id:16}  {session.exam_id:16}  {session.phase:20}  "
            f"{summary.violation_count:>4}  {score:>6}  {risk:>6}  {format_display_time(session.created_at)}"
        )


async def reassign(student_id: str, exam_id: str) -> int:
    async with AsyncSessionLocal() as db:
        return await ReviewService(db).reassign(student_id, exam_id, OPERATOR)


async def run(coro):
    try:
        return await coro
    finally:
        await cache.aclose()
        await async_engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Admin tools for the Exam Proctor API")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    seed_parser = subparsers.add_parser('seed-exam', help='Create or replace an exam from a JSON file')
    seed_parser.add_argument('--file', required=True, help='Path to the exam JSON file')

    sessions_parser = subparsers.add_parser('sessions', help='List recent exam sessions')
    sessions_parser.add_argument('--limit', type=int, default=50, help='Maximum rows')
    sessions_parser.add_argument('--phase', help='Only sessions in this phase')
    sessions_parser.add_argument('--exam-id', help='Only sessions of this exam')

    reassign_parser = subparsers.add_parser('reassign', help="Purge a student's attempts so they can restart")
    reassign_parser.add_argument('--student-id', required=True)
    reassign_parser.add_argument('--exam-id', required=True)

    token_parser = subparsers.add_parser('issue-token', help='Issue a bearer token for development')
    token_parser.add_argument('--subject', required=True, help='Student or admin id')
    token_parser.add_argument('--role', choices=[STUDENT_ROLE, ADMIN_ROLE], default=STUDENT_ROLE)
    token_parser.add_argument('--minutes', type=int, help='Lifetime in minutes')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'seed-exam':
        data = load_exam_file(args.file)
        count = asyncio.run(run(seed_exam(data)))
        print(f"Seeded exam {data['id']} with {count} question(s)")

    elif args.command == 'sessions':
        asyncio.run(run(list_sessions(args.limit, args.phase, args.exam_id)))

    elif args.command == 'reassign':
        purged = asyncio.run(run(reassign(args.student_id, args.exam_id)))
        print(f"Purged {purged} session(s) of student {args.student_id} for exam {args.exam_id}")

    elif args.command == 'issue-token':
        expires = timedelta(minutes=args.minutes) if args.minutes else None
        print(create_access_token(args.subject, role=args.role, expires_delta=expires))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
