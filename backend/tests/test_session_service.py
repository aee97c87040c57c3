"""
Tests for the session lifecycle service
"""
import asyncio

import pytest
from sqlalchemy import func, select

from examproctor.core.exceptions import (
    ExamNotFound,
    InvalidPayload,
    InvalidTransition,
    QuestionNotFound,
    SessionNotFound,
    SessionTerminal,
    UpstreamUnavailable,
)
from examproctor.models.proctoring_log import ProctoringLog
from examproctor.models.result import Result
from examproctor.models.session import ExamSession
from examproctor.models.violation import ViolationEvent
from examproctor.services.state_machine import SessionScope


async def count_rows(session_factory, model, **filters):
    async with session_factory() as db:
        query = select(func.count()).select_from(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        return await db.scalar(query)


class TestStart:
    """Creating and resuming sessions"""

    async def test_new_session_lands_on_compatibility_check(self, service_for):
        async with service_for() as service:
            outcome = await service.start("s-1", "midterm")

        assert not outcome.resumed
        assert outcome.session.phase == "compatibility_check"
        assert outcome.session.active_key == "s-1:midterm"

    async def test_second_start_resumes(self, service_for):
        async with service_for() as service:
            first = await service.start("s-1", "midterm")
        async with service_for() as service:
            second = await service.start("s-1", "midterm")

        assert second.resumed
        assert second.session.id == first.session.id

    async def test_unknown_exam(self, service_for):
        async with service_for() as service:
            with pytest.raises(ExamNotFound):
                await service.start("s-1", "nope")

    async def test_catalog_outage_is_surfaced(self, service_for, catalog):
        catalog.available = False
        async with service_for() as service:
            with pytest.raises(UpstreamUnavailable):
                await service.start("s-1", "midterm")

    async def test_concurrent_starts_create_one_session(self, service_for, session_factory):
        async def start_once():
            async with service_for() as service:
                outcome = await service.start("s-1", "midterm")
                return outcome.session.id

        session_ids = await asyncio.gather(*[start_once() for _ in range(5)])

        assert len(set(session_ids)) == 1
        assert await count_rows(session_factory, ExamSession, student_id="s-1") == 1

    async def test_losing_insert_race_resumes_winner(self, service_for):
        async with service_for() as service:
            winner = await service.start("s-1", "midterm")

        async with service_for() as service:
            lookup = service._find_active
            calls = []

            async def stale_lookup(student_id, exam_id):
                # the first lookup ran before the winner committed
                calls.append(student_id)
                if len(calls) == 1:
                    return None
                return await lookup(student_id, exam_id)

            service._find_active = stale_lookup
            outcome = await service.start("s-1", "midterm")

        assert outcome.resumed
        assert outcome.session.id == winner.session.id

    async def test_resume_mid_av_verification(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)
        async with service_for() as service:
            await service.advance(scope, "compatibility_check", {"browser_info": "Chrome"})

        # a fresh service instance shares nothing with the previous ones
        async with service_for() as service:
            outcome = await service.start("s-1", "midterm")

        assert outcome.session.id == created.session.id
        assert outcome.session.phase == "av_verification"

    async def test_start_after_finishing_opens_new_attempt(self, service_for, started):
        async with service_for() as service:
            await service.submit(started)
        async with service_for() as service:
            outcome = await service.start("s-1", "midterm")

        assert not outcome.resumed
        assert outcome.session.id != started.session_id

    async def test_start_on_expired_session_auto_submits_it(self, service_for, started, clock):
        clock.advance(minutes=61)
        async with service_for() as service:
            outcome = await service.start("s-1", "midterm")

        assert outcome.session.id == started.session_id
        assert outcome.session.phase == "auto_submitted"


class TestAdvance:
    """Pre-exam phase flow"""

    async def test_full_walk_stamps_start_and_deadline(self, service_for, walk_to_in_progress, clock):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)

        session = await walk_to_in_progress(scope, photo_ref="photos/s-1.jpg")

        assert session.phase == "in_progress"
        assert session.started_at == clock.now
        assert session.duration_seconds == 3600
        assert (session.deadline_at - session.started_at).total_seconds() == 3600
        assert session.captured_identity_photo_ref == "photos/s-1.jpg"
        assert "Firefox" in session.client_metadata

    async def test_rules_require_photo(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)
        async with service_for() as service:
            await service.advance(scope, "compatibility_check")
        async with service_for() as service:
            with pytest.raises(InvalidPayload):
                await service.advance(scope, "av_verification", {})

    async def test_exam_requires_accepting_rules(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)
        async with service_for() as service:
            await service.advance(scope, "compatibility_check")
        async with service_for() as service:
            await service.advance(scope, "av_verification", {"photo_ref": "p.jpg"})
        async with service_for() as service:
            with pytest.raises(InvalidPayload):
                await service.advance(scope, "rules", {"accept_rules": False})

    async def test_replayed_advance_returns_current_phase(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)
        async with service_for() as service:
            await service.advance(scope, "compatibility_check")
        async with service_for() as service:
            session = await service.advance(scope, "compatibility_check")

        assert session.phase == "av_verification"

    async def test_photo_recapture_keeps_rules_phase(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)
        async with service_for() as service:
            await service.advance(scope, "compatibility_check")
        async with service_for() as service:
            await service.advance(scope, "av_verification", {"photo_ref": "first.jpg"})
        async with service_for() as service:
            session = await service.advance(scope, "av_verification", {"photo_ref": "second.jpg"})

        assert session.phase == "rules"
        assert session.captured_identity_photo_ref == "second.jpg"

    async def test_other_student_cannot_touch_session(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        async with service_for() as service:
            with pytest.raises(SessionNotFound):
                await service.advance(SessionScope("s-2", created.session.id), "compatibility_check")


class TestAnswers:
    """Autosave semantics"""

    async def test_answer_before_exam_starts_is_rejected(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope("s-1", created.session.id)
        async with service_for() as service:
            with pytest.raises(InvalidTransition) as exc_info:
                await service.save_answer(scope, "q1", "A")
        assert exc_info.value.redirect_phase == "compatibility_check"

    async def test_last_write_wins(self, service_for, started):
        async with service_for() as service:
            await service.save_answer(started, "q1", "A")
        async with service_for() as service:
            await service.save_answer(started, "q1", "B", marked_for_review=True)
        async with service_for() as service:
            await service.save_answer(started, "q2", "C")
        async with service_for() as service:
            answers = await service.get_answers(started)

        by_question = {a.question_id: a for a in answers}
        assert len(answers) == 2
        assert by_question["q1"].selected_option == "B"
        assert by_question["q1"].marked_for_review is True
        assert by_question["q2"].selected_option == "C"

    async def test_unknown_question(self, service_for, started):
        async with service_for() as service:
            with pytest.raises(QuestionNotFound):
                await service.save_answer(started, "q999", "A")

    async def test_answer_after_deadline_auto_submits(self, service_for, started, clock):
        async with service_for() as service:
            await service.save_answer(started, "q1", "A")
        clock.advance(minutes=60, seconds=1)

        async with service_for() as service:
            with pytest.raises(SessionTerminal) as exc_info:
                await service.save_answer(started, "q2", "A")

        assert exc_info.value.redirect_phase == "auto_submitted"
        assert exc_info.value.result_id is not None
        async with service_for() as service:
            result = await service.get_result(started)
        assert result.correct_answers == 1


class TestQuestionPaper:
    """Questions served to the candidate while answering"""

    async def test_paper_in_order_with_saved_answers(self, service_for, started):
        async with service_for() as service:
            await service.save_answer(started, "q2", "C", marked_for_review=True)
        async with service_for() as service:
            paper = await service.get_questions(started)

        assert [item.question.question_id for item in paper] == [f"q{i}" for i in range(1, 21)]
        assert paper[0].question.section == "Part A"
        assert paper[19].question.section == "Part B"
        assert paper[0].response is None
        assert paper[1].response.selected_option == "C"
        assert paper[1].response.marked_for_review is True
        assert not hasattr(paper[0].question, "correct_option")

    async def test_hidden_before_exam_starts(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope(student_id="s-1", session_id=created.session.id)

        async with service_for() as service:
            with pytest.raises(InvalidTransition) as exc_info:
                await service.get_questions(scope)
        assert exc_info.value.redirect_phase == "compatibility_check"

    async def test_after_deadline_auto_submits(self, service_for, started, clock):
        clock.advance(minutes=61)
        async with service_for() as service:
            with pytest.raises(SessionTerminal) as exc_info:
                await service.get_questions(started)
        assert exc_info.value.redirect_phase == "auto_submitted"

    async def test_catalog_outage(self, service_for, started, catalog):
        catalog.available = False
        async with service_for() as service:
            with pytest.raises(UpstreamUnavailable):
                await service.get_questions(started)


class TestViolations:
    """Integrity events and the auto-submit gate"""

    async def test_eleventh_violation_requests_auto_submit(self, service_for, started):
        outcomes = []
        for _ in range(11):
            async with service_for() as service:
                outcomes.append(await service.record_violation(started, "tab_switch"))

        assert outcomes[8].should_auto_submit is False
        assert outcomes[9].should_auto_submit is True
        assert outcomes[10].total_violations == 11
        assert outcomes[10].should_auto_submit is True

        async with service_for() as service:
            submission = await service.submit(started, automatic=True)
        assert submission.phase == "auto_submitted"
        assert submission.result.violations_count == 11
        assert submission.result.risk_score == 100.0

    async def test_violation_after_submit_is_rejected(self, service_for, started):
        async with service_for() as service:
            await service.submit(started)
        async with service_for() as service:
            with pytest.raises(SessionTerminal):
                await service.record_violation(started, "tab_switch")

    async def test_violation_before_exam_redirects_to_current_phase(self, service_for, session_factory):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        scope = SessionScope(student_id="s-1", session_id=created.session.id)

        async with service_for() as service:
            with pytest.raises(InvalidTransition) as exc_info:
                await service.record_violation(scope, "camera_blocked", "high")

        assert exc_info.value.redirect_phase == "compatibility_check"
        assert await count_rows(session_factory, ViolationEvent, session_id=created.session.id) == 0

    async def test_event_log(self, service_for, started):
        async with service_for() as service:
            entry = await service.log_event(started, "face_check", {"faces": 1})
        assert entry.event_type == "face_check"
        assert '"faces": 1' in entry.event_data


class TestTime:
    """Server-authoritative remaining time"""

    async def test_remaining_counts_down_from_start(self, service_for, started, clock):
        clock.advance(minutes=10)
        async with service_for() as service:
            status = await service.time_remaining(started)
        assert status.remaining_seconds == 3000
        assert status.phase == "in_progress"

    async def test_client_checkpoint_is_only_a_hint(self, service_for, started, clock):
        clock.advance(minutes=10)
        async with service_for() as service:
            status = await service.checkpoint_time(started, 3590)

        assert status.remaining_seconds == 3000
        async with service_for() as service:
            snapshot = await service.describe(started)
        assert snapshot.session.time_remaining_seconds == 3590
        assert snapshot.remaining_seconds == 3000

    async def test_expiry_auto_submits_on_next_interaction(self, service_for, started, clock):
        clock.advance(hours=2)
        async with service_for() as service:
            status = await service.time_remaining(started)

        assert status.remaining_seconds == 0
        assert status.phase == "auto_submitted"
        assert status.auto_submitted is True

        async with service_for() as service:
            again = await service.time_remaining(started)
        assert again.auto_submitted is False
        assert again.phase == "auto_submitted"

    async def test_event_after_deadline_auto_submits(self, service_for, started, clock, session_factory):
        clock.advance(minutes=61)
        async with service_for() as service:
            with pytest.raises(SessionTerminal) as exc_info:
                await service.log_event(started, "heartbeat")

        assert exc_info.value.redirect_phase == "auto_submitted"
        assert exc_info.value.result_id is not None
        assert await count_rows(session_factory, ProctoringLog, session_id=started.session_id) == 0

    async def test_sweep_submits_abandoned_sessions(self, service_for, started, clock, session_factory):
        async with service_for() as service:
            assert await service.expire_overdue() == []

        clock.advance(minutes=61)
        async with service_for() as service:
            assert await service.expire_overdue() == [started.session_id]
        async with service_for() as service:
            assert await service.expire_overdue() == []

        assert await count_rows(session_factory, Result, session_id=started.session_id) == 1


class TestSubmit:
    """Submission and scoring"""

    async def test_sixty_minute_exam_scenario(self, service_for, started, clock):
        for i in range(1, 21):
            option = "A" if i <= 18 else "D"
            async with service_for() as service:
                await service.save_answer(started, f"q{i}", option)
        for _ in range(3):
            async with service_for() as service:
                await service.record_violation(started, "tab_switch")

        clock.advance(minutes=10)
        async with service_for() as service:
            status = await service.time_remaining(started)
        async with service_for() as service:
            outcome = await service.submit(started)

        assert status.remaining_seconds == 3000
        assert outcome.phase == "submitted"
        assert not outcome.already_submitted
        assert outcome.result.score == 18
        assert outcome.result.correct_answers == 18
        assert outcome.result.total_answered == 20
        assert outcome.result.risk_score == 30
        assert outcome.result.confidence_score == 70

    async def test_second_submit_returns_existing_result(self, service_for, started):
        async with service_for() as service:
            first = await service.submit(started)
        async with service_for() as service:
            second = await service.submit(started, automatic=True)

        assert second.already_submitted
        assert second.result.id == first.result.id
        assert second.phase == "submitted"

    async def test_concurrent_manual_and_automatic_submit(self, service_for, started, session_factory):
        async def submit_once(automatic):
            async with service_for() as service:
                return await service.submit(started, automatic=automatic)

        manual, automatic = await asyncio.gather(submit_once(False), submit_once(True))

        assert manual.result.id == automatic.result.id
        assert sorted([manual.already_submitted, automatic.already_submitted]) == [False, True]
        assert manual.phase == automatic.phase
        assert await count_rows(session_factory, Result, session_id=started.session_id) == 1

    async def test_submit_before_exam_starts(self, service_for):
        async with service_for() as service:
            created = await service.start("s-1", "midterm")
        async with service_for() as service:
            with pytest.raises(InvalidTransition):
                await service.submit(SessionScope("s-1", created.session.id))

    async def test_catalog_outage_leaves_session_running(self, service_for, started, catalog):
        catalog.available = False
        async with service_for() as service:
            with pytest.raises(UpstreamUnavailable):
                await service.submit(started)

        catalog.available = True
        async with service_for() as service:
            status = await service.time_remaining(started)
        assert status.phase == "in_progress"

    async def test_negative_marking_exam(self, service_for, walk_to_in_progress, catalog):
        catalog.add_exam("physics", questions=4, negative_marking=0.5)
        async with service_for() as service:
            created = await service.start("s-1", "physics")
        scope = SessionScope("s-1", created.session.id)
        await walk_to_in_progress(scope)

        for question_id, option in [("q1", "A"), ("q2", "A"), ("q3", "B")]:
            async with service_for() as service:
                await service.save_answer(scope, question_id, option)
        async with service_for() as service:
            outcome = await service.submit(scope)

        assert outcome.result.correct_answers == 2
        assert outcome.result.score == 1.5
