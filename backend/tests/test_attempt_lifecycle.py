"""
APTIS Exam Platform - Attempt Lifecycle Tests
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from aptis_exam.core.exceptions import (
    AlreadyInProgressError,
    AttemptLimitReachedError,
    InvalidStateError,
    NotFoundError,
    OutOfWindowError,
    TimeExpiredError,
    ValidationError,
)
from aptis_exam.models import AttemptAnswer, AttemptStatus, ExamAttempt, GradingState
from aptis_exam.services.attempt_lifecycle import AnswerInput, AttemptService

MC_B = {"type": "multiple_choice", "correct_answer": "B", "points": 10}
ESSAY = {"type": "essay", "skill": "writing", "points": 10}


async def count_attempts(db_session, exam_id) -> int:
    result = await db_session.execute(
        select(func.count(ExamAttempt.id)).where(ExamAttempt.exam_id == exam_id)
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_correct_answer_scenario(db_session, make_user, make_exam, clock):
    """Start, answer B, submit after 5 minutes: fully graded at 100%."""
    student = await make_user()
    exam, (question,) = await make_exam([MC_B], duration_minutes=30)
    service = AttemptService(db_session, clock=clock)

    snapshot = await service.start(exam.id, student.id)
    assert snapshot.attempt.status == AttemptStatus.IN_PROGRESS
    assert [eq.question_id for eq in snapshot.questions] == [question.id]

    clock.advance(minutes=1)
    await service.save_answer(snapshot.attempt.id, student.id, question.id, "B")
    clock.advance(minutes=4)
    attempt = await service.submit(snapshot.attempt.id, student.id)

    assert attempt.status == AttemptStatus.GRADED
    assert attempt.total_score == 10
    assert attempt.percentage == 100.0
    assert attempt.time_spent_minutes == 5
    assert attempt.end_time == clock.now


@pytest.mark.asyncio
async def test_wrong_answer_scenario(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (question,) = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)

    snapshot = await service.start(exam.id, student.id)
    answer = await service.save_answer(snapshot.attempt.id, student.id, question.id, "C")
    attempt = await service.submit(snapshot.attempt.id, student.id)

    assert attempt.status == AttemptStatus.GRADED
    assert attempt.total_score == 0
    assert attempt.percentage == 0.0
    assert answer.is_correct is False
    assert answer.grading_state == GradingState.AUTO_GRADED


@pytest.mark.asyncio
async def test_attempt_limit_reached_creates_no_row(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, _ = await make_exam([MC_B], max_attempts=1)
    service = AttemptService(db_session, clock=clock)

    snapshot = await service.start(exam.id, student.id)
    await service.abandon(snapshot.attempt.id, student.id)

    with pytest.raises(AttemptLimitReachedError):
        await service.start(exam.id, student.id)
    assert await count_attempts(db_session, exam.id) == 1


@pytest.mark.asyncio
async def test_second_start_reports_live_attempt(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, _ = await make_exam([MC_B], max_attempts=3)
    service = AttemptService(db_session, clock=clock)

    snapshot = await service.start(exam.id, student.id)
    with pytest.raises(AlreadyInProgressError) as exc_info:
        await service.start(exam.id, student.id)

    assert exc_info.value.attempt_id == snapshot.attempt.id
    assert exc_info.value.details == {"attempt_id": str(snapshot.attempt.id)}
    assert await count_attempts(db_session, exam.id) == 1


@pytest.mark.asyncio
async def test_store_rejects_two_live_attempts(db_session, make_user, make_exam, clock):
    """The partial unique index holds even if application checks are bypassed."""
    student = await make_user()
    exam, _ = await make_exam([MC_B], max_attempts=5)

    for _ in range(2):
        db_session.add(ExamAttempt(
            exam_id=exam.id,
            user_id=student.id,
            start_time=clock.now,
            status=AttemptStatus.IN_PROGRESS,
            question_order=[],
        ))
    with pytest.raises(IntegrityError):
        await db_session.flush()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_finished_attempts_do_not_block_a_new_start(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, _ = await make_exam([MC_B], max_attempts=2)
    service = AttemptService(db_session, clock=clock)

    first = await service.start(exam.id, student.id)
    await service.submit(first.attempt.id, student.id)
    second = await service.start(exam.id, student.id)

    assert second.attempt.id != first.attempt.id
    assert await count_attempts(db_session, exam.id) == 2


@pytest.mark.asyncio
async def test_unpublished_exam_is_not_found(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, _ = await make_exam([MC_B], is_published=False)

    with pytest.raises(NotFoundError):
        await AttemptService(db_session, clock=clock).start(exam.id, student.id)


@pytest.mark.asyncio
async def test_window_bounds(db_session, make_user, make_exam, clock):
    student = await make_user()
    future, _ = await make_exam([MC_B], start_date=clock.now + timedelta(days=1))
    past, _ = await make_exam([MC_B], end_date=clock.now - timedelta(minutes=1))
    service = AttemptService(db_session, clock=clock)

    with pytest.raises(OutOfWindowError):
        await service.start(future.id, student.id)
    with pytest.raises(OutOfWindowError):
        await service.start(past.id, student.id)


@pytest.mark.asyncio
async def test_save_at_exact_limit_succeeds_and_after_fails(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (question,) = await make_exam([MC_B], duration_minutes=30)
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    clock.advance(minutes=30)
    await service.save_answer(snapshot.attempt.id, student.id, question.id, "A")

    clock.advance(seconds=1)
    with pytest.raises(TimeExpiredError):
        await service.save_answer(snapshot.attempt.id, student.id, question.id, "B")

    stored = await service.answers.get(snapshot.attempt.id, question.id)
    assert stored.answer_text == "A"


@pytest.mark.asyncio
async def test_save_overwrites_text_but_keeps_grading(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (question,) = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    first = await service.save_answer(snapshot.attempt.id, student.id, question.id, "A")
    first.mark_auto_graded(False, 0.0, clock.now)
    second = await service.save_answer(
        snapshot.attempt.id, student.id, question.id, "B", audio_url="https://cdn/a.mp3"
    )

    assert second.id == first.id
    assert second.answer_text == "B"
    assert second.audio_url == "https://cdn/a.mp3"
    assert second.grading_state == GradingState.AUTO_GRADED
    rows = await db_session.execute(
        select(func.count(AttemptAnswer.id)).where(AttemptAnswer.attempt_id == snapshot.attempt.id)
    )
    assert rows.scalar() == 1


@pytest.mark.asyncio
async def test_save_rejects_question_outside_snapshot(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, _ = await make_exam([MC_B])
    _, (foreign,) = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    with pytest.raises(ValidationError):
        await service.save_answer(snapshot.attempt.id, student.id, foreign.id, "B")


@pytest.mark.asyncio
async def test_attempt_is_invisible_to_other_users(db_session, make_user, make_exam, clock):
    owner = await make_user()
    other = await make_user()
    exam, (question,) = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, owner.id)

    with pytest.raises(NotFoundError):
        await service.save_answer(snapshot.attempt.id, other.id, question.id, "B")
    with pytest.raises(NotFoundError):
        await service.submit(snapshot.attempt.id, other.id)
    with pytest.raises(NotFoundError):
        await service.get_progress(snapshot.attempt.id, other.id)


@pytest.mark.asyncio
async def test_second_submit_fails_without_changing_result(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (question,) = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)
    await service.save_answer(snapshot.attempt.id, student.id, question.id, "B")
    attempt = await service.submit(snapshot.attempt.id, student.id)

    clock.advance(minutes=10)
    with pytest.raises(InvalidStateError):
        await service.submit(snapshot.attempt.id, student.id)

    assert attempt.total_score == 10
    assert attempt.percentage == 100.0
    assert attempt.time_spent_minutes == 0


@pytest.mark.asyncio
async def test_open_ended_only_submit_stays_submitted(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (essay,) = await make_exam([ESSAY])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)
    answer = await service.save_answer(snapshot.attempt.id, student.id, essay.id, "My essay")

    attempt = await service.submit(snapshot.attempt.id, student.id)

    assert attempt.status == AttemptStatus.SUBMITTED
    assert attempt.percentage == 0
    assert answer.is_correct is None
    assert answer.score is None
    assert answer.grading_state == GradingState.UNGRADED


@pytest.mark.asyncio
async def test_submit_percentage_covers_closed_form_only(db_session, make_user, make_exam, clock):
    student = await make_user()
    fill = {"type": "fill_blanks", "correct_answer": "Paris", "points": 4}
    exam, (mc, blank, essay) = await make_exam([MC_B, fill, ESSAY])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)
    attempt_id = snapshot.attempt.id

    await service.save_answer(attempt_id, student.id, mc.id, "B")
    await service.save_answer(attempt_id, student.id, blank.id, "London")
    await service.save_answer(attempt_id, student.id, essay.id, "Essay text")
    attempt = await service.submit(attempt_id, student.id)

    assert attempt.status == AttemptStatus.SUBMITTED
    assert attempt.total_score == 10
    assert attempt.percentage == round(10 / 14 * 100, 2)


@pytest.mark.asyncio
async def test_points_override_is_used_for_grading(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (question,) = await make_exam([{**MC_B, "points_override": 3}])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)
    await service.save_answer(snapshot.attempt.id, student.id, question.id, "B")

    attempt = await service.submit(snapshot.attempt.id, student.id)

    assert attempt.total_score == 3
    assert attempt.percentage == 100.0


@pytest.mark.asyncio
async def test_auto_save_reports_each_item(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (q1, q2) = await make_exam([MC_B, MC_B])
    _, (foreign,) = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    report = await service.auto_save(snapshot.attempt.id, student.id, [
        AnswerInput(question_id=q1.id, answer_text="A"),
        AnswerInput(question_id=foreign.id, answer_text="B"),
        AnswerInput(question_id=q2.id, answer_text="C"),
    ])

    assert report.saved == 2
    assert report.failed == 1
    assert [r.success for r in report.results] == [True, False, True]
    assert report.results[1].error_kind == "validation_error"
    assert (await service.answers.get(snapshot.attempt.id, q2.id)).answer_text == "C"


@pytest.mark.asyncio
async def test_auto_save_after_time_limit_rejects_items(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (q1,) = await make_exam([MC_B], duration_minutes=10)
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    clock.advance(minutes=11)
    report = await service.auto_save(snapshot.attempt.id, student.id, [
        AnswerInput(question_id=q1.id, answer_text="B"),
    ])

    assert report.saved == 0
    assert report.results[0].error_kind == "time_expired"
    assert await service.answers.get(snapshot.attempt.id, q1.id) is None


@pytest.mark.asyncio
async def test_progress(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (q1, _, q3) = await make_exam([MC_B, MC_B, ESSAY], duration_minutes=20)
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    await service.save_answer(snapshot.attempt.id, student.id, q1.id, "B")
    # Audio-only answers are not counted as answered
    await service.save_answer(snapshot.attempt.id, student.id, q3.id, None, "https://cdn/a.mp3")
    clock.advance(minutes=7, seconds=30)

    progress = await service.get_progress(snapshot.attempt.id, student.id)

    assert progress.total_questions == 3
    assert progress.answered_questions == 1
    assert progress.unanswered_questions == 2
    assert progress.time_elapsed_minutes == 7.5
    assert progress.time_remaining_minutes == 12.5
    assert progress.is_time_up is False

    clock.advance(minutes=13)
    progress = await service.get_progress(snapshot.attempt.id, student.id)
    assert progress.time_remaining_minutes == 0
    assert progress.is_time_up is True


@pytest.mark.asyncio
async def test_shuffled_order_is_frozen_for_the_attempt(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, questions = await make_exam([MC_B, MC_B, MC_B], shuffle_questions=True)
    service = AttemptService(db_session, clock=clock, shuffle=lambda items: items.reverse())

    snapshot = await service.start(exam.id, student.id)
    expected = [q.id for q in reversed(questions)]
    assert [eq.question_id for eq in snapshot.questions] == expected
    assert snapshot.attempt.question_order == [str(qid) for qid in expected]

    again = await service.get_attempt(snapshot.attempt.id, student.id)
    assert [eq.question_id for eq in again.questions] == expected


@pytest.mark.asyncio
async def test_abandon(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, _ = await make_exam([MC_B])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)

    clock.advance(minutes=2)
    attempt = await service.abandon(snapshot.attempt.id, student.id)
    assert attempt.status == AttemptStatus.ABANDONED
    assert attempt.time_spent_minutes == 2

    with pytest.raises(InvalidStateError):
        await service.abandon(snapshot.attempt.id, student.id)
    with pytest.raises(InvalidStateError):
        await service.submit(snapshot.attempt.id, student.id)


@pytest.mark.asyncio
async def test_recalculate_after_last_open_answer_is_graded(db_session, make_user, make_exam, clock):
    student = await make_user()
    exam, (mc, essay) = await make_exam([MC_B, ESSAY])
    service = AttemptService(db_session, clock=clock)
    snapshot = await service.start(exam.id, student.id)
    await service.save_answer(snapshot.attempt.id, student.id, mc.id, "B")
    essay_answer = await service.save_answer(snapshot.attempt.id, student.id, essay.id, "Essay")
    await service.submit(snapshot.attempt.id, student.id)

    # Still pending: submit-time figures are kept
    attempt = await service.recalculate(snapshot.attempt.id)
    assert attempt.status == AttemptStatus.SUBMITTED
    assert attempt.percentage == 100.0

    essay_answer.mark_ai_graded(80.0, True, {"total_score": 80.0}, clock.now)
    attempt = await service.recalculate(snapshot.attempt.id)

    assert attempt.status == AttemptStatus.GRADED
    assert attempt.total_score == 18.0
    assert attempt.percentage == 90.0
