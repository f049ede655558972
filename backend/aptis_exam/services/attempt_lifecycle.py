"""
APTIS Exam Platform - Attempt Lifecycle
State machine for an exam attempt: start -> answer -> submit -> grade
"""
import logging
import math
import random
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from aptis_exam.core.exceptions import (
    AlreadyInProgressError,
    AttemptLimitReachedError,
    InvalidStateError,
    NotFoundError,
    OutOfWindowError,
    TimeExpiredError,
    TransactionFailureError,
    ValidationError,
)
from aptis_exam.models.attempt import AttemptAnswer, AttemptStatus, ExamAttempt
from aptis_exam.models.exam import Exam, ExamQuestion, is_auto_gradable, type_value
from aptis_exam.services import auto_grader, time_guard
from aptis_exam.services.answer_store import AnswerStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Shuffler = Callable[[list], None]


@dataclass
class ClientMeta:
    """Request metadata recorded on a new attempt."""
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AttemptSnapshot:
    """An attempt together with its frozen, ordered question set."""
    attempt: ExamAttempt
    questions: list[ExamQuestion]
    answers: list[AttemptAnswer] = field(default_factory=list)


@dataclass
class AnswerInput:
    question_id: uuid.UUID
    answer_text: str | None = None
    audio_url: str | None = None


@dataclass
class AutoSaveOutcome:
    question_id: uuid.UUID
    success: bool
    error_kind: str | None = None
    error: str | None = None


@dataclass
class AutoSaveReport:
    results: list[AutoSaveOutcome] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.saved


@dataclass
class Progress:
    total_questions: int
    answered_questions: int
    time_elapsed_minutes: float
    time_remaining_minutes: float
    is_time_up: bool

    @property
    def unanswered_questions(self) -> int:
        return max(0, self.total_questions - self.answered_questions)


def round_minutes(minutes: float) -> int:
    """Round half up, the way minutes are reported to students."""
    return math.floor(minutes + 0.5)


def percentage_of(score: float, possible: float) -> float:
    if possible <= 0:
        return 0.0
    return round(score / possible * 100, 2)


class AttemptService:
    """
    Orchestrates an exam attempt from start to graded result.

    Every mutating method runs inside the caller's session transaction; the
    request dependency commits on success and rolls back on any error, so a
    failed call leaves nothing half-written.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = time_guard.utcnow,
        shuffle: Shuffler = random.shuffle,
    ):
        self.db = db
        self.clock = clock
        self.shuffle = shuffle
        self.answers = AnswerStore(db)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(
        self,
        exam_id: uuid.UUID,
        user_id: uuid.UUID,
        client_meta: ClientMeta | None = None,
    ) -> AttemptSnapshot:
        """
        Start a new attempt and freeze its question order.

        Raises:
            NotFoundError: exam missing or unpublished
            OutOfWindowError: now is outside [start_date, end_date]
            AttemptLimitReachedError: max_attempts used up
            AlreadyInProgressError: a live attempt already exists
        """
        result = await self.db.execute(
            select(Exam)
            .where(Exam.id == exam_id, Exam.is_published.is_(True))
            .options(selectinload(Exam.exam_questions))
        )
        exam = result.scalar_one_or_none()
        if not exam:
            raise NotFoundError("Exam not found or not available")

        now = self.clock()
        if exam.start_date and time_guard.as_utc(exam.start_date) > now:
            raise OutOfWindowError("Exam has not started yet")
        if exam.end_date and time_guard.as_utc(exam.end_date) < now:
            raise OutOfWindowError("Exam has ended")

        attempts_count = await self._count_attempts(exam_id, user_id)
        if attempts_count >= exam.max_attempts:
            raise AttemptLimitReachedError(
                f"Maximum attempts ({exam.max_attempts}) reached"
            )

        live = await self._find_live(exam_id, user_id)
        if live:
            raise AlreadyInProgressError(live.id)

        questions = list(exam.exam_questions)
        if exam.shuffle_questions:
            self.shuffle(questions)

        meta = client_meta or ClientMeta()
        attempt = ExamAttempt(
            exam=exam,
            exam_id=exam_id,
            user_id=user_id,
            start_time=now,
            status=AttemptStatus.IN_PROGRESS,
            question_order=[str(eq.question_id) for eq in questions],
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.db.add(attempt)

        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost the race against a concurrent start for the same user
            await self.db.rollback()
            live = await self._find_live(exam_id, user_id)
            if live:
                raise AlreadyInProgressError(live.id) from e
            raise TransactionFailureError("Could not start the exam, please retry") from e

        logger.info("Attempt %s started: exam=%s user=%s", attempt.id, exam_id, user_id)
        return AttemptSnapshot(attempt=attempt, questions=questions)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_attempt(self, attempt_id: uuid.UUID, user_id: uuid.UUID) -> AttemptSnapshot:
        attempt = await self._load_owned(attempt_id, user_id)
        if not attempt:
            raise NotFoundError("Attempt not found")
        questions = await self._snapshot_questions(attempt)
        answers = await self.answers.list_for_attempt(attempt.id)
        return AttemptSnapshot(attempt=attempt, questions=questions, answers=answers)

    async def get_progress(self, attempt_id: uuid.UUID, user_id: uuid.UUID) -> Progress:
        attempt = await self._load_owned(attempt_id, user_id)
        if not attempt:
            raise NotFoundError("Attempt not found")

        total = await self.db.execute(
            select(func.count(ExamQuestion.id)).where(ExamQuestion.exam_id == attempt.exam_id)
        )
        answered = await self.answers.count_answered(attempt.id)

        # A finished attempt's clock stopped at end_time
        reference = attempt.end_time if attempt.end_time else self.clock()
        clock = time_guard.time_status(
            attempt.start_time, attempt.exam.duration_minutes, reference
        )

        return Progress(
            total_questions=total.scalar() or 0,
            answered_questions=answered,
            time_elapsed_minutes=round(clock.elapsed_minutes, 2),
            time_remaining_minutes=round(clock.remaining_minutes, 2),
            is_time_up=clock.is_expired,
        )

    # ------------------------------------------------------------------
    # Answer
    # ------------------------------------------------------------------

    async def save_answer(
        self,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        question_id: uuid.UUID,
        answer_text: str | None,
        audio_url: str | None = None,
    ) -> AttemptAnswer:
        """
        Upsert one answer of a live attempt.

        Raises:
            NotFoundError: attempt not owned or no longer in progress
            TimeExpiredError: elapsed time exceeds the exam duration
            ValidationError: question is not part of this attempt
        """
        attempt = await self._load_live(attempt_id, user_id)
        self._ensure_in_time(attempt)
        self._ensure_in_snapshot(attempt, question_id)
        return await self.answers.upsert(attempt.id, question_id, answer_text, audio_url)

    async def auto_save(
        self,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        items: list[AnswerInput],
    ) -> AutoSaveReport:
        """
        Apply save_answer semantics to each item independently.

        Ownership and status are checked once for the whole batch. Time and
        question membership are checked per item, so items processed after
        the limit passes are rejected while earlier ones are kept.
        """
        attempt = await self._load_live(attempt_id, user_id)
        report = AutoSaveReport()

        for item in items:
            try:
                self._ensure_in_time(attempt)
                self._ensure_in_snapshot(attempt, item.question_id)
                await self.answers.upsert(
                    attempt.id, item.question_id, item.answer_text, item.audio_url
                )
            except (TimeExpiredError, ValidationError) as e:
                report.results.append(AutoSaveOutcome(
                    question_id=item.question_id,
                    success=False,
                    error_kind=e.kind,
                    error=e.message,
                ))
                continue
            report.results.append(AutoSaveOutcome(question_id=item.question_id, success=True))

        if report.failed:
            logger.warning(
                "Auto-save for attempt %s rejected %d of %d items",
                attempt.id, report.failed, len(items),
            )
        return report

    # ------------------------------------------------------------------
    # Submit / abandon
    # ------------------------------------------------------------------

    async def submit(self, attempt_id: uuid.UUID, user_id: uuid.UUID) -> ExamAttempt:
        """
        Close a live attempt and auto-grade its closed-form answers.

        Open-ended answers stay ungraded; the percentage at this point only
        covers auto-gradable content. The attempt becomes `graded` when every
        answer was auto-gradable, otherwise `submitted`.
        """
        attempt = await self._load_owned(attempt_id, user_id, for_update=True)
        if not attempt:
            raise NotFoundError("Attempt not found or already submitted")
        if not attempt.is_live:
            raise InvalidStateError(f"Attempt already {type_value(attempt.status)}")

        now = self.clock()
        answers = await self.answers.list_for_attempt(attempt.id)
        points = await self._points_by_question(attempt.exam_id)

        total_score = 0.0
        total_possible = 0.0
        graded_count = 0

        for answer in answers:
            question = answer.question
            worth = points.get(answer.question_id, float(question.points))

            if is_auto_gradable(question.type):
                outcome = auto_grader.grade(question, answer.answer_text, points=worth)
                answer.mark_auto_graded(outcome.is_correct, outcome.score, now)
                total_score += outcome.score
                total_possible += worth
                graded_count += 1
            else:
                answer.clear_grading()

        attempt.end_time = now
        attempt.time_spent_minutes = round_minutes(
            time_guard.elapsed_minutes(attempt.start_time, now)
        )
        attempt.total_score = round(total_score, 2)
        attempt.percentage = percentage_of(total_score, total_possible)
        attempt.status = (
            AttemptStatus.GRADED
            if graded_count == len(answers)
            else AttemptStatus.SUBMITTED
        )
        await self.db.flush()

        logger.info(
            "Attempt %s submitted: status=%s score=%s/%s pending=%d",
            attempt.id, type_value(attempt.status), attempt.total_score, total_possible,
            len(answers) - graded_count,
        )
        return attempt

    async def abandon(self, attempt_id: uuid.UUID, user_id: uuid.UUID) -> ExamAttempt:
        attempt = await self._load_owned(attempt_id, user_id, for_update=True)
        if not attempt:
            raise NotFoundError("Attempt not found")
        if not attempt.is_live:
            raise InvalidStateError(f"Attempt already {type_value(attempt.status)}")

        now = self.clock()
        attempt.end_time = now
        attempt.time_spent_minutes = round_minutes(
            time_guard.elapsed_minutes(attempt.start_time, now)
        )
        attempt.status = AttemptStatus.ABANDONED
        await self.db.flush()

        logger.info("Attempt %s abandoned", attempt.id)
        return attempt

    # ------------------------------------------------------------------
    # Re-aggregation after AI / manual grading
    # ------------------------------------------------------------------

    async def recalculate(self, attempt_id: uuid.UUID) -> ExamAttempt:
        """
        Re-aggregate a finished attempt once its answers are all graded.

        While any answer is still pending the submit-time figures are kept.
        When none is pending, total_score and percentage cover every answer
        and the attempt becomes `graded`.
        """
        attempt = await self.db.get(ExamAttempt, attempt_id)
        if not attempt:
            raise NotFoundError("Attempt not found")
        if attempt.status not in (AttemptStatus.SUBMITTED, AttemptStatus.GRADED):
            return attempt
        answers = await self.answers.list_for_attempt(attempt.id)
        if not all(answer.is_graded for answer in answers):
            return attempt

        points = await self._points_by_question(attempt.exam_id)
        earned = 0.0
        possible = 0.0
        for answer in answers:
            worth = points.get(answer.question_id, float(answer.question.points))
            earned += answer.earned_points(worth)
            possible += worth

        attempt.total_score = round(earned, 2)
        attempt.percentage = percentage_of(earned, possible)
        if attempt.status != AttemptStatus.GRADED:
            logger.info("Attempt %s fully graded", attempt.id)
        attempt.status = AttemptStatus.GRADED
        await self.db.flush()
        return attempt

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _count_attempts(self, exam_id: uuid.UUID, user_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(ExamAttempt.id)).where(
                ExamAttempt.exam_id == exam_id,
                ExamAttempt.user_id == user_id,
            )
        )
        return result.scalar() or 0

    async def _find_live(self, exam_id: uuid.UUID, user_id: uuid.UUID) -> ExamAttempt | None:
        result = await self.db.execute(
            select(ExamAttempt).where(
                ExamAttempt.exam_id == exam_id,
                ExamAttempt.user_id == user_id,
                ExamAttempt.status == AttemptStatus.IN_PROGRESS,
            )
        )
        return result.scalars().first()

    async def _load_owned(
        self,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
        for_update: bool = False,
    ) -> ExamAttempt | None:
        query = select(ExamAttempt).where(
            ExamAttempt.id == attempt_id,
            ExamAttempt.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update(of=ExamAttempt)
        result = await self.db.execute(query)
        return result.unique().scalar_one_or_none()

    async def _load_live(self, attempt_id: uuid.UUID, user_id: uuid.UUID) -> ExamAttempt:
        attempt = await self._load_owned(attempt_id, user_id)
        if not attempt or not attempt.is_live:
            raise NotFoundError("Attempt not found or already submitted")
        return attempt

    def _ensure_in_time(self, attempt: ExamAttempt) -> None:
        elapsed = time_guard.elapsed_minutes(attempt.start_time, self.clock())
        if time_guard.is_expired(attempt.exam.duration_minutes, elapsed):
            raise TimeExpiredError()

    def _ensure_in_snapshot(self, attempt: ExamAttempt, question_id: uuid.UUID) -> None:
        if str(question_id) not in (attempt.question_order or []):
            raise ValidationError(
                "Question is not part of this attempt",
                details={"question_id": str(question_id)},
            )

    async def _exam_questions(self, exam_id: uuid.UUID) -> list[ExamQuestion]:
        result = await self.db.execute(
            select(ExamQuestion)
            .where(ExamQuestion.exam_id == exam_id)
            .order_by(ExamQuestion.order_number)
        )
        return list(result.unique().scalars().all())

    async def _points_by_question(self, exam_id: uuid.UUID) -> dict[uuid.UUID, float]:
        return {eq.question_id: eq.effective_points for eq in await self._exam_questions(exam_id)}

    async def _snapshot_questions(self, attempt: ExamAttempt) -> list[ExamQuestion]:
        """Exam questions in the attempt's frozen order."""
        by_id = {str(eq.question_id): eq for eq in await self._exam_questions(attempt.exam_id)}
        return [by_id[qid] for qid in (attempt.question_order or []) if qid in by_id]
