"""
APTIS Exam Platform - Manual Review Service
Teacher grading of answers and the review queue
"""
import logging
import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from aptis_exam.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from aptis_exam.models.attempt import AttemptAnswer, AttemptStatus, ExamAttempt, GradingState
from aptis_exam.models.exam import ExamQuestion, type_value
from aptis_exam.services import time_guard
from aptis_exam.services.answer_store import AnswerStore
from aptis_exam.services.attempt_lifecycle import AttemptService, Clock

logger = logging.getLogger(__name__)


class ReviewService:
    """Service for teacher review operations."""

    def __init__(self, db: AsyncSession, clock: Clock = time_guard.utcnow):
        self.db = db
        self.clock = clock
        self.answers = AnswerStore(db)

    async def submit_manual_review(
        self,
        answer_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        score: float,
        feedback: str | None = None,
        is_correct: bool | None = None,
    ) -> AttemptAnswer:
        """
        Grade an answer by hand.

        Once reviewed, the answer is closed to AI scoring. `is_correct`
        defaults to `score > 0`.

        Raises:
            NotFoundError: answer missing
            InvalidStateError: attempt still in progress or abandoned
            ValidationError: score outside [0, question points]
        """
        answer = await self._get_answer(answer_id)

        max_score = await self._points_for(answer)
        if score < 0 or score > max_score:
            raise ValidationError(
                f"Score must be between 0 and {max_score:g}",
                details={"max_score": max_score},
            )

        answer.mark_manually_graded(
            reviewer_id=reviewer_id,
            score=score,
            is_correct=score > 0 if is_correct is None else is_correct,
            feedback=feedback,
            at=self.clock(),
        )
        await self.db.flush()

        await AttemptService(self.db, clock=self.clock).recalculate(answer.attempt_id)
        logger.info("Answer %s manually graded by %s: score=%s", answer.id, reviewer_id, score)
        return answer

    async def flag_for_review(self, answer_id: uuid.UUID, reason: str) -> AttemptAnswer:
        answer = await self._get_answer(answer_id)
        answer.needs_manual_review = True
        answer.review_reason = reason
        await self.db.flush()

        logger.info("Answer %s flagged for review: %s", answer.id, reason)
        return answer

    async def list_pending(self, limit: int = 50) -> list[AttemptAnswer]:
        """Answers of finished attempts that are flagged or still ungraded."""
        result = await self.db.execute(
            select(AttemptAnswer)
            .join(ExamAttempt, ExamAttempt.id == AttemptAnswer.attempt_id)
            .where(
                ExamAttempt.status.in_((AttemptStatus.SUBMITTED.value, AttemptStatus.GRADED.value)),
                or_(
                    AttemptAnswer.needs_manual_review.is_(True),
                    AttemptAnswer.grading_state == GradingState.UNGRADED.value,
                ),
            )
            .order_by(AttemptAnswer.needs_manual_review.desc(), AttemptAnswer.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def _get_answer(self, answer_id: uuid.UUID) -> AttemptAnswer:
        answer = await self.answers.get_by_id(answer_id)
        if not answer:
            raise NotFoundError("Answer not found")
        if answer.attempt.status not in (AttemptStatus.SUBMITTED, AttemptStatus.GRADED):
            raise InvalidStateError(f"Cannot review an answer of a {type_value(answer.attempt.status)} attempt")
        return answer

    async def _points_for(self, answer: AttemptAnswer) -> float:
        result = await self.db.execute(
            select(ExamQuestion).where(
                ExamQuestion.exam_id == answer.attempt.exam_id,
                ExamQuestion.question_id == answer.question_id,
            )
        )
        exam_question = result.unique().scalar_one_or_none()
        if exam_question:
            return exam_question.effective_points
        return float(answer.question.points)
