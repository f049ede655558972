"""
APTIS Exam Platform - Exam Catalog Service
Question-set bookkeeping for exams (membership, order, total points)
"""
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aptis_exam.core.exceptions import NotFoundError, ValidationError
from aptis_exam.models.exam import Exam, ExamQuestion, Question

logger = logging.getLogger(__name__)


class ExamCatalogService:
    """Keeps an exam's question set and its derived total_points in step."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_question(
        self,
        exam_id: uuid.UUID,
        question_id: uuid.UUID,
        order_number: int,
        points_override: float | None = None,
    ) -> ExamQuestion:
        """
        Attach a question to an exam at `order_number`.

        Raises:
            NotFoundError: exam or question missing
            ValidationError: question already in the exam, order number taken,
                or non-positive question points or override
        """
        exam = await self._get_exam(exam_id)

        question = await self.db.get(Question, question_id)
        if not question:
            raise NotFoundError("Question not found")
        if question.points is None or question.points <= 0:
            raise ValidationError(
                "Question points must be greater than 0",
                details={"question_id": str(question_id)},
            )

        if points_override is not None and points_override <= 0:
            raise ValidationError("points_override must be greater than 0")

        existing = await self._exam_questions(exam.id)
        if any(eq.question_id == question_id for eq in existing):
            raise ValidationError(
                "Question is already part of this exam",
                details={"question_id": str(question_id)},
            )
        if any(eq.order_number == order_number for eq in existing):
            raise ValidationError(
                f"Order number {order_number} is already used in this exam",
                details={"order_number": order_number},
            )

        exam_question = ExamQuestion(
            exam_id=exam.id,
            question_id=question_id,
            order_number=order_number,
            points_override=points_override,
        )
        self.db.add(exam_question)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ValidationError("Question or order number already used in this exam") from e

        await self.recalculate_total_points(exam.id)
        return exam_question

    async def remove_question(self, exam_id: uuid.UUID, question_id: uuid.UUID) -> None:
        exam = await self._get_exam(exam_id)

        result = await self.db.execute(
            select(ExamQuestion).where(
                ExamQuestion.exam_id == exam.id,
                ExamQuestion.question_id == question_id,
            )
        )
        exam_question = result.unique().scalar_one_or_none()
        if not exam_question:
            raise NotFoundError("Question is not part of this exam")

        await self.db.delete(exam_question)
        await self.db.flush()
        await self.recalculate_total_points(exam.id)

    async def recalculate_total_points(self, exam_id: uuid.UUID) -> float:
        """Set exam.total_points to the sum of effective question points."""
        exam = await self._get_exam(exam_id)
        total = sum(eq.effective_points for eq in await self._exam_questions(exam.id))
        exam.total_points = round(total, 2)
        await self.db.flush()

        logger.debug("Exam %s total_points=%s", exam.id, exam.total_points)
        return exam.total_points

    async def _get_exam(self, exam_id: uuid.UUID) -> Exam:
        exam = await self.db.get(Exam, exam_id)
        if not exam:
            raise NotFoundError("Exam not found")
        return exam

    async def _exam_questions(self, exam_id: uuid.UUID) -> list[ExamQuestion]:
        result = await self.db.execute(
            select(ExamQuestion)
            .where(ExamQuestion.exam_id == exam_id)
            .order_by(ExamQuestion.order_number)
        )
        return list(result.unique().scalars().all())
