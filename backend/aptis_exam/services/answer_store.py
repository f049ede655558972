"""
APTIS Exam Platform - Answer Store
Keyed upsert of one answer per (attempt, question)
"""
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from aptis_exam.core.exceptions import TransactionFailureError
from aptis_exam.models.attempt import AttemptAnswer, GradingState


class AnswerStore:
    """Persistence for attempt answers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, attempt_id: uuid.UUID, question_id: uuid.UUID) -> AttemptAnswer | None:
        result = await self.db.execute(
            select(AttemptAnswer).where(
                AttemptAnswer.attempt_id == attempt_id,
                AttemptAnswer.question_id == question_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, answer_id: uuid.UUID) -> AttemptAnswer | None:
        """Load an answer together with its question and attempt."""
        result = await self.db.execute(
            select(AttemptAnswer)
            .where(AttemptAnswer.id == answer_id)
            .options(selectinload(AttemptAnswer.attempt))
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        attempt_id: uuid.UUID,
        question_id: uuid.UUID,
        answer_text: str | None,
        audio_url: str | None,
    ) -> AttemptAnswer:
        """
        Create or overwrite the answer for (attempt, question).

        Only the student-owned fields change on overwrite; grading fields
        are left untouched.
        """
        answer = await self.get(attempt_id, question_id)

        if answer is None:
            answer = AttemptAnswer(
                attempt_id=attempt_id,
                question_id=question_id,
                answer_text=answer_text,
                audio_url=audio_url,
                grading_state=GradingState.UNGRADED,
                needs_manual_review=False,
            )
            self.db.add(answer)
        else:
            answer.answer_text = answer_text
            answer.audio_url = audio_url

        try:
            await self.db.flush()
        except IntegrityError as e:
            # A concurrent request inserted the same (attempt, question) row
            raise TransactionFailureError("Answer was saved concurrently, please retry") from e

        return answer

    async def list_for_attempt(self, attempt_id: uuid.UUID) -> list[AttemptAnswer]:
        result = await self.db.execute(
            select(AttemptAnswer)
            .where(AttemptAnswer.attempt_id == attempt_id)
            .order_by(AttemptAnswer.created_at)
        )
        return list(result.scalars().all())

    async def count_answered(self, attempt_id: uuid.UUID) -> int:
        """Answers that carry text (audio-only answers are not counted)."""
        result = await self.db.execute(
            select(func.count(AttemptAnswer.id)).where(
                AttemptAnswer.attempt_id == attempt_id,
                AttemptAnswer.answer_text.isnot(None),
            )
        )
        return result.scalar() or 0
