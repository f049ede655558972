"""
APTIS Exam Platform - AI Scoring Service
Guards, write-back and batching around the rubric grader
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aptis_exam.ai.grading.rubric_grader import RubricGrader, ScoringResult
from aptis_exam.core.config import settings
from aptis_exam.core.exceptions import (
    ExamPlatformError,
    InvalidStateError,
    ManuallyReviewedError,
    NotFoundError,
    ScoringFailureError,
    ValidationError,
)
from aptis_exam.models.attempt import AttemptAnswer, AttemptStatus
from aptis_exam.models.exam import AIScoringRubric, Skill, is_ai_scorable, type_value
from aptis_exam.services import time_guard
from aptis_exam.services.answer_store import AnswerStore
from aptis_exam.services.attempt_lifecycle import AttemptService, Clock

logger = logging.getLogger(__name__)

SCORABLE_SKILLS = (Skill.WRITING.value, Skill.SPEAKING.value)


@dataclass
class ScoreOutcome:
    """Per-answer result of a scoring request."""
    answer_id: uuid.UUID
    success: bool
    score: float | None = None
    is_correct: bool | None = None
    feedback: dict[str, Any] | None = None
    error_kind: str | None = None
    error: str | None = None


@dataclass
class BatchScoreReport:
    results: list[ScoreOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful


@dataclass
class _Prepared:
    answer: AttemptAnswer
    rubrics: list[AIScoringRubric]


class ScoringService:
    """
    Orchestrates AI scoring of open-ended answers.

    The grader only talks to the LLM; every database read and write stays
    here, on the request session.
    """

    def __init__(
        self,
        db: AsyncSession,
        grader: RubricGrader,
        clock: Clock = time_guard.utcnow,
        max_concurrency: int | None = None,
    ):
        self.db = db
        self.grader = grader
        self.clock = clock
        self.max_concurrency = max_concurrency or settings.AI_MAX_CONCURRENCY
        self.answers = AnswerStore(db)

    async def score_answer(self, answer_id: uuid.UUID) -> ScoreOutcome:
        """
        AI-score one answer and write the result back.

        Raises:
            NotFoundError: answer missing
            ManuallyReviewedError: a teacher reviewed the answer, before or
                during the grader call
            InvalidStateError: the attempt is neither submitted nor graded
            ValidationError: question or skill not AI-scorable, or no rubrics
            ScoringFailureError: the grader failed; the failure marker is
                committed before this propagates
        """
        prepared = await self._prepare(answer_id)
        try:
            result = await self._grade(prepared)
        except ScoringFailureError as e:
            answer = await self._lock_for_write_back(answer_id)
            answer.mark_scoring_failed(e.message, self.clock())
            await self.db.commit()
            logger.warning("AI scoring of answer %s failed: %s", answer_id, e.message)
            raise

        answer = await self._lock_for_write_back(answer_id)
        outcome = self._write_back(answer, result)
        await AttemptService(self.db, clock=self.clock).recalculate(answer.attempt_id)
        return outcome

    async def rescore_answer(
        self,
        answer_id: uuid.UUID,
        requested_by: uuid.UUID | None = None,
    ) -> ScoreOutcome:
        """Score an answer again (quality control); same guards as score_answer."""
        logger.info("Answer %s rescored on request of %s", answer_id, requested_by)
        return await self.score_answer(answer_id)

    async def score_multiple(self, answer_ids: list[uuid.UUID]) -> BatchScoreReport:
        """
        Score several answers; one bad answer never blocks the rest.

        Grader calls run concurrently (bounded by AI_MAX_CONCURRENCY); the
        write-back happens afterwards, one answer at a time.
        """
        outcomes: dict[uuid.UUID, ScoreOutcome] = {}
        prepared: list[_Prepared] = []

        for answer_id in dict.fromkeys(answer_ids):
            try:
                prepared.append(await self._prepare(answer_id))
            except ExamPlatformError as e:
                outcomes[answer_id] = ScoreOutcome(
                    answer_id=answer_id, success=False, error_kind=e.kind, error=e.message
                )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(item: _Prepared) -> ScoringResult:
            async with semaphore:
                return await self._grade(item)

        graded = await asyncio.gather(
            *(bounded(item) for item in prepared), return_exceptions=True
        )

        attempt_ids: set[uuid.UUID] = set()
        for item, result in zip(prepared, graded):
            if isinstance(result, BaseException) and not isinstance(result, ExamPlatformError):
                raise result
            try:
                answer = await self._lock_for_write_back(item.answer.id)
            except ExamPlatformError as e:
                outcomes[item.answer.id] = ScoreOutcome(
                    answer_id=item.answer.id, success=False, error_kind=e.kind, error=e.message
                )
                continue

            if isinstance(result, ScoringFailureError):
                answer.mark_scoring_failed(result.message, self.clock())
                outcomes[answer.id] = ScoreOutcome(
                    answer_id=answer.id, success=False,
                    error_kind=result.kind, error=result.message,
                )
                logger.warning("AI scoring of answer %s failed: %s", answer.id, result.message)
            elif isinstance(result, ExamPlatformError):
                outcomes[answer.id] = ScoreOutcome(
                    answer_id=answer.id, success=False,
                    error_kind=result.kind, error=result.message,
                )
            else:
                outcomes[answer.id] = self._write_back(answer, result)
                attempt_ids.add(answer.attempt_id)

        await self.db.flush()

        lifecycle = AttemptService(self.db, clock=self.clock)
        for attempt_id in attempt_ids:
            await lifecycle.recalculate(attempt_id)

        report = BatchScoreReport(results=[outcomes[aid] for aid in dict.fromkeys(answer_ids)])
        logger.info(
            "Batch scoring finished: total=%d successful=%d failed=%d",
            report.total, report.successful, report.failed,
        )
        return report

    async def _prepare(self, answer_id: uuid.UUID) -> _Prepared:
        answer = await self.answers.get_by_id(answer_id)
        if not answer:
            raise NotFoundError("Attempt answer not found")

        # Checked before the grader is ever invoked
        if answer.is_manually_reviewed:
            raise ManuallyReviewedError()

        if answer.attempt.status not in (AttemptStatus.SUBMITTED, AttemptStatus.GRADED):
            raise InvalidStateError(
                f"Cannot score an answer of a {type_value(answer.attempt.status)} attempt"
            )

        question = answer.question
        if not is_ai_scorable(question.type):
            raise ValidationError("Question type does not require AI scoring")

        skill = type_value(question.skill)
        if skill not in SCORABLE_SKILLS:
            raise ValidationError(f"AI scoring not supported for skill: {skill}")

        result = await self.db.execute(
            select(AIScoringRubric)
            .where(AIScoringRubric.skill == skill)
            .order_by(AIScoringRubric.criteria_name)
        )
        rubrics = list(result.scalars().all())
        if not rubrics:
            raise ValidationError(f"No scoring rubrics found for skill: {skill}")

        return _Prepared(answer=answer, rubrics=rubrics)

    async def _lock_for_write_back(self, answer_id: uuid.UUID) -> AttemptAnswer:
        """
        Re-read and lock the answer row right before the grader result lands.

        A teacher may have reviewed the answer while the grader call was in
        flight; the reviewed grade always wins.
        """
        result = await self.db.execute(
            select(AttemptAnswer)
            .where(AttemptAnswer.id == answer_id)
            .with_for_update(of=AttemptAnswer)
            .execution_options(populate_existing=True)
        )
        answer = result.unique().scalar_one_or_none()
        if not answer:
            raise NotFoundError("Attempt answer not found")
        if answer.is_manually_reviewed:
            logger.info("Answer %s was reviewed during AI scoring; result discarded", answer_id)
            raise ManuallyReviewedError()
        return answer

    async def _grade(self, item: _Prepared) -> ScoringResult:
        question = item.answer.question
        return await self.grader.score(
            skill=question.skill,
            question_text=question.question_text,
            answer_text=item.answer.answer_text,
            rubrics=item.rubrics,
            level=question.level,
        )

    def _write_back(self, answer: AttemptAnswer, result: ScoringResult) -> ScoreOutcome:
        feedback = result.to_dict()
        answer.mark_ai_graded(result.total_score, result.is_correct, feedback, self.clock())
        logger.info(
            "Answer %s AI-graded: score=%s is_correct=%s",
            answer.id, result.total_score, result.is_correct,
        )
        return ScoreOutcome(
            answer_id=answer.id,
            success=True,
            score=result.total_score,
            is_correct=result.is_correct,
            feedback=feedback,
        )
