"""
APTIS Exam Platform - Result Aggregator
Per-skill attempt statistics and anonymized cohort comparison
"""
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aptis_exam.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from aptis_exam.models.attempt import AttemptAnswer, AttemptStatus, ExamAttempt
from aptis_exam.models.exam import CEFRLevel, Exam, ExamQuestion, type_value
from aptis_exam.services.answer_store import AnswerStore

FINISHED_STATUSES = (AttemptStatus.SUBMITTED.value, AttemptStatus.GRADED.value)


@dataclass
class SkillStats:
    total_questions: int = 0
    correct_answers: int = 0
    total_points: float = 0.0
    earned_points: float = 0.0
    accuracy: float = 0.0


@dataclass
class AttemptStatistics:
    total_questions: int
    graded_questions: int
    correct_answers: int
    pending_grading: int
    accuracy: float
    by_skill: dict[str, SkillStats] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CohortComparison:
    your_average: float
    class_average: float
    class_median: float
    highest_score: float
    lowest_score: float
    your_percentile: float
    total_students: int
    your_rank: int

    def to_dict(self) -> dict:
        return asdict(self)


def _ratio(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


def summarize_answers(
    answers: Iterable[AttemptAnswer],
    points_by_question: dict[uuid.UUID, float],
) -> AttemptStatistics:
    """
    Group answers by skill and count graded/correct/pending.

    Overall accuracy only counts graded answers, so pending open-ended work
    does not drag it down.
    """
    by_skill: dict[str, SkillStats] = {}
    total = graded = correct = 0

    for answer in answers:
        question = answer.question
        worth = points_by_question.get(answer.question_id, float(question.points))
        stats = by_skill.setdefault(type_value(question.skill), SkillStats())

        stats.total_questions += 1
        stats.total_points += worth
        stats.earned_points += answer.earned_points(worth)
        if answer.is_correct:
            stats.correct_answers += 1

        total += 1
        if answer.is_graded:
            graded += 1
            if answer.is_correct:
                correct += 1

    for stats in by_skill.values():
        stats.total_points = round(stats.total_points, 2)
        stats.earned_points = round(stats.earned_points, 2)
        stats.accuracy = _ratio(stats.correct_answers, stats.total_questions)

    return AttemptStatistics(
        total_questions=total,
        graded_questions=graded,
        correct_answers=correct,
        pending_grading=total - graded,
        accuracy=_ratio(correct, graded),
        by_skill=by_skill,
    )


def compare_cohort(
    cohort: Sequence[tuple[uuid.UUID, float]],
    user_id: uuid.UUID,
) -> CohortComparison:
    """
    Compare one user against a cohort of (user_id, percentage) pairs.

    The user's value is the mean of their own percentages (0 when they have
    none). Percentile counts cohort percentages strictly below that value;
    rank is one plus the number of students whose mean is strictly higher.
    """
    if not cohort:
        raise NotFoundError("No data available for comparison")

    percentages = sorted(p for _, p in cohort)
    count = len(percentages)

    by_user: dict[uuid.UUID, list[float]] = {}
    for uid, pct in cohort:
        by_user.setdefault(uid, []).append(pct)
    means = {uid: sum(values) / len(values) for uid, values in by_user.items()}

    yours = means.get(user_id, 0.0)
    better_than = sum(1 for p in percentages if yours > p)
    rank = 1 + sum(1 for uid, mean in means.items() if uid != user_id and mean > yours)

    return CohortComparison(
        your_average=round(yours, 2),
        class_average=round(sum(percentages) / count, 2),
        # Upper-middle element for even cohorts
        class_median=round(percentages[count // 2], 2),
        highest_score=round(percentages[-1], 2),
        lowest_score=round(percentages[0], 2),
        your_percentile=round(better_than / count * 100, 2),
        total_students=len(means),
        your_rank=rank,
    )


class ResultService:
    """Read-side service for finished attempts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.answers = AnswerStore(db)

    async def get_attempt_result(
        self,
        attempt_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> tuple[ExamAttempt, list[AttemptAnswer], AttemptStatistics]:
        """
        Statistics for an owned attempt.

        Raises:
            NotFoundError: attempt missing or owned by someone else
            InvalidStateError: attempt still in progress
        """
        result = await self.db.execute(
            select(ExamAttempt).where(
                ExamAttempt.id == attempt_id,
                ExamAttempt.user_id == user_id,
            )
        )
        attempt = result.unique().scalar_one_or_none()
        if not attempt:
            raise NotFoundError("Result not found")
        if attempt.is_live:
            raise InvalidStateError("Exam is still in progress")

        answers = await self.answers.list_for_attempt(attempt.id)
        points = await self._points_by_question(attempt.exam_id)
        return attempt, answers, summarize_answers(answers, points)

    async def compare(
        self,
        user_id: uuid.UUID,
        exam_id: uuid.UUID | None = None,
        level: CEFRLevel | str | None = None,
    ) -> CohortComparison:
        """
        Compare the caller with every finished attempt on an exam or level.

        `exam_id` wins when both filters are given.
        """
        if exam_id is None and level is None:
            raise ValidationError("exam_id or level is required")

        query = select(ExamAttempt.user_id, ExamAttempt.percentage).where(
            ExamAttempt.status.in_(FINISHED_STATUSES),
            ExamAttempt.percentage.isnot(None),
        )
        if exam_id is not None:
            query = query.where(ExamAttempt.exam_id == exam_id)
        else:
            query = query.join(Exam, Exam.id == ExamAttempt.exam_id).where(
                Exam.level == type_value(level)
            )

        result = await self.db.execute(query)
        cohort = [(uid, float(pct)) for uid, pct in result.all()]
        return compare_cohort(cohort, user_id)

    async def _points_by_question(self, exam_id: uuid.UUID) -> dict[uuid.UUID, float]:
        result = await self.db.execute(
            select(ExamQuestion).where(ExamQuestion.exam_id == exam_id)
        )
        return {eq.question_id: eq.effective_points for eq in result.unique().scalars().all()}
