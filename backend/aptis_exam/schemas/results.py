"""
APTIS Exam Platform - Result Schemas
Pydantic schemas for attempt statistics and cohort comparison
"""
from pydantic import BaseModel, ConfigDict

from aptis_exam.schemas.attempt import AnswerView, AttemptView


class SkillStatsView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_questions: int
    correct_answers: int
    total_points: float
    earned_points: float
    accuracy: float


class AttemptStatisticsView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_questions: int
    graded_questions: int
    correct_answers: int
    pending_grading: int
    accuracy: float
    by_skill: dict[str, SkillStatsView]


class AttemptResultResponse(BaseModel):
    attempt: AttemptView
    answers: list[AnswerView]
    statistics: AttemptStatisticsView


class CohortComparisonView(BaseModel):
    """The caller's standing in an anonymized cohort."""
    model_config = ConfigDict(from_attributes=True)

    your_average: float
    class_average: float
    class_median: float
    highest_score: float
    lowest_score: float
    your_percentile: float
    total_students: int
    your_rank: int
