"""
APTIS Exam Platform - Results API
Endpoints for attempt statistics and anonymized cohort comparison
"""
import uuid

from fastapi import APIRouter

from aptis_exam.api.deps import CurrentUser, Results
from aptis_exam.models.exam import CEFRLevel
from aptis_exam.schemas.attempt import AnswerView, AttemptView
from aptis_exam.schemas.common import ApiResponse
from aptis_exam.schemas.results import (
    AttemptResultResponse,
    AttemptStatisticsView,
    CohortComparisonView,
)

router = APIRouter(prefix="/results", tags=["Results"])


@router.get("/compare", response_model=ApiResponse[CohortComparisonView])
async def compare_performance(
    current_user: CurrentUser,
    results: Results,
    exam_id: uuid.UUID | None = None,
    level: CEFRLevel | None = None,
):
    """Compare the caller with other students on an exam or a level."""
    comparison = await results.compare(current_user.id, exam_id=exam_id, level=level)
    return ApiResponse(data=CohortComparisonView.model_validate(comparison.to_dict()))


@router.get("/{attempt_id}", response_model=ApiResponse[AttemptResultResponse])
async def get_result(
    attempt_id: uuid.UUID,
    current_user: CurrentUser,
    results: Results,
):
    """Detailed result of a finished attempt, grouped by skill."""
    attempt, answers, statistics = await results.get_attempt_result(attempt_id, current_user.id)
    return ApiResponse(
        data=AttemptResultResponse(
            attempt=AttemptView.model_validate(attempt),
            answers=[AnswerView.model_validate(a) for a in answers],
            statistics=AttemptStatisticsView.model_validate(statistics.to_dict()),
        ),
    )
