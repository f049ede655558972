"""
APTIS Exam Platform - AI Scoring API
Endpoints for AI scoring of open-ended answers
"""
import uuid

from fastapi import APIRouter

from aptis_exam.api.deps import Grader, Scoring
from aptis_exam.schemas.common import ApiResponse, BatchSummary
from aptis_exam.schemas.scoring import BatchScoreResponse, ScoreMultipleRequest, ScoreOutcomeView

router = APIRouter(prefix="/ai", tags=["AI Scoring"])


@router.post("/score-answer/{answer_id}", response_model=ApiResponse[ScoreOutcomeView])
async def score_answer(
    answer_id: uuid.UUID,
    current_user: Grader,
    scoring: Scoring,
):
    """Score one submitted open-ended answer with the AI grader."""
    outcome = await scoring.score_answer(answer_id)
    return ApiResponse(
        message="Answer scored successfully",
        data=ScoreOutcomeView.model_validate(outcome),
    )


@router.post("/score-multiple", response_model=ApiResponse[BatchScoreResponse])
async def score_multiple(
    payload: ScoreMultipleRequest,
    current_user: Grader,
    scoring: Scoring,
):
    """
    Score a batch of answers.

    Failures are reported per answer; the request itself succeeds.
    """
    report = await scoring.score_multiple(payload.answer_ids)
    return ApiResponse(
        message=f"Scored {report.successful} of {report.total} answers",
        data=BatchScoreResponse(
            results=[ScoreOutcomeView.model_validate(r) for r in report.results],
            summary=BatchSummary(
                total=report.total,
                successful=report.successful,
                failed=report.failed,
            ),
        ),
    )


@router.post("/rescore-answer/{answer_id}", response_model=ApiResponse[ScoreOutcomeView])
async def rescore_answer(
    answer_id: uuid.UUID,
    current_user: Grader,
    scoring: Scoring,
):
    outcome = await scoring.rescore_answer(answer_id, requested_by=current_user.id)
    return ApiResponse(
        message="Answer rescored successfully",
        data=ScoreOutcomeView.model_validate(outcome),
    )
