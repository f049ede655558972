"""
APTIS Exam Platform - Teacher Review API
Endpoints for manual grading and the review queue
"""
import uuid

from fastapi import APIRouter, Query

from aptis_exam.api.deps import Grader, Reviews
from aptis_exam.schemas.common import ApiResponse
from aptis_exam.schemas.scoring import FlagRequest, ManualReviewRequest, ReviewedAnswerView

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.get("/pending", response_model=ApiResponse[list[ReviewedAnswerView]])
async def list_pending_reviews(
    current_user: Grader,
    reviews: Reviews,
    limit: int = Query(default=50, ge=1, le=200),
):
    """Answers waiting for a grade, flagged ones first."""
    answers = await reviews.list_pending(limit=limit)
    return ApiResponse(data=[ReviewedAnswerView.model_validate(a) for a in answers])


@router.post("/answers/{answer_id}", response_model=ApiResponse[ReviewedAnswerView])
async def submit_review(
    answer_id: uuid.UUID,
    payload: ManualReviewRequest,
    current_user: Grader,
    reviews: Reviews,
):
    answer = await reviews.submit_manual_review(
        answer_id,
        reviewer_id=current_user.id,
        score=payload.score,
        feedback=payload.feedback,
        is_correct=payload.is_correct,
    )
    return ApiResponse(
        message="Review submitted successfully",
        data=ReviewedAnswerView.model_validate(answer),
    )


@router.post("/answers/{answer_id}/flag", response_model=ApiResponse[ReviewedAnswerView])
async def flag_answer(
    answer_id: uuid.UUID,
    payload: FlagRequest,
    current_user: Grader,
    reviews: Reviews,
):
    answer = await reviews.flag_for_review(answer_id, payload.reason)
    return ApiResponse(
        message="Answer flagged for review",
        data=ReviewedAnswerView.model_validate(answer),
    )
