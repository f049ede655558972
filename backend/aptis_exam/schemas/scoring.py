"""
APTIS Exam Platform - Scoring Schemas
Pydantic schemas for AI scoring and teacher review
"""
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from aptis_exam.schemas.attempt import AnswerView
from aptis_exam.schemas.common import BatchSummary


class ScoreMultipleRequest(BaseModel):
    answer_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)


class ScoreOutcomeView(BaseModel):
    """Result of AI-scoring one answer."""
    model_config = ConfigDict(from_attributes=True)

    answer_id: uuid.UUID
    success: bool
    score: float | None = None
    is_correct: bool | None = None
    feedback: dict[str, Any] | None = None
    error_kind: str | None = None
    error: str | None = None


class BatchScoreResponse(BaseModel):
    results: list[ScoreOutcomeView]
    summary: BatchSummary


class ManualReviewRequest(BaseModel):
    """Teacher grade for one answer."""
    score: float
    feedback: str | None = None
    is_correct: bool | None = None


class FlagRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255)


class ReviewedAnswerView(AnswerView):
    attempt_id: uuid.UUID
    manual_review_by: uuid.UUID | None = None
    graded_by: uuid.UUID | None = None
    created_at: datetime | None = None
