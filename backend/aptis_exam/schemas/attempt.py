"""
APTIS Exam Platform - Attempt Schemas
Pydantic schemas for exam attempt requests and responses
"""
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from aptis_exam.models.exam import ExamQuestion


class ExamSummary(BaseModel):
    """Exam header shown alongside an attempt."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    level: str
    duration_minutes: int
    total_points: float
    passing_score: float | None = None


class QuestionView(BaseModel):
    """A question as presented inside an attempt."""
    id: uuid.UUID
    order_number: int
    skill: str
    level: str
    type: str
    question_text: str
    media_url: str | None = None
    passage_text: str | None = None
    part_number: int | None = None
    options: list[Any] | None = None
    points: float
    # Only revealed once the attempt is finished
    correct_answer: str | None = None
    explanation: str | None = None

    @classmethod
    def from_exam_question(cls, exam_question: ExamQuestion, reveal: bool = False) -> "QuestionView":
        question = exam_question.question
        return cls(
            id=question.id,
            order_number=exam_question.order_number,
            skill=question.skill,
            level=question.level,
            type=question.type,
            question_text=question.question_text,
            media_url=question.media_url,
            passage_text=question.passage_text,
            part_number=question.part_number,
            options=question.options,
            points=exam_question.effective_points,
            correct_answer=question.correct_answer if reveal else None,
            explanation=question.explanation if reveal else None,
        )


class AnswerView(BaseModel):
    """A saved answer; grading fields stay empty while the attempt is live."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_id: uuid.UUID
    answer_text: str | None = None
    audio_url: str | None = None
    grading_state: str | None = None
    is_correct: bool | None = None
    score: float | None = None
    ai_feedback: dict[str, Any] | None = None
    feedback: str | None = None
    needs_manual_review: bool = False
    review_reason: str | None = None
    graded_at: datetime | None = None
    manual_review_at: datetime | None = None

    def without_grading(self) -> "AnswerView":
        return self.model_copy(update={
            "grading_state": None,
            "is_correct": None,
            "score": None,
            "ai_feedback": None,
            "feedback": None,
            "graded_at": None,
        })


class AttemptView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    exam_id: uuid.UUID
    user_id: uuid.UUID
    status: str
    start_time: datetime
    end_time: datetime | None = None
    total_score: float | None = None
    percentage: float | None = None
    time_spent_minutes: int | None = None


class StartAttemptResponse(BaseModel):
    attempt: AttemptView
    exam: ExamSummary
    questions: list[QuestionView]


class AttemptDetailResponse(BaseModel):
    attempt: AttemptView
    exam: ExamSummary
    questions: list[QuestionView]
    answers: list[AnswerView]


class SaveAnswerRequest(BaseModel):
    """Request to save (or overwrite) one answer."""
    question_id: uuid.UUID
    answer_text: str | None = None
    audio_url: str | None = Field(default=None, max_length=500)


class AutoSaveRequest(BaseModel):
    """Batch of answers saved periodically by the client."""
    answers: list[SaveAnswerRequest] = Field(default_factory=list)


class AutoSaveItemResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: uuid.UUID
    success: bool
    error_kind: str | None = None
    error: str | None = None


class AutoSaveResponse(BaseModel):
    results: list[AutoSaveItemResult]
    saved: int
    failed: int


class ProgressResponse(BaseModel):
    """Answered counts and clock of an attempt."""
    total_questions: int
    answered_questions: int
    unanswered_questions: int
    time_elapsed_minutes: float
    time_remaining_minutes: float
    is_time_up: bool
