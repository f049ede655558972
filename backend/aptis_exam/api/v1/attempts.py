"""
APTIS Exam Platform - Attempt API
Endpoints for taking an exam: start, answer, auto-save, submit, progress
"""
import uuid

from fastapi import APIRouter, Request, status

from aptis_exam.api.deps import Attempts, Student
from aptis_exam.schemas.attempt import (
    AnswerView,
    AttemptDetailResponse,
    AttemptView,
    AutoSaveItemResult,
    AutoSaveRequest,
    AutoSaveResponse,
    ExamSummary,
    ProgressResponse,
    QuestionView,
    SaveAnswerRequest,
    StartAttemptResponse,
)
from aptis_exam.schemas.common import ApiResponse
from aptis_exam.services.attempt_lifecycle import AnswerInput, AttemptSnapshot, ClientMeta

router = APIRouter(tags=["Attempts"])


def _questions(snapshot: AttemptSnapshot) -> list[QuestionView]:
    # Answer keys stay hidden until the attempt is closed
    reveal = not snapshot.attempt.is_live
    return [QuestionView.from_exam_question(eq, reveal=reveal) for eq in snapshot.questions]


@router.post(
    "/exams/{exam_id}/start",
    response_model=ApiResponse[StartAttemptResponse],
    status_code=status.HTTP_201_CREATED,
)
async def start_exam(
    exam_id: uuid.UUID,
    request: Request,
    current_user: Student,
    attempts: Attempts,
):
    """
    Start a new attempt of a published exam.

    Returns the frozen question order without answer keys.
    """
    meta = ClientMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    snapshot = await attempts.start(exam_id, current_user.id, meta)

    return ApiResponse(
        message="Exam started successfully",
        data=StartAttemptResponse(
            attempt=AttemptView.model_validate(snapshot.attempt),
            exam=ExamSummary.model_validate(snapshot.attempt.exam),
            questions=_questions(snapshot),
        ),
    )


@router.get("/attempts/{attempt_id}", response_model=ApiResponse[AttemptDetailResponse])
async def get_attempt(
    attempt_id: uuid.UUID,
    current_user: Student,
    attempts: Attempts,
):
    """Get an owned attempt with its questions and saved answers."""
    snapshot = await attempts.get_attempt(attempt_id, current_user.id)

    answers = [AnswerView.model_validate(a) for a in snapshot.answers]
    if snapshot.attempt.is_live:
        answers = [a.without_grading() for a in answers]

    return ApiResponse(
        data=AttemptDetailResponse(
            attempt=AttemptView.model_validate(snapshot.attempt),
            exam=ExamSummary.model_validate(snapshot.attempt.exam),
            questions=_questions(snapshot),
            answers=answers,
        ),
    )


@router.post("/attempts/{attempt_id}/answers", response_model=ApiResponse[AnswerView])
async def save_answer(
    attempt_id: uuid.UUID,
    payload: SaveAnswerRequest,
    current_user: Student,
    attempts: Attempts,
):
    """Save or overwrite one answer of a live attempt."""
    answer = await attempts.save_answer(
        attempt_id,
        current_user.id,
        payload.question_id,
        payload.answer_text,
        payload.audio_url,
    )
    return ApiResponse(
        message="Answer saved successfully",
        data=AnswerView.model_validate(answer).without_grading(),
    )


@router.post("/attempts/{attempt_id}/auto-save", response_model=ApiResponse[AutoSaveResponse])
async def auto_save_answers(
    attempt_id: uuid.UUID,
    payload: AutoSaveRequest,
    current_user: Student,
    attempts: Attempts,
):
    """
    Save a batch of answers.

    Items are applied independently; rejected items are reported per item
    and do not fail the request.
    """
    report = await attempts.auto_save(
        attempt_id,
        current_user.id,
        [
            AnswerInput(
                question_id=item.question_id,
                answer_text=item.answer_text,
                audio_url=item.audio_url,
            )
            for item in payload.answers
        ],
    )
    return ApiResponse(
        message="Answers auto-saved",
        data=AutoSaveResponse(
            results=[AutoSaveItemResult.model_validate(r) for r in report.results],
            saved=report.saved,
            failed=report.failed,
        ),
    )


@router.post("/attempts/{attempt_id}/submit", response_model=ApiResponse[AttemptView])
async def submit_exam(
    attempt_id: uuid.UUID,
    current_user: Student,
    attempts: Attempts,
):
    """Submit a live attempt; closed-form answers are graded immediately."""
    attempt = await attempts.submit(attempt_id, current_user.id)
    return ApiResponse(
        message="Exam submitted successfully",
        data=AttemptView.model_validate(attempt),
    )


@router.post("/attempts/{attempt_id}/abandon", response_model=ApiResponse[AttemptView])
async def abandon_exam(
    attempt_id: uuid.UUID,
    current_user: Student,
    attempts: Attempts,
):
    attempt = await attempts.abandon(attempt_id, current_user.id)
    return ApiResponse(
        message="Attempt abandoned",
        data=AttemptView.model_validate(attempt),
    )


@router.get("/attempts/{attempt_id}/progress", response_model=ApiResponse[ProgressResponse])
async def get_progress(
    attempt_id: uuid.UUID,
    current_user: Student,
    attempts: Attempts,
):
    progress = await attempts.get_progress(attempt_id, current_user.id)
    return ApiResponse(
        data=ProgressResponse(
            total_questions=progress.total_questions,
            answered_questions=progress.answered_questions,
            unanswered_questions=progress.unanswered_questions,
            time_elapsed_minutes=progress.time_elapsed_minutes,
            time_remaining_minutes=progress.time_remaining_minutes,
            is_time_up=progress.is_time_up,
        ),
    )
