"""
APTIS Exam Platform - Auto Grader
Deterministic correctness check for closed-form question kinds
"""
from dataclasses import dataclass

from aptis_exam.models.exam import (
    EXACT_MATCH_TYPES,
    FILL_IN_TYPES,
    Question,
    type_value,
)


@dataclass(frozen=True)
class AutoGradeResult:
    """Outcome of grading one closed-form answer."""
    is_correct: bool
    score: float


def normalize(value: object) -> str:
    return str(value).strip().lower()


def check_answer(question_type: str, correct_answer: str | None, user_answer: str | None) -> bool:
    """
    Compare a student answer against the key.

    Exact-match kinds need equality after normalization. Fill-in kinds also
    accept either string containing the other, so minor extra wording
    ("Paris is the capital" for "Paris") still counts.
    """
    kind = type_value(question_type)
    if kind not in EXACT_MATCH_TYPES and kind not in FILL_IN_TYPES:
        raise ValueError(f"Question type '{kind}' is not auto-gradable")

    if not user_answer or correct_answer is None:
        return False

    answer = normalize(user_answer)
    expected = normalize(correct_answer)
    if not answer or not expected:
        return False

    if kind in EXACT_MATCH_TYPES:
        return answer == expected
    return answer == expected or expected in answer or answer in expected


def grade(question: Question, user_answer: str | None, points: float | None = None) -> AutoGradeResult:
    """
    Grade a closed-form answer.

    Args:
        question: The question being answered (must be auto-gradable).
        user_answer: Raw answer text; None or blank is always incorrect.
        points: Points awarded when correct; defaults to question.points.
    """
    worth = float(points if points is not None else question.points)
    is_correct = check_answer(question.type, question.correct_answer, user_answer)
    return AutoGradeResult(is_correct=is_correct, score=worth if is_correct else 0.0)
