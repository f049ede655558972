"""
APTIS Exam Platform - Auto Grader Tests
"""
import pytest

from aptis_exam.models.exam import Question, QuestionType
from aptis_exam.services import auto_grader


def make_question(type_: str, correct_answer: str | None, points: float = 1.0) -> Question:
    return Question(
        skill="reading",
        level="B1",
        type=type_,
        question_text="?",
        correct_answer=correct_answer,
        points=points,
    )


def test_fill_blanks_accepts_extra_wording():
    question = make_question("fill_blanks", "Paris", points=2)
    result = auto_grader.grade(question, "Paris is the capital")
    assert result.is_correct is True
    assert result.score == 2


def test_fill_in_accepts_answer_contained_in_key():
    question = make_question(QuestionType.WORD_FORMATION, "happiness")
    assert auto_grader.grade(question, "happi").is_correct is True


def test_multiple_choice_requires_exact_match():
    question = make_question("multiple_choice", "B", points=10)
    assert auto_grader.grade(question, "  b ").is_correct is True
    assert auto_grader.grade(question, "B or C").is_correct is False


def test_empty_answer_is_incorrect():
    question = make_question("multiple_choice", "B", points=10)
    result = auto_grader.grade(question, "")
    assert result.is_correct is False
    assert result.score == 0

    assert auto_grader.grade(question, None).is_correct is False
    assert auto_grader.grade(make_question("fill_blanks", "Paris"), "   ").is_correct is False


def test_points_argument_overrides_question_points():
    question = make_question("true_false", "true", points=1)
    assert auto_grader.grade(question, "TRUE", points=5).score == 5


def test_open_ended_kinds_are_rejected():
    with pytest.raises(ValueError):
        auto_grader.check_answer("essay", None, "Some essay")
