"""
APTIS Exam Platform - Exam Catalog Tests
"""
import pytest
from sqlalchemy.exc import IntegrityError

from aptis_exam.core.exceptions import NotFoundError, ValidationError
from aptis_exam.models import Exam, Question
from aptis_exam.services.exam_catalog import ExamCatalogService


async def add_bank_question(db_session, points: float) -> Question:
    question = Question(
        skill="grammar",
        level="B1",
        type="multiple_choice",
        question_text="Pick one",
        correct_answer="A",
        points=points,
    )
    db_session.add(question)
    await db_session.flush()
    return question


@pytest.mark.asyncio
async def test_total_points_follow_question_set(db_session, make_exam):
    exam, _ = await make_exam([{"points": 2}, {"points": 3, "points_override": 5}])
    assert exam.total_points == 7

    catalog = ExamCatalogService(db_session)
    extra = await add_bank_question(db_session, points=1.5)
    await catalog.add_question(exam.id, extra.id, order_number=3)
    assert exam.total_points == 8.5

    await catalog.remove_question(exam.id, extra.id)
    assert exam.total_points == 7
    assert await catalog.recalculate_total_points(exam.id) == 7


@pytest.mark.asyncio
async def test_duplicate_question_is_rejected(db_session, make_exam):
    exam, (question,) = await make_exam([{"points": 1}])
    catalog = ExamCatalogService(db_session)

    with pytest.raises(ValidationError):
        await catalog.add_question(exam.id, question.id, order_number=2)


@pytest.mark.asyncio
async def test_duplicate_order_number_is_rejected(db_session, make_exam):
    exam, _ = await make_exam([{"points": 1}])
    catalog = ExamCatalogService(db_session)
    other = await add_bank_question(db_session, points=1)

    with pytest.raises(ValidationError):
        await catalog.add_question(exam.id, other.id, order_number=1)
    assert exam.total_points == 1


@pytest.mark.asyncio
async def test_missing_entities(db_session, make_exam):
    exam, _ = await make_exam([])
    catalog = ExamCatalogService(db_session)
    question = await add_bank_question(db_session, points=1)

    with pytest.raises(NotFoundError):
        await catalog.remove_question(exam.id, question.id)
    with pytest.raises(ValidationError):
        await catalog.add_question(exam.id, question.id, order_number=1, points_override=0)


@pytest.mark.asyncio
async def test_question_points_must_be_positive(db_session):
    with pytest.raises(IntegrityError):
        await add_bank_question(db_session, points=0)
    await db_session.rollback()


@pytest.mark.asyncio
async def test_exam_duration_must_be_positive(db_session):
    db_session.add(Exam(title="Broken", level="B1", duration_minutes=0))
    with pytest.raises(IntegrityError):
        await db_session.flush()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_pointless_question_cannot_join_exam(db_session, make_exam):
    exam, _ = await make_exam([])
    question = await add_bank_question(db_session, points=1)
    # Row predating the points check
    question.points = 0
    catalog = ExamCatalogService(db_session)

    with pytest.raises(ValidationError):
        await catalog.add_question(exam.id, question.id, order_number=1)
    assert exam.total_points == 0
