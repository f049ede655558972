"""
APTIS Exam Platform - Test Configuration
Pytest fixtures and configuration for testing
"""
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from langchain_core.messages import AIMessage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aptis_exam.ai.core.llm import LLMClient
from aptis_exam.ai.grading.rubric_grader import RubricGrader
from aptis_exam.api.deps import get_rubric_grader
from aptis_exam.core.database import Base, get_db
from aptis_exam.core.security import create_access_token
from aptis_exam.main import app
from aptis_exam.models import AIScoringRubric, Exam, Question, User, UserRole
from aptis_exam.services.exam_catalog import ExamCatalogService


class FakeClock:
    """Controllable replacement for time_guard.utcnow."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)


class FakeLLMClient(LLMClient):
    """
    LLM client that replays scripted provider results.

    Each script item is either response text or an exception to raise from
    the provider call. Backoff sleeps are recorded instead of awaited.
    """

    def __init__(self, script: list[Any] | None = None, **kwargs: Any):
        self.sleeps: list[float] = []
        self.prompts: list[str] = []
        self.script = list(script or [])

        async def record_sleep(seconds: float) -> None:
            self.sleeps.append(seconds)

        kwargs.setdefault("provider", "openai")
        kwargs.setdefault("model", "fake-model")
        kwargs.setdefault("max_retries", 3)
        kwargs.setdefault("retry_backoff", 1.0)
        kwargs.setdefault("timeout", 5)
        super().__init__(sleep=record_sleep, **kwargs)

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def _invoke(self, messages, **kwargs):
        self.prompts.append(messages[-1].content)
        if not self.script:
            raise RuntimeError("No scripted LLM response left")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return AIMessage(content=item)


def rubric_response(scores: dict[str, float], overall: str = "Solid work") -> str:
    """Model-style reply wrapping a scoring object in prose."""
    body = ", ".join(
        f'{{"criteria": "{name}", "score": {score}, "feedback": "ok"}}'
        for name, score in scores.items()
    )
    return (
        "Here is my assessment:\n```json\n"
        f'{{"scores": [{body}], "overall_feedback": "{overall}", '
        '"strengths": ["clear structure"], "areas_for_improvement": ["range"], '
        '"suggestions": ["read more"]}\n```'
    )


WRITING_CRITERIA = ("Coherence", "Grammar", "Task Achievement", "Vocabulary")


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Fresh SQLite database for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def test_session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(test_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Session used by tests to seed and inspect data."""
    async with test_session_maker() as session:
        yield session


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest_asyncio.fixture(scope="function")
async def client(test_session_maker, fake_llm) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session and grader overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with test_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rubric_grader] = lambda: RubricGrader(fake_llm)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    counter = {"n": 0}

    async def factory(role: UserRole = UserRole.STUDENT, is_active: bool = True) -> User:
        counter["n"] += 1
        user = User(
            email=f"{role.value}{counter['n']}@example.com",
            full_name=f"{role.value.title()} {counter['n']}",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return factory


@pytest.fixture
def make_exam(db_session: AsyncSession) -> Callable[..., Awaitable[tuple[Exam, list[Question]]]]:
    """
    Create a published exam with the given questions.

    Each question entry is a dict of Question fields plus an optional
    `points_override` for the exam binding.
    """

    async def factory(
        questions: list[dict[str, Any]] | None = None,
        duration_minutes: int = 30,
        max_attempts: int = 1,
        shuffle_questions: bool = False,
        is_published: bool = True,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        level: str = "B1",
    ) -> tuple[Exam, list[Question]]:
        exam = Exam(
            title="APTIS General",
            level=level,
            duration_minutes=duration_minutes,
            total_points=0.0,
            is_published=is_published,
            start_date=start_date,
            end_date=end_date,
            max_attempts=max_attempts,
            shuffle_questions=shuffle_questions,
        )
        db_session.add(exam)
        await db_session.flush()

        catalog = ExamCatalogService(db_session)
        created: list[Question] = []
        for order, overrides in enumerate(questions or [], start=1):
            overrides = dict(overrides)
            points_override = overrides.pop("points_override", None)
            fields = {
                "skill": "reading",
                "level": level,
                "type": "multiple_choice",
                "question_text": f"Question {order}",
                "points": 1.0,
                "is_active": True,
            }
            fields.update(overrides)
            question = Question(**fields)
            db_session.add(question)
            await db_session.flush()
            await catalog.add_question(exam.id, question.id, order, points_override)
            created.append(question)

        await db_session.commit()
        return exam, created

    return factory


@pytest.fixture
def make_rubrics(db_session: AsyncSession) -> Callable[..., Awaitable[list[AIScoringRubric]]]:
    async def factory(
        skill: str = "writing",
        criteria: tuple[str, ...] = WRITING_CRITERIA,
        weights: tuple[float, ...] | None = None,
    ) -> list[AIScoringRubric]:
        weights = weights or tuple(100 / len(criteria) for _ in criteria)
        rubrics = [
            AIScoringRubric(
                skill=skill,
                criteria_name=name,
                max_score=10.0,
                weight_percentage=weight,
                ai_prompt_template=f"Assess {name.lower()}",
            )
            for name, weight in zip(criteria, weights)
        ]
        db_session.add_all(rubrics)
        await db_session.commit()
        return rubrics

    return factory


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers
