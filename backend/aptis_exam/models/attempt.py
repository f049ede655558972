"""
APTIS Exam Platform - Attempt Models
SQLAlchemy models for exam attempts and their per-question answers
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aptis_exam.core.database import Base, JSONType

if TYPE_CHECKING:
    from aptis_exam.models.exam import Exam, Question


SCORING_FAILED_REASON = "AI scoring failed"


class AttemptStatus(str, Enum):
    """Attempt lifecycle states."""
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"
    ABANDONED = "abandoned"


class GradingState(str, Enum):
    """
    Who (if anyone) has graded an answer.

    The legacy nullable columns (is_correct/score/graded_by) are derived from
    this state by the mark_* methods below and are what the API serializes.
    """
    UNGRADED = "ungraded"
    AUTO_GRADED = "auto_graded"
    AI_GRADED = "ai_graded"
    MANUALLY_GRADED = "manually_graded"


class ExamAttempt(Base):
    """One student's timed run through an exam's question set."""

    __tablename__ = "exam_attempts"
    __table_args__ = (
        # At most one live attempt per (exam, user), enforced by the store
        Index(
            "uq_exam_attempt_in_progress",
            "exam_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exams.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[AttemptStatus] = mapped_column(
        String(20), default=AttemptStatus.IN_PROGRESS, index=True
    )

    total_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    time_spent_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Frozen question order (list of question id strings) taken at start
    question_order: Mapped[list] = mapped_column(JSONType, default=list)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # Relationships
    exam: Mapped["Exam"] = relationship("Exam", lazy="joined")
    answers: Mapped[list["AttemptAnswer"]] = relationship(
        "AttemptAnswer",
        back_populates="attempt",
        cascade="all, delete-orphan",
    )

    @property
    def is_live(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS


class AttemptAnswer(Base):
    """A student's answer to one question within an attempt."""

    __tablename__ = "attempt_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_answer"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exam_attempts.id", ondelete="CASCADE"), index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )

    answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    grading_state: Mapped[GradingState] = mapped_column(
        String(20), default=GradingState.UNGRADED
    )
    # NULL means "not graded yet"
    is_correct: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    ai_feedback: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Manual review
    needs_manual_review: Mapped[bool] = mapped_column(Boolean, default=False)
    review_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    manual_review_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    manual_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # graded_by stays NULL for automatic and AI grading
    graded_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    graded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # Relationships
    attempt: Mapped["ExamAttempt"] = relationship("ExamAttempt", back_populates="answers")
    question: Mapped["Question"] = relationship("Question", lazy="joined")

    @property
    def is_graded(self) -> bool:
        return self.grading_state not in (None, GradingState.UNGRADED)

    @property
    def is_manually_reviewed(self) -> bool:
        return self.manual_review_by is not None

    def earned_points(self, points: float) -> float:
        """
        Points this answer contributes towards a question worth `points`.

        AI scores are on a 0-100 scale; every other grader writes points.
        """
        if not self.is_graded or self.score is None:
            return 0.0
        if self.grading_state == GradingState.AI_GRADED:
            return round(points * float(self.score) / 100, 2)
        return float(self.score)

    def clear_grading(self) -> None:
        self.grading_state = GradingState.UNGRADED
        self.is_correct = None
        self.score = None

    def mark_auto_graded(self, is_correct: bool, score: float, at: datetime) -> None:
        self.grading_state = GradingState.AUTO_GRADED
        self.is_correct = is_correct
        self.score = score
        self.graded_by = None
        self.graded_at = at

    def mark_ai_graded(
        self,
        total_score: float,
        is_correct: bool,
        feedback: dict[str, Any],
        at: datetime,
    ) -> None:
        self.grading_state = GradingState.AI_GRADED
        self.score = total_score
        self.is_correct = is_correct
        self.ai_feedback = feedback
        self.graded_by = None
        self.graded_at = at
        # A successful retry clears the marker left by a failed run
        if self.review_reason == SCORING_FAILED_REASON:
            self.needs_manual_review = False
            self.review_reason = None

    def mark_manually_graded(
        self,
        reviewer_id: uuid.UUID,
        score: float,
        is_correct: bool,
        feedback: str | None,
        at: datetime,
    ) -> None:
        self.grading_state = GradingState.MANUALLY_GRADED
        self.score = score
        self.is_correct = is_correct
        self.feedback = feedback
        self.needs_manual_review = False
        self.manual_review_by = reviewer_id
        self.manual_review_at = at
        self.graded_by = reviewer_id
        self.graded_at = at

    def mark_scoring_failed(self, error: str, at: datetime) -> None:
        """Record an AI failure without touching score or correctness."""
        self.ai_feedback = {"error": error, "timestamp": at.isoformat()}
        self.needs_manual_review = True
        self.review_reason = SCORING_FAILED_REASON
