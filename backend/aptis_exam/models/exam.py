"""
APTIS Exam Platform - Exam Models
SQLAlchemy models for questions, exams and AI scoring rubrics
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aptis_exam.core.database import Base, JSONType

class Skill(str, Enum):
    """Language skill a question exercises."""
    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"
    LISTENING = "listening"
    READING = "reading"
    WRITING = "writing"
    SPEAKING = "speaking"


class CEFRLevel(str, Enum):
    """Language-proficiency tier."""
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"


class QuestionType(str, Enum):
    """Question kinds, grouped by how they are graded."""
    # Exact match
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    LISTENING_MULTIPLE_CHOICE = "listening_multiple_choice"
    LISTENING_MATCHING = "listening_matching"
    READING_MULTIPLE_CHOICE = "reading_multiple_choice"
    READING_MATCHING = "reading_matching"
    READING_TRUE_FALSE = "reading_true_false"
    # Fill in (lenient match)
    FILL_BLANKS = "fill_blanks"
    WORD_FORMATION = "word_formation"
    SENTENCE_TRANSFORMATION = "sentence_transformation"
    LISTENING_NOTE_COMPLETION = "listening_note_completion"
    LISTENING_FORM_FILLING = "listening_form_filling"
    READING_GAPPED_TEXT = "reading_gapped_text"
    # Open-ended
    ESSAY = "essay"
    SHORT_ANSWER = "short_answer"
    AUDIO_RESPONSE = "audio_response"
    IMAGE_DESCRIPTION = "image_description"
    SHORT_MESSAGE = "short_message"
    INFORMAL_EMAIL = "informal_email"
    FORMAL_EMAIL = "formal_email"
    ESSAY_OPINION = "essay_opinion"
    PERSONAL_INFORMATION = "personal_information"
    DESCRIBING_PHOTO = "describing_photo"
    COMPARING_SITUATIONS = "comparing_situations"
    DISCUSSION_TOPIC = "discussion_topic"


EXACT_MATCH_TYPES = frozenset(t.value for t in (
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.TRUE_FALSE,
    QuestionType.LISTENING_MULTIPLE_CHOICE,
    QuestionType.LISTENING_MATCHING,
    QuestionType.READING_MULTIPLE_CHOICE,
    QuestionType.READING_MATCHING,
    QuestionType.READING_TRUE_FALSE,
))

FILL_IN_TYPES = frozenset(t.value for t in (
    QuestionType.FILL_BLANKS,
    QuestionType.WORD_FORMATION,
    QuestionType.SENTENCE_TRANSFORMATION,
    QuestionType.LISTENING_NOTE_COMPLETION,
    QuestionType.LISTENING_FORM_FILLING,
    QuestionType.READING_GAPPED_TEXT,
))

AUTO_GRADABLE_TYPES = EXACT_MATCH_TYPES | FILL_IN_TYPES

AI_SCORABLE_TYPES = frozenset(t.value for t in QuestionType) - AUTO_GRADABLE_TYPES


def type_value(value: str) -> str:
    """Plain string value of an enum member or raw column value."""
    return value.value if isinstance(value, Enum) else value


def is_auto_gradable(question_type: str) -> bool:
    return type_value(question_type) in AUTO_GRADABLE_TYPES


def is_ai_scorable(question_type: str) -> bool:
    return type_value(question_type) in AI_SCORABLE_TYPES


class Question(Base):
    """A question in the bank."""

    __tablename__ = "questions"
    __table_args__ = (
        CheckConstraint("points > 0", name="ck_question_points_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    skill: Mapped[Skill] = mapped_column(String(20), index=True)
    level: Mapped[CEFRLevel] = mapped_column(String(2), index=True)
    type: Mapped[QuestionType] = mapped_column(String(50))

    question_text: Mapped[str] = mapped_column(Text)
    media_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    passage_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    part_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Ordered option list for choice questions
    options: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    # NULL for open-ended kinds
    correct_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    points: Mapped[float] = mapped_column(Float, default=1.0)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )


class Exam(Base):
    """A timed exam made of an ordered question set."""

    __tablename__ = "exams"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_exam_duration_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[CEFRLevel] = mapped_column(String(2), index=True)

    duration_minutes: Mapped[int] = mapped_column(Integer)
    # Derived: sum of effective question points, see ExamCatalogService
    total_points: Mapped[float] = mapped_column(Float, default=0.0)
    passing_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1)
    shuffle_questions: Mapped[bool] = mapped_column(Boolean, default=False)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    # Relationships
    exam_questions: Mapped[list["ExamQuestion"]] = relationship(
        "ExamQuestion",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="ExamQuestion.order_number",
    )


class ExamQuestion(Base):
    """Binds a question to an exam at a fixed position."""

    __tablename__ = "exam_questions"
    __table_args__ = (
        UniqueConstraint("exam_id", "question_id", name="uq_exam_question"),
        UniqueConstraint("exam_id", "order_number", name="uq_exam_question_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exams.id", ondelete="CASCADE"), index=True
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("questions.id", ondelete="CASCADE"), index=True
    )
    order_number: Mapped[int] = mapped_column(Integer)
    points_override: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Relationships
    exam: Mapped["Exam"] = relationship("Exam", back_populates="exam_questions")
    question: Mapped["Question"] = relationship("Question", lazy="joined")

    @property
    def effective_points(self) -> float:
        if self.points_override is not None:
            return float(self.points_override)
        return float(self.question.points)


class AIScoringRubric(Base):
    """A weighted criterion the AI grader scores open-ended answers against."""

    __tablename__ = "ai_scoring_rubrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    skill: Mapped[Skill] = mapped_column(String(20), index=True)
    criteria_name: Mapped[str] = mapped_column(String(255))
    max_score: Mapped[float] = mapped_column(Float, default=10.0)
    weight_percentage: Mapped[float] = mapped_column(Float)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_prompt_template: Mapped[str] = mapped_column(Text)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
