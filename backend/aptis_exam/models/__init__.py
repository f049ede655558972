"""APTIS Exam Platform - Models initialization."""
from aptis_exam.models.user import User, UserRole
from aptis_exam.models.exam import (
    AIScoringRubric,
    AI_SCORABLE_TYPES,
    AUTO_GRADABLE_TYPES,
    CEFRLevel,
    Exam,
    ExamQuestion,
    EXACT_MATCH_TYPES,
    FILL_IN_TYPES,
    Question,
    QuestionType,
    Skill,
)
from aptis_exam.models.attempt import (
    AttemptAnswer,
    AttemptStatus,
    ExamAttempt,
    GradingState,
)


__all__ = [
    # User models
    "User",
    "UserRole",
    # Exam models
    "Exam",
    "ExamQuestion",
    "Question",
    "QuestionType",
    "Skill",
    "CEFRLevel",
    "AIScoringRubric",
    "EXACT_MATCH_TYPES",
    "FILL_IN_TYPES",
    "AUTO_GRADABLE_TYPES",
    "AI_SCORABLE_TYPES",
    # Attempt models
    "ExamAttempt",
    "AttemptAnswer",
    "AttemptStatus",
    "GradingState",
]
