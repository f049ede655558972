"""APTIS Exam Platform - Services initialization."""
from aptis_exam.services.ai_scoring import BatchScoreReport, ScoreOutcome, ScoringService
from aptis_exam.services.answer_store import AnswerStore
from aptis_exam.services.attempt_lifecycle import (
    AnswerInput,
    AttemptService,
    AttemptSnapshot,
    AutoSaveReport,
    ClientMeta,
    Progress,
)
from aptis_exam.services.exam_catalog import ExamCatalogService
from aptis_exam.services.manual_review import ReviewService
from aptis_exam.services.results import AttemptStatistics, CohortComparison, ResultService

__all__ = [
    "AnswerInput",
    "AnswerStore",
    "AttemptService",
    "AttemptSnapshot",
    "AttemptStatistics",
    "AutoSaveReport",
    "BatchScoreReport",
    "ClientMeta",
    "CohortComparison",
    "ExamCatalogService",
    "Progress",
    "ResultService",
    "ReviewService",
    "ScoreOutcome",
    "ScoringService",
]
