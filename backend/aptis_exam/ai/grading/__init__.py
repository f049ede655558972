# AI grading of open-ended answers

from aptis_exam.ai.grading.rubric_grader import (
    CriterionScore,
    RubricGrader,
    ScoringResult,
    extract_json_object,
)

__all__ = [
    "CriterionScore",
    "RubricGrader",
    "ScoringResult",
    "extract_json_object",
]
