"""
APTIS Exam Platform - Rubric Grader
Scores open-ended writing and speaking answers against weighted rubrics via an LLM.
"""
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from aptis_exam.ai.core.llm import LLMClient, LLMError
from aptis_exam.ai.core.telemetry import scoring_span
from aptis_exam.core.config import settings
from aptis_exam.core.exceptions import ParseError, ScoringFailureError, ValidationError
from aptis_exam.models.exam import Skill, type_value

logger = logging.getLogger(__name__)

TRANSCRIPT_UNAVAILABLE = "[Audio transcript unavailable]"


class Rubric(Protocol):
    """Shape of a scoring criterion (AIScoringRubric rows satisfy it)."""
    criteria_name: str
    weight_percentage: float
    ai_prompt_template: str
    max_score: Optional[float]


@dataclass
class CriterionScore:
    """Score of one rubric criterion, normalized to 0-10."""
    criteria: str
    score: float
    feedback: str = ""


@dataclass
class ScoringResult:
    """Schema for AI scoring results."""
    scores: List[CriterionScore]
    total_score: float
    is_correct: bool
    overall_feedback: str = ""
    strengths: List[str] = field(default_factory=list)
    areas_for_improvement: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Structured feedback as stored on the answer."""
        return asdict(self)


_RESPONSE_FORMAT = """Please provide your assessment in the following JSON format:
{{
  "scores": [
    {{
      "criteria": "criteria_name",
      "score": numeric_score,
      "feedback": "detailed_feedback"
    }}
  ],
  "overall_feedback": "general_feedback_and_suggestions",
  "strengths": ["strength1", "strength2"],
  "areas_for_improvement": ["area1", "area2"],
  "suggestions": ["suggestion1", "suggestion2"]
}}

Score each criterion out of 10, considering the student's level. Provide specific, constructive feedback."""


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Return the first well-formed JSON object embedded in `text`.

    Models often wrap the object in prose or markdown fences, so every '{'
    is tried as a starting point until one decodes.

    Raises:
        ParseError: no decodable object in the text
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    raise ParseError("No valid JSON found in response")


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


class RubricGrader:
    """
    AI grader for writing and speaking answers.

    One prompt per submission embeds the question, the student's level,
    the answer (or transcript) and every rubric line. The weighted 0-10
    criterion scores become a 0-100 total.
    """

    WRITING_PROMPT = """You are an expert IELTS Writing examiner. Please score this writing response according to the following criteria:

QUESTION: {question}

STUDENT LEVEL: {level}

STUDENT RESPONSE:
{answer}

SCORING CRITERIA:
{criteria}

""" + _RESPONSE_FORMAT

    SPEAKING_PROMPT = """You are an expert IELTS Speaking examiner. Please score this speaking response according to the following criteria:

QUESTION: {question}

STUDENT LEVEL: {level}

TRANSCRIBED RESPONSE:
{answer}

SCORING CRITERIA:
{criteria}

""" + _RESPONSE_FORMAT

    def __init__(self, llm: LLMClient, pass_threshold: Optional[float] = None):
        self.llm = llm
        self.pass_threshold = (
            settings.AI_PASS_THRESHOLD if pass_threshold is None else pass_threshold
        )

    def build_prompt(
        self,
        skill: str,
        question_text: str,
        answer_text: Optional[str],
        rubrics: Sequence[Rubric],
        level: str,
    ) -> str:
        criteria = "\n".join(
            f"{r.criteria_name} ({r.weight_percentage:g}%): {r.ai_prompt_template}"
            for r in rubrics
        )
        if type_value(skill) == Skill.SPEAKING.value:
            return self.SPEAKING_PROMPT.format(
                question=question_text,
                level=type_value(level),
                answer=answer_text or TRANSCRIPT_UNAVAILABLE,
                criteria=criteria,
            )
        return self.WRITING_PROMPT.format(
            question=question_text,
            level=type_value(level),
            answer=answer_text or "",
            criteria=criteria,
        )

    def parse_response(self, text: str, rubrics: Sequence[Rubric]) -> ScoringResult:
        """
        Turn model output into a ScoringResult.

        Criterion scores are matched to rubrics by name (case-insensitive),
        clamped to the rubric's range and normalized to 0-10. A rubric the
        model did not score contributes 0.
        """
        parsed = extract_json_object(text)
        raw_scores = parsed.get("scores")
        if not isinstance(raw_scores, list):
            raise ParseError("AI response has no 'scores' list")

        by_name: Dict[str, Dict[str, Any]] = {}
        for item in raw_scores:
            if isinstance(item, dict) and item.get("criteria") is not None:
                by_name.setdefault(str(item["criteria"]).strip().lower(), item)

        weight_total = sum(float(r.weight_percentage) for r in rubrics)
        if weight_total <= 0:
            raise ValidationError("Rubric weights must add up to more than 0")

        scores: List[CriterionScore] = []
        weighted = 0.0
        for rubric in rubrics:
            item = by_name.get(rubric.criteria_name.strip().lower())
            if item is None:
                scores.append(CriterionScore(criteria=rubric.criteria_name, score=0.0))
                continue
            try:
                value = float(item.get("score"))
            except (TypeError, ValueError) as e:
                raise ParseError(
                    f"Score for '{rubric.criteria_name}' is not a number"
                ) from e

            max_score = float(rubric.max_score or 10.0)
            normalized = min(max(value, 0.0), max_score) / max_score * 10
            weighted += normalized * float(rubric.weight_percentage) / weight_total
            scores.append(CriterionScore(
                criteria=rubric.criteria_name,
                score=round(normalized, 2),
                feedback=str(item.get("feedback") or ""),
            ))

        # Weighted 0-10 average scaled to 0-100
        total_score = round(weighted * 10, 2)

        return ScoringResult(
            scores=scores,
            total_score=total_score,
            is_correct=total_score >= self.pass_threshold,
            overall_feedback=str(parsed.get("overall_feedback") or ""),
            strengths=_as_str_list(parsed.get("strengths")),
            areas_for_improvement=_as_str_list(parsed.get("areas_for_improvement")),
            suggestions=_as_str_list(parsed.get("suggestions")),
        )

    async def score(
        self,
        skill: str,
        question_text: str,
        answer_text: Optional[str],
        rubrics: Sequence[Rubric],
        level: str,
    ) -> ScoringResult:
        """
        Score one answer.

        Raises:
            ValidationError: skill is neither writing nor speaking, or no rubrics
            ScoringFailureError: the LLM call failed after retries
            ParseError: the response held no usable JSON object
        """
        skill_value = type_value(skill)
        if skill_value not in (Skill.WRITING.value, Skill.SPEAKING.value):
            raise ValidationError(f"AI scoring not supported for skill: {skill_value}")
        if not rubrics:
            raise ValidationError(f"No scoring rubrics found for skill: {skill_value}")

        prompt = self.build_prompt(skill_value, question_text, answer_text, rubrics, level)

        with scoring_span(f"ai.score_{skill_value}", {
            "rubric.count": len(rubrics),
            "student.level": type_value(level),
        }) as span:
            try:
                response = await self.llm.generate(
                    prompt,
                    agent_name="RubricGrader",
                )
            except LLMError as e:
                logger.error("AI scoring call failed for %s answer: %s", skill_value, e)
                raise ScoringFailureError(f"AI scoring failed: {e}") from e

            result = self.parse_response(response.content, rubrics)
            result.model = response.model

            span.set_attribute("scoring.total_score", result.total_score)
            span.set_attribute("scoring.is_correct", result.is_correct)
            span.set_attribute("llm.attempts", response.attempts)

        return result

    async def score_writing(
        self,
        question_text: str,
        answer_text: Optional[str],
        rubrics: Sequence[Rubric],
        level: str,
    ) -> ScoringResult:
        return await self.score(Skill.WRITING, question_text, answer_text, rubrics, level)

    async def score_speaking(
        self,
        question_text: str,
        transcript: Optional[str],
        rubrics: Sequence[Rubric],
        level: str,
    ) -> ScoringResult:
        return await self.score(Skill.SPEAKING, question_text, transcript, rubrics, level)
