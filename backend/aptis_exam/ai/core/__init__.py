# AI Core Module - LLM access and tracing

from aptis_exam.ai.core.llm import LLMClient, LLMError, LLMResponse
from aptis_exam.ai.core.telemetry import get_tracer, init_telemetry, scoring_span

__all__ = [
    # LLM
    "LLMClient",
    "LLMError",
    "LLMResponse",
    # Telemetry
    "get_tracer",
    "init_telemetry",
    "scoring_span",
]
