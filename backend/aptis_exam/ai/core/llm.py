"""
APTIS Exam Platform - Unified LLM Client
Centralized LLM access with telemetry, per-call timeout and linear-backoff retries.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from opentelemetry.trace import Status, StatusCode

from aptis_exam.ai.core.telemetry import get_tracer
from aptis_exam.core.config import settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """The provider call kept failing until retries ran out."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


@dataclass
class LLMResponse:
    """Standardized response from LLM client."""
    content: str
    model: str
    tokens_prompt: int = 0
    tokens_completion: int = 0
    tokens_total: int = 0
    attempts: int = 1
    raw_response: Any = None


class LLMClient:
    """
    Unified LLM client used by the AI graders.

    Features:
    - Multi-provider support (OpenAI, Anthropic)
    - Built-in telemetry (OpenTelemetry)
    - Request timeout per provider call
    - Retry with linear backoff (attempt k waits k * backoff seconds)

    One instance is created at startup and shared across requests.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the LLM client.

        Args:
            provider: LLM provider ('openai' or 'anthropic'). Defaults to settings.
            model: Model name. Defaults to settings.
            temperature: Sampling temperature.
            max_tokens: Completion token cap.
            timeout: Per-call timeout in seconds.
            max_retries: Total number of provider calls before giving up.
            retry_backoff: Linear backoff step in seconds.
            sleep: Awaitable used between retries.
        """
        self.provider = provider or settings.LLM_PROVIDER
        self.model = model or (
            settings.OPENAI_MODEL if self.provider == "openai"
            else settings.ANTHROPIC_MODEL
        )
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries or settings.LLM_MAX_RETRIES)
        self.retry_backoff = (
            settings.LLM_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )
        self._sleep = sleep

        self._llm = None

    @property
    def llm(self):
        """Lazy-load the LLM instance."""
        if self._llm is None:
            if self.provider == "openai":
                from langchain_openai import ChatOpenAI
                self._llm = ChatOpenAI(
                    model=self.model,
                    api_key=settings.OPENAI_API_KEY,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout,
                    max_retries=0,
                )
            else:
                from langchain_anthropic import ChatAnthropic
                self._llm = ChatAnthropic(
                    model=self.model,
                    api_key=settings.ANTHROPIC_API_KEY,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout,
                    max_retries=0,
                )
        return self._llm

    async def _invoke(self, messages: List[BaseMessage], **kwargs: Any) -> Any:
        """Single provider round trip."""
        return await self.llm.ainvoke(messages, **kwargs)

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        agent_name: str = "LLMClient",
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: The user prompt.
            system_prompt: Optional system prompt.
            max_tokens: Override the configured completion cap for this call.
            temperature: Override the configured temperature for this call.
            agent_name: Name of the caller (for telemetry).

        Returns:
            LLMResponse with content and metadata.

        Raises:
            LLMError: every attempt failed or timed out.
        """
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        call_kwargs: dict[str, Any] = {}
        if max_tokens is not None:
            call_kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            call_kwargs["temperature"] = temperature

        tracer = get_tracer()
        with tracer.start_as_current_span("llm.generate") as span:
            span.set_attribute("llm.model", self.model)
            span.set_attribute("llm.provider", self.provider)
            span.set_attribute("agent.name", agent_name)
            span.set_attribute("llm.prompt_length", len(prompt))

            last_error: Optional[Exception] = None
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await asyncio.wait_for(
                        self._invoke(messages, **call_kwargs),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    # Any provider failure counts as one attempt
                    last_error = e
                    span.set_attribute("llm.retry_count", attempt)
                    logger.warning(
                        "%s: LLM call attempt %d/%d failed: %r",
                        agent_name, attempt, self.max_retries, e,
                    )
                    if attempt < self.max_retries:
                        await self._sleep(attempt * self.retry_backoff)
                    continue

                content = response.content if isinstance(response.content, str) else str(response.content)

                # Extract token usage if available
                tokens_prompt = 0
                tokens_completion = 0
                if hasattr(response, "response_metadata"):
                    usage = response.response_metadata.get("token_usage", {}) or {}
                    tokens_prompt = usage.get("prompt_tokens", 0)
                    tokens_completion = usage.get("completion_tokens", 0)
                tokens_total = tokens_prompt + tokens_completion

                span.set_attribute("llm.attempts", attempt)
                span.set_attribute("llm.response_length", len(content))
                span.set_attribute("llm.tokens_total", tokens_total)

                return LLMResponse(
                    content=content,
                    model=self.model,
                    tokens_prompt=tokens_prompt,
                    tokens_completion=tokens_completion,
                    tokens_total=tokens_total,
                    attempts=attempt,
                    raw_response=response,
                )

            span.set_status(Status(StatusCode.ERROR, str(last_error)))
            if last_error is not None:
                span.record_exception(last_error)
            raise LLMError(
                f"LLM call failed after {self.max_retries} attempts: {last_error!r}",
                attempts=self.max_retries,
            ) from last_error
