"""OpenAI (and OpenAI-compatible, e.g. Cerebras) oracle provider."""

from __future__ import annotations

import time
from typing import TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from observability.logger import get_logger
from providers.anthropic_llm import strip_json_fences

log = get_logger(__name__)
T = TypeVar("T", bound=BaseModel)

_SYSTEM_PROMPT = (
    "You are an expert log analysis AI. Always respond with valid JSON only. No additional text."
)


class OpenAILLM:
    """Chat-completions oracle. Implements LLMProvider protocol.

    ``base_url`` points the client at any OpenAI-compatible endpoint; the
    reported ``provider_name`` then stays ``openai`` but ``model_id`` is
    whatever model that endpoint serves.
    """

    provider_name: str = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.model_id = model
        self.last_usage: dict[str, float] = {}
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_not_exception_type(ValidationError),
        reraise=True,
    )
    async def generate(
        self,
        prompt: str,
        response_model: type[T],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ) -> T:
        start = time.perf_counter()

        response = await self._client.chat.completions.create(
            model=self.model_id,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )

        latency_ms = (time.perf_counter() - start) * 1000
        raw_text = response.choices[0].message.content or "{}"

        parsed = response_model.model_validate_json(strip_json_fences(raw_text))

        self.last_usage = {
            "input_tokens": response.usage.prompt_tokens if response.usage else 0,
            "output_tokens": response.usage.completion_tokens if response.usage else 0,
            "latency_ms": round(latency_ms, 2),
        }
        log.info(
            "openai.generate.success",
            model=self.model_id,
            response_model=response_model.__name__,
            **self.last_usage,
        )
        return parsed
