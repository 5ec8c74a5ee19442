"""Claude API provider with structured outputs, retry, and observability."""

from __future__ import annotations

import time
from typing import TypeVar

import anthropic
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from observability.logger import get_logger

log = get_logger(__name__)
T = TypeVar("T", bound=BaseModel)


def strip_json_fences(raw_text: str) -> str:
    """Drop a surrounding markdown code block (```json ... ```) if the model added one."""
    json_text = raw_text.strip()
    if json_text.startswith("```"):
        lines = json_text.split("\n")
        json_text = "\n".join(lines[1:-1] if lines[-1].strip() == "```" else lines[1:])
    return json_text


class AnthropicLLM:
    """Claude as classification oracle via Anthropic SDK. Implements LLMProvider protocol."""

    provider_name: str = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
    ) -> None:
        self.model_id = model
        self.last_usage: dict[str, float] = {}
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    # ValidationError is final; only transport failures are retried
    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
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

        message = await self._client.messages.create(
            model=self.model_id,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )

        latency_ms = (time.perf_counter() - start) * 1000
        raw_text = "".join(block.text for block in message.content if block.type == "text")

        parsed = response_model.model_validate_json(strip_json_fences(raw_text))

        self.last_usage = {
            "input_tokens": message.usage.input_tokens,
            "output_tokens": message.usage.output_tokens,
            "latency_ms": round(latency_ms, 2),
        }
        log.info(
            "anthropic.generate.success",
            model=self.model_id,
            response_model=response_model.__name__,
            **self.last_usage,
        )
        return parsed
