"""Classification oracle protocol: structural subtyping, no ABC needed."""

from __future__ import annotations

from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


@runtime_checkable
class LLMProvider(Protocol):
    """Anything with a ``generate()`` that returns a validated model can act as the oracle.

    Implementations raise ``pydantic.ValidationError`` when the response does
    not decode into ``response_model`` and any other exception when the call
    itself fails (timeout, non-2xx, auth).
    """

    provider_name: str
    model_id: str

    async def generate(
        self,
        prompt: str,
        response_model: type[T],
        *,
        temperature: float = 0.0,
        max_tokens: int = 1024,
    ) -> T:
        """Send prompt to the oracle, parse its response into response_model."""
        ...
