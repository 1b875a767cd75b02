"""Base interfaces for AI providers and models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol


class ModelResponse(Protocol):
  """Response contract for model outputs."""

  content: str
  usage: dict[str, int] | None


@dataclass
class SimpleModelResponse:
  """Minimal model response structure."""

  content: str
  usage: dict[str, int] | None = None


class AIModel(ABC):
  """Abstract base class for AI models."""

  name: str
  supports_structured_output: bool = False

  @abstractmethod
  async def generate(self, prompt: str, *, temperature: float | None = None, schema: dict[str, Any] | None = None) -> ModelResponse:
    """Generate raw text for the prompt, constrained to the schema when supported."""


class Provider(ABC):
  """Abstract base class for AI providers."""

  name: str

  @abstractmethod
  def get_model(self, model: str | None = None) -> AIModel:
    """Return the model client for the provider."""


def usage_from_counts(prompt_tokens: int | None, completion_tokens: int | None, total_tokens: int | None) -> dict[str, int]:
  """Normalize SDK token counts into a plain usage dict."""
  return {"prompt_tokens": prompt_tokens or 0, "completion_tokens": completion_tokens or 0, "total_tokens": total_tokens or 0}
