"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
from typing import Any, Final

from google import genai
from google.genai import types

from studyforge.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse, usage_from_counts

logger = logging.getLogger(__name__)


class GeminiModel(AIModel):
  """Gemini model client with JSON-mode output."""

  def __init__(self, name: str, client: genai.Client) -> None:
    self.name: str = name
    self.supports_structured_output = True
    self._client = client

  async def generate(self, prompt: str, *, temperature: float | None = None, schema: dict[str, Any] | None = None) -> ModelResponse:
    """Generate a response from Gemini using the async client."""
    config_kwargs: dict[str, Any] = {"response_mime_type": "application/json"}
    if temperature is not None:
      config_kwargs["temperature"] = temperature
    if schema is not None:
      config_kwargs["response_json_schema"] = schema

    # Use the async client to avoid blocking the asyncio event loop.
    response = await self._client.aio.models.generate_content(model=self.name, contents=prompt, config=types.GenerateContentConfig(**config_kwargs))

    content = response.text or ""
    logger.debug("Gemini response (%s chars) from %s", len(content), self.name)
    usage = None
    if response.usage_metadata:
      meta = response.usage_metadata
      usage = usage_from_counts(meta.prompt_token_count, meta.candidates_token_count, meta.total_token_count)
    return SimpleModelResponse(content=content, usage=usage)


class GeminiProvider(Provider):
  """Gemini provider."""

  _DEFAULT_MODEL: Final[str] = "gemini-2.5-flash"
  _AVAILABLE_MODELS: Final[set[str]] = {"gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.0-flash"}

  def __init__(self, api_key: str | None = None) -> None:
    self.name: str = "gemini"
    if not api_key:
      raise ValueError("GEMINI_API_KEY environment variable is required")
    self._client = genai.Client(api_key=api_key)

  def get_model(self, model: str | None = None) -> AIModel:
    """Return a Gemini model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported Gemini model '{model_name}'.")
    return GeminiModel(model_name, self._client)
