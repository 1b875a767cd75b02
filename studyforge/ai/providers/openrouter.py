"""OpenRouter provider implementation using the openai SDK."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Final

from openai import AsyncOpenAI

from studyforge.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse, usage_from_counts

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"


class OpenRouterModel(AIModel):
  """OpenRouter model client with structured output support."""

  _STRUCTURED_OUTPUT_MODELS: Final[set[str]] = {"openai/gpt-oss-20b:free", "openai/gpt-oss-120b:free"}

  def __init__(self, name: str, client: AsyncOpenAI) -> None:
    self.name: str = name
    self.supports_structured_output = name in self._STRUCTURED_OUTPUT_MODELS
    self._client = client

  async def generate(self, prompt: str, *, temperature: float | None = None, schema: dict[str, Any] | None = None) -> ModelResponse:
    """Generate a response; schemas are enforced only on models that support them."""
    messages: list[dict[str, str]] = []
    request: dict[str, Any] = {"model": self.name}
    if temperature is not None:
      request["temperature"] = temperature

    if schema is not None and self.supports_structured_output:
      # Repeat the schema in the system prompt; strict mode is best effort on free models.
      schema_str = json.dumps(schema, indent=2)
      messages.append({"role": "system", "content": f"You output valid JSON only, adhering to this schema:\n{schema_str}"})
      request["response_format"] = {"type": "json_schema", "json_schema": {"name": "artifact_chunk", "schema": schema, "strict": True}}
    messages.append({"role": "user", "content": prompt})

    response = await self._client.chat.completions.create(messages=messages, **request)

    content = response.choices[0].message.content or ""
    logger.debug("OpenRouter response (%s chars) from %s", len(content), self.name)
    usage = None
    if response.usage:
      usage = usage_from_counts(response.usage.prompt_tokens, response.usage.completion_tokens, response.usage.total_tokens)
    return SimpleModelResponse(content=content, usage=usage)


class OpenRouterProvider(Provider):
  """OpenRouter provider."""

  _DEFAULT_MODEL: Final[str] = "openai/gpt-oss-20b:free"
  _AVAILABLE_MODELS: Final[set[str]] = {
    "openai/gpt-oss-20b:free",
    "openai/gpt-oss-120b:free",
    "meta-llama/llama-3.3-70b-instruct:free",
    "deepseek/deepseek-r1-0528:free",
    "google/gemma-3-27b-it:free",
  }

  def __init__(self, api_key: str | None = None, base_url: str | None = None) -> None:
    self.name: str = "openrouter"
    if not api_key:
      raise ValueError("OPENROUTER_API_KEY environment variable is required")

    # OpenRouter uses the OpenAI-compatible API; we add optional attribution headers.
    default_headers = {}
    referer = os.getenv("OPENROUTER_HTTP_REFERER")
    if referer:
      default_headers["HTTP-Referer"] = referer
    title = os.getenv("OPENROUTER_TITLE")
    if title:
      default_headers["X-Title"] = title

    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or _DEFAULT_BASE_URL, default_headers=default_headers or None)

  def get_model(self, model: str | None = None) -> AIModel:
    """Return an OpenRouter model client."""
    model_name = model or self._DEFAULT_MODEL
    if model_name not in self._AVAILABLE_MODELS:
      raise ValueError(f"Unsupported OpenRouter model '{model_name}'.")
    return OpenRouterModel(model_name, self._client)
