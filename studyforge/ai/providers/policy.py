"""Provider call gateway with a timeout policy and error classification."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from studyforge.ai.errors import ProviderError, ProviderTimeoutError, classify_provider_exception
from studyforge.ai.providers.base import AIModel, Provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderPolicy:
  """Timeout policy applied to every provider call."""

  # Generation latency is minutes for large chunks, not seconds.
  timeout_seconds: float | None = 180.0


class ProviderGateway:
  """Invokes a named provider/model and returns raw text."""

  def __init__(self, providers: Mapping[str, Provider], policy: ProviderPolicy | None = None) -> None:
    self._providers = dict(providers)
    self._policy = policy or ProviderPolicy()
    self._models: dict[tuple[str, str], AIModel] = {}

  def _model(self, provider_id: str, model_id: str) -> AIModel:
    key = (provider_id, model_id)
    model = self._models.get(key)
    if model is not None:
      return model
    provider = self._providers.get(provider_id)
    if provider is None:
      raise ProviderError(f"Provider '{provider_id}' is not configured.", provider=provider_id)
    try:
      model = provider.get_model(model_id)
    except ValueError as exc:
      raise ProviderError(str(exc), provider=provider_id) from exc
    self._models[key] = model
    return model

  async def invoke(self, provider_id: str, model_id: str, prompt: str, *, temperature: float | None = None, structured_schema: dict[str, Any] | None = None) -> str:
    """Call the provider and return its raw text, mapping failures into ProviderError."""
    model = self._model(provider_id, model_id)
    call = model.generate(prompt, temperature=temperature, schema=structured_schema)
    try:
      if self._policy.timeout_seconds is None:
        response = await call
      else:
        response = await asyncio.wait_for(call, timeout=self._policy.timeout_seconds)
    except asyncio.TimeoutError as exc:
      logger.warning("Provider %s/%s timed out after %ss", provider_id, model_id, self._policy.timeout_seconds)
      raise ProviderTimeoutError(f"{provider_id}/{model_id} timed out after {self._policy.timeout_seconds}s", provider=provider_id) from exc
    except Exception as exc:  # noqa: BLE001
      error = classify_provider_exception(exc, provider=provider_id)
      logger.warning("Provider %s/%s failed (%s): %s", provider_id, model_id, type(error).__name__, exc)
      raise error from exc

    if response.usage:
      logger.info("Provider %s/%s usage: %s", provider_id, model_id, response.usage)
    return response.content
