"""Provider implementations."""

from __future__ import annotations

from studyforge.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from studyforge.ai.providers.policy import ProviderGateway, ProviderPolicy
from studyforge.config import Settings

__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "Provider", "ProviderGateway", "ProviderPolicy", "build_providers"]


def build_providers(settings: Settings) -> dict[str, Provider]:
  """Instantiate every provider that has credentials configured."""
  providers: dict[str, Provider] = {}
  if settings.gemini_api_key:
    from studyforge.ai.providers.gemini import GeminiProvider

    providers["gemini"] = GeminiProvider(api_key=settings.gemini_api_key)
  if settings.openrouter_api_key:
    from studyforge.ai.providers.openrouter import OpenRouterProvider

    providers["openrouter"] = OpenRouterProvider(api_key=settings.openrouter_api_key, base_url=settings.openrouter_base_url)
  return providers
