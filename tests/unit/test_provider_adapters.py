from __future__ import annotations

from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from studyforge.ai.providers import build_providers
from studyforge.ai.providers.gemini import GeminiModel, GeminiProvider
from studyforge.ai.providers.openrouter import OpenRouterModel, OpenRouterProvider
from studyforge.config import get_settings


@pytest.mark.anyio
async def test_gemini_model_requests_json_with_schema() -> None:
  client = MagicMock()
  usage = SimpleNamespace(prompt_token_count=10, candidates_token_count=20, total_token_count=30)
  client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text='{"summary": "ok"}', usage_metadata=usage))
  model = GeminiModel("gemini-2.5-flash", client)

  response = await model.generate("prompt", temperature=0.4, schema={"type": "object"})

  assert response.content == '{"summary": "ok"}'
  assert response.usage == {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30}
  config = client.aio.models.generate_content.await_args.kwargs["config"]
  assert config.response_mime_type == "application/json"
  assert config.temperature == 0.4


@pytest.mark.anyio
async def test_openrouter_model_sends_schema_only_to_structured_models() -> None:
  """Ensure json_schema response formats are only sent to models that honor them."""
  client = MagicMock()
  completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="{}"))], usage=None)
  client.chat.completions.create = AsyncMock(return_value=completion)

  await OpenRouterModel("openai/gpt-oss-20b:free", client).generate("prompt", temperature=0.7, schema={"type": "object"})
  await OpenRouterModel("google/gemma-3-27b-it:free", client).generate("prompt", schema={"type": "object"})

  structured, plain = (call.kwargs for call in client.chat.completions.create.await_args_list)
  assert structured["response_format"]["type"] == "json_schema"
  assert structured["messages"][0]["role"] == "system"
  assert structured["temperature"] == 0.7
  assert "response_format" not in plain
  assert plain["messages"] == [{"role": "user", "content": "prompt"}]


def test_providers_reject_unknown_models_and_missing_keys() -> None:
  with pytest.raises(ValueError):
    GeminiProvider(api_key=None)
  with pytest.raises(ValueError):
    OpenRouterProvider(api_key="")
  with pytest.raises(ValueError):
    OpenRouterProvider(api_key="key").get_model("unknown/model")


def test_build_providers_skips_unconfigured_providers() -> None:
  settings = replace(get_settings.__wrapped__(), gemini_api_key=None, openrouter_api_key="key")

  providers = build_providers(settings)

  assert list(providers) == ["openrouter"]
