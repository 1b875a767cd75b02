from __future__ import annotations

import pytest

from studyforge.config import get_settings


def test_defaults_apply_without_environment(monkeypatch: pytest.MonkeyPatch) -> None:
  """Ensure the generation core starts with sensible defaults."""
  for name in ("STUDYFORGE_CHUNK_CEILING", "STUDYFORGE_PROVIDER_TIMEOUT_SECONDS", "STUDYFORGE_ROUTING_POLICY", "STUDYFORGE_PENDING_TTL_SECONDS"):
    monkeypatch.delenv(name, raising=False)

  settings = get_settings.__wrapped__()

  assert settings.chunk_ceiling == 10
  assert settings.provider_timeout_seconds == 180.0
  assert settings.pending_ttl_seconds == 900
  assert settings.routing_policy == {}
  assert settings.routing_overrides_key == "config:ai-routing-overrides"


def test_environment_overrides_are_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("STUDYFORGE_DEBUG", "yes")
  monkeypatch.setenv("STUDYFORGE_CHUNK_CEILING", "4")
  monkeypatch.setenv("STUDYFORGE_ROUTING_POLICY", '{"default_provider": "openrouter"}')
  monkeypatch.setenv("OPENROUTER_API_KEY", "  ")

  settings = get_settings.__wrapped__()

  assert settings.debug is True
  assert settings.chunk_ceiling == 4
  assert settings.routing_policy == {"default_provider": "openrouter"}
  assert settings.openrouter_api_key is None


def test_malformed_routing_policy_falls_back_to_empty(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("STUDYFORGE_ROUTING_POLICY", "[not json")

  assert get_settings.__wrapped__().routing_policy == {}


def test_non_positive_limits_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("STUDYFORGE_CHUNK_CEILING", "0")

  with pytest.raises(ValueError):
    get_settings.__wrapped__()
