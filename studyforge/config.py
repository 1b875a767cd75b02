"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from studyforge.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the studyforge generation core."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  redis_url: str
  gemini_api_key: str | None
  openrouter_api_key: str | None
  openrouter_base_url: str | None
  provider_timeout_seconds: float
  chunk_ceiling: int
  pending_ttl_seconds: int
  routing_policy: dict[str, Any] = field(hash=False)
  routing_overrides_key: str
  routing_overrides_ttl_seconds: float
  queue_base_url: str | None
  task_secret: str | None
  queue_max_attempts: int
  queue_backoff_seconds: float
  queue_max_backoff_seconds: float
  event_channel_prefix: str
  event_publish_timeout_seconds: float


def _parse_json_dict(raw: str | None, default: dict[str, Any]) -> dict[str, Any]:
  if not raw:
    return default
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return default
  if not isinstance(parsed, dict):
    return default
  return parsed


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("STUDYFORGE_ENV", "development").lower()
  debug = _parse_bool(os.getenv("STUDYFORGE_DEBUG"))

  log_max_bytes = _positive_int("STUDYFORGE_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("STUDYFORGE_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("STUDYFORGE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Generation latency is measured in minutes for large chunks, so the ceiling stays generous.
  provider_timeout_seconds = _positive_float("STUDYFORGE_PROVIDER_TIMEOUT_SECONDS", "180")
  chunk_ceiling = _positive_int("STUDYFORGE_CHUNK_CEILING", "10")
  pending_ttl_seconds = _positive_int("STUDYFORGE_PENDING_TTL_SECONDS", "900")

  queue_max_attempts = _positive_int("STUDYFORGE_QUEUE_MAX_ATTEMPTS", "3")
  queue_backoff_seconds = _positive_float("STUDYFORGE_QUEUE_BACKOFF_SECONDS", "2")
  queue_max_backoff_seconds = _positive_float("STUDYFORGE_QUEUE_MAX_BACKOFF_SECONDS", "60")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=(os.getenv("STUDYFORGE_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    redis_url=(os.getenv("STUDYFORGE_REDIS_URL") or os.getenv("REDIS_URL") or "redis://localhost:6379/0").strip(),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    openrouter_api_key=_optional_str(os.getenv("OPENROUTER_API_KEY")),
    openrouter_base_url=_optional_str(os.getenv("OPENROUTER_BASE_URL")),
    provider_timeout_seconds=provider_timeout_seconds,
    chunk_ceiling=chunk_ceiling,
    pending_ttl_seconds=pending_ttl_seconds,
    routing_policy=_parse_json_dict(os.getenv("STUDYFORGE_ROUTING_POLICY"), {}),
    routing_overrides_key=(os.getenv("STUDYFORGE_ROUTING_OVERRIDES_KEY") or "config:ai-routing-overrides").strip(),
    routing_overrides_ttl_seconds=_positive_float("STUDYFORGE_ROUTING_OVERRIDES_TTL_SECONDS", "30"),
    queue_base_url=_optional_str(os.getenv("STUDYFORGE_QUEUE_BASE_URL")),
    task_secret=_optional_str(os.getenv("STUDYFORGE_TASK_SECRET")),
    queue_max_attempts=queue_max_attempts,
    queue_backoff_seconds=queue_backoff_seconds,
    queue_max_backoff_seconds=queue_max_backoff_seconds,
    event_channel_prefix=(os.getenv("STUDYFORGE_EVENT_CHANNEL_PREFIX") or "studyforge").strip(),
    event_publish_timeout_seconds=_positive_float("STUDYFORGE_EVENT_PUBLISH_TIMEOUT_SECONDS", "2"),
  )
