"""Local ``.env`` support so workers and tests share one configuration file."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "STUDYFORGE_ENV_FILE"


def default_env_path() -> Path:
  """Return ``$STUDYFORGE_ENV_FILE`` when set, otherwise ``.env`` at the project root."""
  configured = os.getenv(ENV_FILE_VARIABLE)
  if configured:
    return Path(configured).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def _unquote(value: str) -> str:
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return value[1:-1]
  # Unquoted values may carry a trailing " # comment".
  return value.split(" #", 1)[0].rstrip()


def parse_env_text(text: str) -> dict[str, str]:
  """Parse ``KEY=value`` lines, skipping comments, blanks and malformed lines."""
  values: dict[str, str] = {}
  for raw_line in text.splitlines():
    line = raw_line.strip()
    if not line or line.startswith("#"):
      continue
    line = line.removeprefix("export ").lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    values[key] = _unquote(value.strip())
  return values


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Export a ``.env`` file into the process environment and return the keys applied."""
  if not path.is_file():
    return []

  applied: list[str] = []
  for key, value in parse_env_text(path.read_text(encoding="utf-8")).items():
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied
