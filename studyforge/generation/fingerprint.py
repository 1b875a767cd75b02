"""Stable identity hashes for generation requests."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from studyforge.generation.models import GenerationRequest, effective_target, normalize_quiz_options, normalized_source_ids


def _normalize_topic(topic: str | None) -> str:
  return (topic or "").strip().lower()


def _normalize_content(content: str | None) -> str:
  if not content:
    return ""
  return " ".join(content.split())


def _prompt_options(kind: str, options: dict[str, Any]) -> dict[str, Any]:
  # Quiz prompts render only the resolved options; other kinds render the raw mapping.
  if kind == "quiz":
    return normalize_quiz_options(options)
  return options


def compute_fingerprint(request: GenerationRequest) -> str:
  """Hash the prompt-relevant subset of a request.

  Request id, timestamps, user and routing hints are excluded. File-based
  requests hash their sorted source ids instead of any inline content.
  """
  source_ids = normalized_source_ids(request)
  payload = {
    "kind": request.kind,
    "topic": _normalize_topic(request.topic),
    "content": "" if source_ids else _normalize_content(request.content),
    "sources": source_ids,
    "target": effective_target(request),
    "options": _prompt_options(request.kind, request.options),
  }
  # A JSON document keeps field boundaries unambiguous whatever the free text contains.
  encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)
  return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
