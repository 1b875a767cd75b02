"""Generation request contracts and per-kind policy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

from studyforge.ai.errors import RequestValidationError

ArtifactKind = Literal["quiz", "flashcard-set", "guide", "summary"]
SourceType = Literal["file", "text", "topic"]
ComplexityHint = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class KindSpec:
  """Static generation policy for one artifact kind."""

  kind: str
  label: str
  task_name: str
  chunk_size: int
  completed_ttl_seconds: int
  shuffle_items: bool
  item_noun: str
  fixed_target: int | None = None


_HOUR: Final[int] = 3600

KIND_SPECS: Final[dict[str, KindSpec]] = {
  "quiz": KindSpec(kind="quiz", label="quiz", task_name="quiz", chunk_size=5, completed_ttl_seconds=24 * _HOUR, shuffle_items=True, item_noun="questions"),
  "flashcard-set": KindSpec(kind="flashcard-set", label="flashcard set", task_name="flashcards", chunk_size=10, completed_ttl_seconds=24 * _HOUR, shuffle_items=False, item_noun="flashcards"),
  "guide": KindSpec(kind="guide", label="study guide", task_name="guide", chunk_size=4, completed_ttl_seconds=72 * _HOUR, shuffle_items=False, item_noun="sections"),
  "summary": KindSpec(kind="summary", label="summary", task_name="summary", chunk_size=1, completed_ttl_seconds=12 * _HOUR, shuffle_items=False, item_noun="summaries", fixed_target=1),
}


def get_kind_spec(kind: str) -> KindSpec:
  """Return the policy for an artifact kind or raise for unknown kinds."""
  spec = KIND_SPECS.get(kind)
  if spec is None:
    raise RequestValidationError(f"Unsupported artifact kind: {kind}")
  return spec


class GenerationRequest(BaseModel):
  """Immutable input for one artifact generation."""

  model_config = ConfigDict(frozen=True)

  kind: ArtifactKind
  topic: str | None = None
  content: str | None = None
  source_ids: list[str] = Field(default_factory=list)
  target_count: int = Field(default=10, ge=1, le=200)
  options: dict[str, Any] = Field(default_factory=dict)
  complexity: ComplexityHint | None = None
  user_id: str | None = None
  # Non-semantic fields; never part of the fingerprint.
  request_id: str | None = None
  requested_at: datetime | None = None

  @property
  def source_type(self) -> SourceType:
    """Files take precedence, then free text, then topic."""
    if self.source_ids:
      return "file"
    if self.content and self.content.strip():
      return "text"
    return "topic"

  @property
  def has_multimodal_input(self) -> bool:
    return bool(self.source_ids)


def validate_request(request: GenerationRequest) -> None:
  """Reject requests that carry nothing to generate from."""
  get_kind_spec(request.kind)
  has_topic = bool(request.topic and request.topic.strip())
  has_content = bool(request.content and request.content.strip())
  has_sources = any(source.strip() for source in request.source_ids)
  if not (has_topic or has_content or has_sources):
    raise RequestValidationError("Please provide a topic, some content, or at least one source file.")


def effective_target(request: GenerationRequest) -> int:
  """Return the item count the engine works towards for this request."""
  spec = get_kind_spec(request.kind)
  if spec.fixed_target is not None:
    return spec.fixed_target
  return request.target_count


QUESTION_TYPES: Final[tuple[str, ...]] = ("true-false", "single-select", "multi-select", "matching", "fill-blank")


def normalized_source_ids(request: GenerationRequest) -> list[str]:
  """Return the request's source ids stripped, de-blanked and sorted."""
  return sorted(source.strip() for source in request.source_ids if source.strip())


def normalize_quiz_options(options: dict[str, Any]) -> dict[str, Any]:
  """Resolve quiz option aliases and defaults into exactly what the quiz prompt renders."""
  raw = options.get("questionTypes") or options.get("question_types") or []
  if isinstance(raw, str):
    raw = [raw]
  question_types = [item for item in raw if item in QUESTION_TYPES]
  return {
    "difficulty": str(options.get("difficulty") or "medium"),
    "quizType": str(options.get("quizType") or "standard"),
    "questionTypes": question_types or ["single-select"],
  }
