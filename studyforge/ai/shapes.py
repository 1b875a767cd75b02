"""Artifact shapes expected from providers and post-parse normalization.

Each artifact kind maps to a tagged ``ExpectedShape``. The parser uses the
shape to reject candidates whose top-level structure is wrong, and the engine
uses it to validate individual items before appending them to a job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

QuestionType = Literal["true-false", "single-select", "multi-select", "matching", "fill-blank"]


class QuizQuestion(BaseModel):
  """A single quiz question."""

  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  question: str = Field(min_length=1)
  question_type: QuestionType = Field(default="single-select", alias="questionType")
  options: list[str] | None = None
  correct_answer: Any = Field(alias="correctAnswer")
  explanation: str | None = None
  citation: str | None = None
  left_column: list[str] | None = Field(default=None, alias="leftColumn")
  right_column: list[str] | None = Field(default=None, alias="rightColumn")


class Flashcard(BaseModel):
  """A single flashcard."""

  model_config = ConfigDict(extra="ignore")

  front: str = Field(min_length=1)
  back: str = Field(min_length=1)
  explanation: str | None = None
  tags: list[str] | None = None
  difficulty: str | None = None


class GuideSection(BaseModel):
  """A single study guide section."""

  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  heading: str = Field(min_length=1)
  content: str
  key_points: list[str] = Field(default_factory=list, alias="keyPoints")
  examples: list[str] | None = None


class Summary(BaseModel):
  """A document summary."""

  model_config = ConfigDict(extra="ignore", populate_by_name=True)

  summary: str = Field(min_length=1)
  key_points: list[str] = Field(default_factory=list, alias="keyPoints")


@dataclass(frozen=True)
class ExpectedShape:
  """Tagged description of the payload a provider should return."""

  name: str
  item_model: type[BaseModel]
  items_key: str | None
  label_field: str
  normalize_item: Callable[[dict[str, Any]], dict[str, Any]] | None = None

  def _is_container(self, value: Any) -> bool:
    if not isinstance(value, dict) or not value:
      return False
    if self.items_key is None:
      return True
    return any(isinstance(value.get(key), list) for key in _ITEM_KEY_ALIASES.get(self.items_key, (self.items_key,)))

  def accepts(self, value: Any) -> bool:
    """Return True when the top-level structure could hold this shape."""
    if self._is_container(value):
      return True
    if self.items_key is None or not isinstance(value, list):
      return False
    # A bare item list must hold item objects, not wrapped payloads.
    return any(isinstance(entry, dict) for entry in value) and not any(self._is_container(entry) for entry in value)

  def select(self, value: Any) -> Any | None:
    """Return the part of a decoded value that fits this shape, or None."""
    if self.accepts(value):
      return value
    # Lenient repair returns every top-level value it found as one list.
    if isinstance(value, list):
      return next((entry for entry in value if self._is_container(entry)), None)
    return None

  def item_label(self, item: dict[str, Any]) -> str:
    return str(item.get(self.label_field, "")).strip()

  def item_key(self, item: dict[str, Any]) -> str:
    """Whitespace- and case-insensitive identity used to drop repeated items."""
    return _normalize_text_key(self.item_label(item))

  def json_schema(self) -> dict[str, Any]:
    item_schema = self.item_model.model_json_schema(by_alias=True)
    if self.items_key is None:
      return item_schema
    return {"type": "object", "properties": {"title": {"type": "string"}, self.items_key: {"type": "array", "items": item_schema}}, "required": [self.items_key]}


@dataclass(frozen=True)
class NormalizedChunk:
  """Validated items and metadata recovered from one provider response."""

  items: list[dict[str, Any]]
  metadata: dict[str, Any]
  rejected: int


def _normalize_text_key(value: str) -> str:
  return " ".join(value.split()).lower()


def normalize_matching_question(item: dict[str, Any]) -> dict[str, Any]:
  """Coerce matching answers into a mapping and derive missing columns."""
  if item.get("questionType") != "matching":
    return item

  answer = item.get("correctAnswer")
  # Providers frequently emit [{"key": ..., "value": ...}] instead of a mapping.
  if isinstance(answer, list):
    mapping: dict[str, Any] = {}
    for pair in answer:
      if isinstance(pair, dict) and "key" in pair and "value" in pair:
        mapping[str(pair["key"])] = pair["value"]
    answer = mapping
  if not isinstance(answer, dict):
    answer = {}

  left = item.get("leftColumn") or list(answer.keys())
  right = item.get("rightColumn") or list(dict.fromkeys(str(value) for value in answer.values()))

  normalized = dict(item)
  normalized["correctAnswer"] = answer
  normalized["leftColumn"] = list(left)
  normalized["rightColumn"] = list(right)
  normalized.pop("options", None)
  return normalized


QUIZ_SHAPE: Final[ExpectedShape] = ExpectedShape(name="quiz", item_model=QuizQuestion, items_key="questions", label_field="question", normalize_item=normalize_matching_question)
FLASHCARD_SHAPE: Final[ExpectedShape] = ExpectedShape(name="flashcard-set", item_model=Flashcard, items_key="cards", label_field="front")
GUIDE_SHAPE: Final[ExpectedShape] = ExpectedShape(name="guide", item_model=GuideSection, items_key="sections", label_field="heading")
SUMMARY_SHAPE: Final[ExpectedShape] = ExpectedShape(name="summary", item_model=Summary, items_key=None, label_field="summary")

_SHAPES: Final[dict[str, ExpectedShape]] = {shape.name: shape for shape in (QUIZ_SHAPE, FLASHCARD_SHAPE, GUIDE_SHAPE, SUMMARY_SHAPE)}

# Alternate container keys seen in real provider output.
_ITEM_KEY_ALIASES: Final[dict[str, tuple[str, ...]]] = {
  "questions": ("questions", "quiz", "items"),
  "cards": ("cards", "flashcards", "items"),
  "sections": ("sections", "items"),
}


def shape_for_kind(kind: str) -> ExpectedShape:
  """Return the expected shape for an artifact kind."""
  try:
    return _SHAPES[kind]
  except KeyError as exc:
    raise ValueError(f"No expected shape registered for kind '{kind}'") from exc


def _raw_items(shape: ExpectedShape, value: Any) -> list[Any]:
  if shape.items_key is None:
    return [value] if isinstance(value, dict) else []
  if isinstance(value, list):
    return value
  if not isinstance(value, dict):
    return []
  for key in _ITEM_KEY_ALIASES.get(shape.items_key, (shape.items_key,)):
    candidate = value.get(key)
    if isinstance(candidate, list):
      return candidate
  return []


def _metadata(shape: ExpectedShape, value: Any) -> dict[str, Any]:
  if shape.items_key is None or not isinstance(value, dict):
    return {}
  metadata: dict[str, Any] = {}
  for key in ("title", "topic"):
    raw = value.get(key)
    if isinstance(raw, str) and raw.strip():
      metadata[key] = raw.strip()
  return metadata


def normalize_items(shape: ExpectedShape, value: Any) -> NormalizedChunk:
  """Validate decoded provider output item by item against the shape."""
  items: list[dict[str, Any]] = []
  rejected = 0
  for raw in _raw_items(shape, value):
    if not isinstance(raw, dict):
      rejected += 1
      continue
    candidate = shape.normalize_item(raw) if shape.normalize_item else raw
    try:
      model = shape.item_model.model_validate(candidate)
    except ValidationError as exc:
      rejected += 1
      logger.debug("Dropping invalid %s item: %s", shape.name, exc.errors()[:1])
      continue
    items.append(model.model_dump(by_alias=True, exclude_none=True))

  if rejected:
    logger.info("Rejected %s malformed %s item(s) after parsing.", rejected, shape.name)
  return NormalizedChunk(items=items, metadata=_metadata(shape, value), rejected=rejected)
