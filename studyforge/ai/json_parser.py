"""Resilient JSON recovery for free-form model output.

Strategies run strictly in order and the first candidate whose top-level
structure matches the expected shape wins. The order trades precision for
recall: cheap exact extractions first, repair and partial recovery last.
"""

from __future__ import annotations

import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Final

import ijson
from json_repair import repair_json

from studyforge.ai.shapes import ExpectedShape

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS: Final[int] = 10 * 1024 * 1024
EXCERPT_CHARS: Final[int] = 200
_STREAM_BUFFER_BYTES: Final[int] = 16

_FENCE_RE = re.compile(r"```")
_FENCE_TAG_RE = re.compile(r"^[ \t]*(?:json|JSON|javascript|js)?[ \t]*\r?\n?")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_CLOSERS: Final[dict[str, str]] = {"{": "}", "[": "]"}


class StrategyMiss(ValueError):
  """Raised by a strategy that cannot produce a candidate."""


@dataclass(frozen=True)
class ParseSuccess:
  """Decoded value tagged with the strategy that recovered it."""

  value: Any
  strategy: str
  ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ParseFailure:
  """Terminal parse failure with a diagnostic excerpt of the input."""

  reason: str
  head: str
  tail: str
  length: int
  attempted: tuple[str, ...] = ()
  ok: bool = field(default=False, init=False)

  @property
  def excerpt(self) -> str:
    if not self.tail:
      return self.head
    return f"{self.head} ... {self.tail}"


ParseOutcome = ParseSuccess | ParseFailure


def clean_text(text: str) -> str:
  """Trim whitespace, a BOM, and one wrapping code fence."""
  cleaned = text.strip().lstrip("\ufeff").strip()
  if cleaned.startswith("```"):
    lines = cleaned.splitlines()
    lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
      lines = lines[:-1]
    cleaned = "\n".join(lines).strip()
  return cleaned


def _brackets_balanced(text: str) -> bool:
  """Return True when every bracket outside string literals is closed."""
  stack: list[str] = []
  quote: str | None = None
  escape = False
  for char in text:
    if quote is not None:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == quote:
        quote = None
      continue
    if char in "\"'":
      quote = char
    elif char in _CLOSERS:
      stack.append(_CLOSERS[char])
    elif char in "}]":
      if not stack or stack.pop() != char:
        return False
  return not stack and quote is None


def _first_container_start(text: str) -> int:
  starts = [index for index in (text.find("{"), text.find("[")) if index != -1]
  if not starts:
    raise StrategyMiss("no JSON container found")
  return min(starts)


def extract_boundary(text: str) -> Any:
  """Decode the span between the first opener and the last matching closer."""
  start = _first_container_start(text)
  closer = _CLOSERS[text[start]]
  end = text.rfind(closer)
  if end <= start:
    raise StrategyMiss("no closing bracket after opener")
  return json.loads(text[start : end + 1])


def extract_fenced(text: str) -> Any:
  """Decode the greedy span between the first and last markdown fence."""
  fences = [match.start() for match in _FENCE_RE.finditer(text)]
  if len(fences) < 2:
    raise StrategyMiss("no fenced block found")
  interior = text[fences[0] + 3 : fences[-1]]
  # Drop the optional language tag on the opening fence line.
  interior = _FENCE_TAG_RE.sub("", interior, count=1)
  return json.loads(interior.strip())


def decode_lenient(text: str) -> Any:
  """Decode with a relaxed grammar (trailing commas, single quotes, bare keys)."""
  cleaned = clean_text(text)
  if "{" not in cleaned and "[" not in cleaned:
    raise StrategyMiss("no JSON container found")
  # Truncated payloads are left for the streaming decoder so the repair step never invents closers.
  if not _brackets_balanced(cleaned[_first_container_start(cleaned) :]):
    raise StrategyMiss("unbalanced brackets")
  value = repair_json(cleaned, return_objects=True)
  if not isinstance(value, (dict, list)) or not value:
    raise StrategyMiss("lenient decode produced no container")
  return value


def _escape_control_chars(text: str) -> str:
  """Escape raw newlines and tabs inside strings and strip other control characters."""
  output: list[str] = []
  in_string = False
  escape = False
  for char in text:
    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      elif char == "\n":
        output.append("\\n")
        continue
      elif char == "\r":
        output.append("\\r")
        continue
      elif char == "\t":
        output.append("\\t")
        continue
    elif char == '"':
      in_string = True
    output.append(char)
  return _CONTROL_CHARS_RE.sub("", "".join(output))


def decode_sanitized(text: str) -> Any:
  """Neutralize raw control characters, then decode strictly or leniently."""
  sanitized = _escape_control_chars(clean_text(text))
  try:
    return json.loads(sanitized)
  except json.JSONDecodeError:
    return decode_lenient(sanitized)


def decode_streaming(text: str) -> Any:
  """Build the first top-level value event by event, keeping partial output on malformed input."""
  cleaned = clean_text(text)
  payload = cleaned[_first_container_start(cleaned) :].encode("utf-8")
  builder = ijson.ObjectBuilder()
  depth = 0
  started = False
  try:
    for _prefix, event, value in ijson.parse(io.BytesIO(payload), buf_size=_STREAM_BUFFER_BYTES, multiple_values=True, use_float=True):
      builder.event(event, value)
      started = True
      if event in ("start_map", "start_array"):
        depth += 1
      elif event in ("end_map", "end_array"):
        depth -= 1
      if depth == 0:
        break
  except ijson.JSONError as exc:
    if not started:
      raise StrategyMiss(f"streaming decode produced nothing: {exc}") from exc
    logger.debug("Streaming decode stopped early, keeping partial value: %s", exc)
  if not started or not hasattr(builder, "value"):
    raise StrategyMiss("streaming decode produced nothing")
  return builder.value


def decode_strict(text: str) -> Any:
  """Standards-strict decode of the cleaned text."""
  return json.loads(clean_text(text))


STRATEGIES: Final[tuple[tuple[str, Callable[[str], Any]], ...]] = (
  ("boundary", extract_boundary),
  ("fence", extract_fenced),
  ("lenient", decode_lenient),
  ("sanitized", decode_sanitized),
  ("streaming", decode_streaming),
  ("strict", decode_strict),
)


def _failure(text: str, reason: str, attempted: tuple[str, ...]) -> ParseFailure:
  head = text[:EXCERPT_CHARS]
  tail = text[-EXCERPT_CHARS:] if len(text) > EXCERPT_CHARS * 2 else ""
  return ParseFailure(reason=reason, head=head, tail=tail, length=len(text), attempted=attempted)


def parse(text: str | None, expected_shape: ExpectedShape | None = None) -> ParseOutcome:
  """Recover a structured value from model text. Never raises."""
  if not text or not text.strip():
    return _failure("", "empty response", ())
  if len(text) > MAX_INPUT_CHARS:
    return _failure(text, f"response exceeds {MAX_INPUT_CHARS} characters", ())

  attempted: list[str] = []
  for name, strategy in STRATEGIES:
    attempted.append(name)
    try:
      value = strategy(text)
    except (ValueError, TypeError, RecursionError) as exc:
      logger.debug("Parser strategy %s missed: %s", name, exc)
      continue
    # A candidate of the wrong shape is rejected so a later strategy can try.
    if expected_shape is not None:
      value = expected_shape.select(value)
      if value is None:
        logger.debug("Parser strategy %s produced a value that does not match shape %s", name, expected_shape.name)
        continue
    logger.debug("Parser strategy %s succeeded", name)
    return ParseSuccess(value=value, strategy=name)

  failure = _failure(text, "all parse strategies failed", tuple(attempted))
  logger.warning("Unable to parse model output (%s chars). Excerpt: %r", failure.length, failure.excerpt)
  return failure
