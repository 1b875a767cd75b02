"""Per-chunk shuffling for kinds that need unpredictable presentation order."""

from __future__ import annotations

import random
from typing import Any, MutableSequence, TypeVar

T = TypeVar("T")


def shuffle_in_place(items: MutableSequence[T], rng: random.Random | None = None) -> MutableSequence[T]:
  """Uniform Fisher-Yates permutation of ``items``."""
  rng = rng or random.Random()
  for index in range(len(items) - 1, 0, -1):
    swap = rng.randint(0, index)
    items[index], items[swap] = items[swap], items[index]
  return items


def shuffle_matching_columns(question: dict[str, Any], rng: random.Random | None = None) -> dict[str, Any]:
  """Shuffle both columns of a matching question independently."""
  if question.get("questionType") != "matching":
    return question
  shuffled = dict(question)
  for column in ("leftColumn", "rightColumn"):
    values = shuffled.get(column)
    if isinstance(values, list):
      shuffled[column] = list(shuffle_in_place(list(values), rng))
  return shuffled


def shuffle_chunk(kind: str, items: list[dict[str, Any]], rng: random.Random | None = None) -> list[dict[str, Any]]:
  """Shuffle one chunk's items (and quiz matching columns) without touching earlier chunks."""
  rng = rng or random.Random()
  chunk = list(items)
  if kind == "quiz":
    chunk = [shuffle_matching_columns(item, rng) for item in chunk]
  shuffle_in_place(chunk, rng)
  return chunk
