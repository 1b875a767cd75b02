from __future__ import annotations

import pytest

from studyforge.ai.errors import RequestValidationError
from studyforge.ai.prompts import MAX_PREVIOUS_ITEMS, build_prompt
from studyforge.generation.models import GenerationRequest, get_kind_spec


def test_file_sources_replace_inline_content() -> None:
  """Ensure file-based prompts never include pasted text that the fingerprint ignores."""
  request = GenerationRequest(kind="flashcard-set", topic="Cells", content="ignored draft", source_ids=["doc-2", "doc-1"])

  prompt = build_prompt(request, 10)

  assert "Use the attached source documents: doc-1, doc-2" in prompt
  assert "ignored draft" not in prompt
  assert "Generate 10 flashcards" in prompt


def test_quiz_prompt_lists_requested_question_types() -> None:
  request = GenerationRequest(kind="quiz", topic="Cells", options={"questionTypes": ["matching", "true-false"], "difficulty": "hard"})

  prompt = build_prompt(request, 5)

  assert "Difficulty Level: hard" in prompt
  assert "- matching:" in prompt
  assert "- true-false:" in prompt
  assert "- single-select:" not in prompt


def test_avoid_list_keeps_most_recent_items() -> None:
  previous = [f"Heading {index}" for index in range(MAX_PREVIOUS_ITEMS + 5)]

  prompt = build_prompt(GenerationRequest(kind="guide", topic="Cells"), 4, previous)

  assert "- Heading 4\n" not in prompt
  assert "- Heading 5\n" in prompt
  assert f"- Heading {MAX_PREVIOUS_ITEMS + 4}" in prompt


def test_unknown_kind_is_a_validation_error() -> None:
  with pytest.raises(RequestValidationError):
    get_kind_spec("poster")
