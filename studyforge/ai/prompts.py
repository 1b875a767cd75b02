"""Prompt builders for each artifact kind."""

from __future__ import annotations

import json
from typing import Any, Final, Sequence

from studyforge.generation.models import GenerationRequest, normalize_quiz_options, normalized_source_ids

# Cap the avoid-list so continuation prompts stay bounded for large targets.
MAX_PREVIOUS_ITEMS: Final[int] = 60

_QUESTION_TYPE_HINTS: Final[dict[str, str]] = {
  "true-false": '- true-false: "options" is ["True", "False"] and "correctAnswer" is the index of the right option.',
  "single-select": '- single-select: four plain-text "options" (no A/B/C labels) and "correctAnswer" is one index.',
  "multi-select": '- multi-select: four plain-text "options" and "correctAnswer" is a list of indexes.',
  "matching": '- matching: "leftColumn", "rightColumn" and "correctAnswer" as an object mapping left items to right items.',
  "fill-blank": '- fill-blank: the question contains ____ and "correctAnswer" is the missing text.',
}


def _stringify_options(options: dict[str, Any]) -> str:
  """Serialize options deterministically so identical requests render identical prompts."""
  if not options:
    return "{}"
  return json.dumps(options, ensure_ascii=True, sort_keys=True)


def _source_block(request: GenerationRequest) -> str:
  lines: list[str] = []
  if request.topic and request.topic.strip():
    lines.append(f"Topic: {request.topic.strip()}")
  # Source documents replace inline content, matching how requests are fingerprinted.
  source_ids = normalized_source_ids(request)
  if source_ids:
    lines.append("Use the attached source documents: " + ", ".join(source_ids))
  elif request.content and request.content.strip():
    lines.append(f"Content:\n{request.content.strip()}")
  return "\n".join(lines)


def _avoid_block(previous: Sequence[str], noun: str) -> str:
  if not previous:
    return ""
  recent = list(previous)[-MAX_PREVIOUS_ITEMS:]
  listed = "\n".join(f"- {item}" for item in recent)
  return f"\nThese {noun} were already generated. Do NOT repeat or rephrase them:\n{listed}\n"


def _question_type_instructions(question_types: Sequence[str]) -> str:
  return "\n".join(_QUESTION_TYPE_HINTS[item] for item in question_types)


def build_quiz_prompt(request: GenerationRequest, count: int, previous: Sequence[str] = ()) -> str:
  """Render the quiz prompt for one chunk."""
  options = normalize_quiz_options(request.options)
  difficulty, quiz_type, question_types = options["difficulty"], options["quizType"], options["questionTypes"]
  return f"""You are an expert quiz generator. Generate {count} questions based on the following:

{_source_block(request)}

Difficulty Level: {difficulty}
Quiz Type: {quiz_type}

Question Types to Generate:
{_question_type_instructions(question_types)}
{_avoid_block(previous, "questions")}
Requirements:
1. Distribute questions evenly across the specified question types.
2. Include the "questionType" field on every question.
3. Questions must be clear and unambiguous with a brief "explanation".
4. If content is provided, include a "citation" pointing at the supporting text.

Return ONLY a JSON object: {{"title": str, "topic": str, "questions": [...]}}
"""


def build_flashcard_prompt(request: GenerationRequest, count: int, previous: Sequence[str] = ()) -> str:
  """Render the flashcard prompt for one chunk."""
  return f"""You are an expert flashcard creator. Generate {count} flashcards based on the following:

{_source_block(request)}
{_avoid_block(previous, "card fronts")}
Requirements:
1. "front" is a concise question or term; "back" is a complete answer or definition.
2. Add an optional "explanation" with context, examples, or a mnemonic.
3. Focus on key concepts, definitions, and important facts.

Return ONLY a JSON object: {{"title": str, "topic": str, "cards": [{{"front": str, "back": str, "explanation": str}}]}}
"""


def build_guide_prompt(request: GenerationRequest, count: int, previous: Sequence[str] = ()) -> str:
  """Render the study guide prompt for one chunk of sections."""
  return f"""You are an expert tutor writing a study guide. Write {count} sections based on the following:

{_source_block(request)}

Options: {_stringify_options(request.options)}
{_avoid_block(previous, "section headings")}
Each section has a "heading", explanatory "content", a list of "keyPoints", and optional "examples".

Return ONLY a JSON object: {{"title": str, "topic": str, "sections": [...]}}
"""


def build_summary_prompt(request: GenerationRequest, count: int, previous: Sequence[str] = ()) -> str:
  """Render the summary prompt; summaries are produced in a single call."""
  return f"""Summarize the following material for a student.

{_source_block(request)}

Options: {_stringify_options(request.options)}

Return ONLY a JSON object: {{"summary": str, "keyPoints": [str]}}
"""


_BUILDERS = {
  "quiz": build_quiz_prompt,
  "flashcard-set": build_flashcard_prompt,
  "guide": build_guide_prompt,
  "summary": build_summary_prompt,
}


def build_prompt(request: GenerationRequest, count: int, previous: Sequence[str] = ()) -> str:
  """Dispatch to the prompt builder for the request's kind."""
  builder = _BUILDERS[request.kind]
  return builder(request, count, previous)
