from __future__ import annotations

import json

from studyforge.ai.json_parser import ParseFailure, ParseSuccess, clean_text, decode_sanitized, decode_streaming, parse
from studyforge.ai.shapes import FLASHCARD_SHAPE, QUIZ_SHAPE, SUMMARY_SHAPE, normalize_items

QUIZ = {"title": "Cells", "questions": [{"question": "What is ATP?", "options": ["Energy", "Protein"], "correctAnswer": 0}]}


def test_plain_json_uses_boundary_strategy() -> None:
  outcome = parse(json.dumps(QUIZ), QUIZ_SHAPE)

  assert isinstance(outcome, ParseSuccess)
  assert outcome.ok is True
  assert outcome.strategy == "boundary"
  assert outcome.value == QUIZ


def test_prose_around_json_is_ignored() -> None:
  """Ensure leading and trailing chatter does not defeat extraction."""
  text = f"Here is your quiz:\n{json.dumps(QUIZ)}\nLet me know if you need more!"

  outcome = parse(text, QUIZ_SHAPE)

  assert outcome.strategy == "boundary"
  assert outcome.value["title"] == "Cells"


def test_fenced_block_with_braces_in_trailing_prose_uses_fence_strategy() -> None:
  """Ensure the fence strategy recovers payloads the boundary scan over-extends."""
  # The last closing brace sits in the prose, so the boundary span is not valid JSON.
  text = f"```json\n{json.dumps(QUIZ)}\n```\nTip: use {{placeholders}} for blanks."

  outcome = parse(text, QUIZ_SHAPE)

  assert outcome.strategy == "fence"
  assert outcome.value == QUIZ


def test_trailing_commas_use_lenient_strategy() -> None:
  text = '{"title": "Cells", "questions": [{"question": "What is ATP?", "correctAnswer": 0,},],}'

  outcome = parse(text, QUIZ_SHAPE)

  assert outcome.strategy == "lenient"
  assert outcome.value["questions"][0]["question"] == "What is ATP?"


def test_sanitizer_escapes_raw_control_characters() -> None:
  """Ensure raw newlines and tabs inside strings decode instead of aborting."""
  text = '{"summary": "line one\nline two\tindented"}'

  assert decode_sanitized(text) == {"summary": "line one\nline two\tindented"}


def test_truncated_output_recovers_partial_prefix_via_streaming() -> None:
  """Ensure a response cut off mid-object still yields the completed items."""
  text = '{"questions": [{"question": "Q1?", "correctAnswer": 0}, {"question": "Q2?", "corr'

  outcome = parse(text, QUIZ_SHAPE)

  assert isinstance(outcome, ParseSuccess)
  assert outcome.strategy == "streaming"
  assert outcome.value["questions"][0] == {"question": "Q1?", "correctAnswer": 0}


def test_streaming_stops_after_first_top_level_value() -> None:
  assert decode_streaming('[1, 2] [3]') == [1, 2]


def test_wrong_shape_is_rejected_by_every_strategy() -> None:
  """Ensure a decodable payload of the wrong shape becomes a failure."""
  outcome = parse('{"answer": 42}', QUIZ_SHAPE)

  assert isinstance(outcome, ParseFailure)
  assert outcome.ok is False
  assert outcome.attempted == ("boundary", "fence", "lenient", "sanitized", "streaming", "strict")


def test_shape_is_optional() -> None:
  outcome = parse('{"answer": 42}')

  assert outcome.value == {"answer": 42}


def test_alias_container_keys_are_accepted() -> None:
  outcome = parse(json.dumps({"flashcards": [{"front": "a", "back": "b"}]}), FLASHCARD_SHAPE)

  assert outcome.ok is True


def test_top_level_list_is_accepted_for_item_shapes() -> None:
  outcome = parse(json.dumps(QUIZ["questions"]), QUIZ_SHAPE)

  assert outcome.strategy == "boundary"
  assert isinstance(outcome.value, list)


def test_bracketed_prose_before_payload_keeps_the_payload() -> None:
  """Ensure a stray bracket in prose does not win over the real container."""
  outcome = parse(f"Sure [1]: here you go {json.dumps(QUIZ)}", QUIZ_SHAPE)

  assert isinstance(outcome, ParseSuccess)
  assert outcome.value == QUIZ
  assert len(normalize_items(QUIZ_SHAPE, outcome.value).items) == 1


def test_item_lists_must_hold_objects() -> None:
  assert QUIZ_SHAPE.accepts([[1], [2]]) is False
  assert QUIZ_SHAPE.accepts([QUIZ]) is False
  assert QUIZ_SHAPE.select([[1], QUIZ]) == QUIZ
  assert QUIZ_SHAPE.accepts(QUIZ["questions"]) is True


def test_summary_shape_requires_an_object() -> None:
  assert parse("[]", SUMMARY_SHAPE).ok is False
  assert parse('{"summary": "ok"}', SUMMARY_SHAPE).ok is True


def test_refusal_text_fails_with_excerpt() -> None:
  outcome = parse("I cannot help with that request.", QUIZ_SHAPE)

  assert isinstance(outcome, ParseFailure)
  assert outcome.reason == "all parse strategies failed"
  assert outcome.excerpt == "I cannot help with that request."
  assert outcome.length == len("I cannot help with that request.")


def test_long_failure_excerpt_keeps_head_and_tail() -> None:
  text = "a" * 300 + "b" * 300

  outcome = parse(text)

  assert outcome.head == "a" * 200
  assert outcome.tail == "b" * 200
  assert " ... " in outcome.excerpt


def test_empty_input_fails_without_running_strategies() -> None:
  for text in ("", "   \n", None):
    outcome = parse(text)
    assert isinstance(outcome, ParseFailure)
    assert outcome.reason == "empty response"
    assert outcome.attempted == ()


def test_clean_text_strips_bom_and_wrapping_fence() -> None:
  assert clean_text("\ufeff```json\n{\"a\": 1}\n```  ") == '{"a": 1}'
