from __future__ import annotations

import logging.handlers
import sys
from dataclasses import replace

from studyforge.config import get_settings
from studyforge.core.logging import TruncatedFormatter, _build_handlers, _rotated_name


def _nested_failure(depth: int) -> None:
  if depth == 0:
    raise RuntimeError("deep failure")
  _nested_failure(depth - 1)


def test_rotated_file_names_use_dash_suffix() -> None:
  assert _rotated_name("/logs/studyforge_1.log.3") == "/logs/studyforge_1.log-3"
  assert _rotated_name("/logs/studyforge_1.log") == "/logs/studyforge_1.log"


def test_truncated_formatter_keeps_header_and_tail() -> None:
  """Ensure long tracebacks are shortened but keep the raising frame and message."""
  try:
    _nested_failure(10)
  except RuntimeError:
    exc_info = sys.exc_info()

  formatted = TruncatedFormatter().formatException(exc_info)

  assert formatted.startswith("Traceback")
  assert "    ...\n" in formatted
  assert formatted.rstrip().endswith("RuntimeError: deep failure")


def test_build_handlers_creates_log_file(tmp_path) -> None:
  settings = replace(get_settings.__wrapped__(), log_dir=str(tmp_path / "logs"))

  stream, file_handler, log_path = _build_handlers(settings)
  try:
    assert log_path.exists()
    assert log_path.name.startswith("studyforge_")
    assert isinstance(file_handler, logging.handlers.RotatingFileHandler)
  finally:
    stream.close()
    file_handler.close()
