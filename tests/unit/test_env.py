from __future__ import annotations

from studyforge.utils.env import default_env_path, load_env_file, parse_env_text


def test_parse_env_text_handles_exports_quotes_and_comments() -> None:
  text = """
# provider keys
export GEMINI_API_KEY="abc # not a comment"
OPENROUTER_API_KEY=xyz  # trailing comment
STUDYFORGE_CHUNK_CEILING='12'
not a pair
=missing-key
"""

  assert parse_env_text(text) == {"GEMINI_API_KEY": "abc # not a comment", "OPENROUTER_API_KEY": "xyz", "STUDYFORGE_CHUNK_CEILING": "12"}


def test_load_env_file_respects_existing_variables(tmp_path, monkeypatch) -> None:
  """Ensure values already in the environment win unless override is requested."""
  env_file = tmp_path / ".env"
  env_file.write_text("STUDYFORGE_A=file\nSTUDYFORGE_B=file\n", encoding="utf-8")
  monkeypatch.setenv("STUDYFORGE_A", "process")
  monkeypatch.setenv("STUDYFORGE_B", "unset")
  monkeypatch.delenv("STUDYFORGE_B")

  assert load_env_file(env_file) == ["STUDYFORGE_B"]
  assert load_env_file(env_file, override=True) == ["STUDYFORGE_A", "STUDYFORGE_B"]
  assert load_env_file(tmp_path / "missing.env") == []


def test_env_file_location_can_be_overridden(monkeypatch, tmp_path) -> None:
  monkeypatch.setenv("STUDYFORGE_ENV_FILE", str(tmp_path / "worker.env"))
  assert default_env_path() == tmp_path / "worker.env"

  monkeypatch.delenv("STUDYFORGE_ENV_FILE")
  assert default_env_path().name == ".env"
  assert default_env_path().parent.name != tmp_path.name
