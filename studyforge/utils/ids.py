"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new generation job identifier."""
  return str(uuid.uuid4())


def generate_artifact_id() -> str:
  """Return a new artifact record identifier."""
  return str(uuid.uuid4())
