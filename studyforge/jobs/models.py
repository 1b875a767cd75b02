"""Domain models for chunked artifact generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final, Literal

JobPhase = Literal["new", "chunk_executing", "complete", "failed"]
FailureReason = Literal["no_items", "stalled", "ceiling", "error"]

CHUNK_TASK_NAME: Final[str] = "generation.chunk"
TERMINAL_PHASES: Final[frozenset[str]] = frozenset({"complete", "failed"})


@dataclass
class GenerationJobState:
  """Durable accumulator for one generation, owned by the chunk engine."""

  job_id: str
  artifact_id: str
  kind: str
  fingerprint: str
  request: dict[str, Any]
  target: int
  source_type: str
  created_at: str
  updated_at: str
  user_id: str | None = None
  items: list[dict[str, Any]] = field(default_factory=list)
  chunk_index: int = 0
  enqueued_chunk: int = 1
  phase: JobPhase = "new"
  title: str | None = None
  topic: str | None = None
  failure_reason: FailureReason | None = None
  failure_message: str | None = None
  completed_at: str | None = None

  @property
  def produced(self) -> int:
    return len(self.items)

  @property
  def remaining(self) -> int:
    return self.target - self.produced

  @property
  def terminal(self) -> bool:
    return self.phase in TERMINAL_PHASES


@dataclass(frozen=True)
class ChunkTask:
  """Queue payload for one chunk execution; ``chunk_index`` starts at 1."""

  job_id: str
  chunk_index: int

  def to_payload(self) -> dict[str, Any]:
    return {"job_id": self.job_id, "chunk_index": self.chunk_index}

  @classmethod
  def from_payload(cls, payload: dict[str, Any]) -> ChunkTask:
    job_id = payload.get("job_id")
    if not isinstance(job_id, str) or not job_id:
      raise ValueError("Chunk task payload is missing job_id.")
    chunk_index = int(payload.get("chunk_index", 1))
    if chunk_index < 1:
      raise ValueError("Chunk task chunk_index must be >= 1.")
    return cls(job_id=job_id, chunk_index=chunk_index)


def now_iso() -> str:
  return datetime.now(UTC).isoformat()
