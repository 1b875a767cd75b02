from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class RetryPolicy:
  """Bounded attempts with exponential backoff and jitter."""

  max_attempts: int = 3
  backoff_seconds: float = 2.0
  max_backoff_seconds: float = 60.0

  def backoff_delay(self, attempt: int) -> float:
    """Delay before retrying after the given 1-based attempt failed."""
    base = min(self.backoff_seconds * (2 ** max(attempt - 1, 0)), self.max_backoff_seconds)
    return base + random.random() * 0.25


@dataclass(frozen=True)
class EnqueueOptions:
  """Delivery options for one queued task."""

  priority: int = 0
  retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
  delay_seconds: float = 0.0


class JobQueue(Protocol):
  """At-least-once job queue."""

  async def enqueue(self, task_name: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
    """Schedule a task and return its queue id."""
    ...
