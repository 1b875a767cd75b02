"""Lifecycle notifier for generation jobs."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Final, Literal

import msgspec
import msgspec.structs

from studyforge.services.events import EventBus

logger = logging.getLogger(__name__)

Lifecycle = Literal["started", "progress", "completed", "failed"]
LIFECYCLES: Final[frozenset[str]] = frozenset({"started", "progress", "completed", "failed"})
# Upper bound on jobs whose progress high-water mark is remembered.
MAX_TRACKED_JOBS: Final[int] = 1024


class LifecyclePayload(msgspec.Struct):
  """Wire payload published for every lifecycle event."""

  job_id: str
  kind: str
  lifecycle: str
  current: int = 0
  target: int = 0
  percentage: int = 0
  sequence: int = 0
  artifact_id: str | None = None
  user_id: str | None = None
  title: str | None = None
  message: str | None = None
  reason: str | None = None


def event_name(kind: str, lifecycle: str) -> str:
  """Events are published as ``<kind>.<lifecycle>``."""
  return f"{kind}.{lifecycle}"


def progress_percentage(current: int, target: int) -> int:
  if target <= 0:
    return 100
  return max(0, min(100, round(current / target * 100)))


class LifecycleNotifier:
  """Publishes lifecycle events without ever failing the job.

  Progress is clamped to a per-job high-water mark so subscribers never see a
  ``current`` value go backwards from this process. Only the most recently
  active jobs are tracked; ordering across workers comes from ``sequence``.
  """

  def __init__(self, bus: EventBus, publish_timeout_seconds: float = 2.0, max_tracked_jobs: int = MAX_TRACKED_JOBS) -> None:
    self._bus = bus
    self._timeout = publish_timeout_seconds
    self._max_tracked_jobs = max_tracked_jobs
    self._high_water: OrderedDict[str, tuple[int, int]] = OrderedDict()

  async def emit(self, lifecycle: Lifecycle, payload: LifecyclePayload) -> None:
    """Publish one event; errors and timeouts are logged and swallowed."""
    if lifecycle not in LIFECYCLES:
      raise ValueError(f"Unknown lifecycle event: {lifecycle}")

    payload = self._apply_high_water(lifecycle, payload)
    name = event_name(payload.kind, lifecycle)
    body: dict[str, Any] = msgspec.to_builtins(payload)
    try:
      await asyncio.wait_for(self._bus.publish(name, body), timeout=self._timeout)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to publish %s for job %s: %s", name, payload.job_id, exc)
      return
    logger.debug("Published %s for job %s (%s/%s)", name, payload.job_id, payload.current, payload.target)

  def _apply_high_water(self, lifecycle: str, payload: LifecyclePayload) -> LifecyclePayload:
    previous_current, previous_sequence = self._high_water.get(payload.job_id, (0, 0))
    current = max(payload.current, previous_current)
    sequence = max(payload.sequence, previous_sequence)
    if lifecycle in ("completed", "failed"):
      self._high_water.pop(payload.job_id, None)
    else:
      self._high_water[payload.job_id] = (current, sequence)
      self._high_water.move_to_end(payload.job_id)
      while len(self._high_water) > self._max_tracked_jobs:
        self._high_water.popitem(last=False)
    if current == payload.current and sequence == payload.sequence:
      return payload
    return msgspec.structs.replace(payload, current=current, sequence=sequence, percentage=progress_percentage(current, payload.target))

  async def started(self, *, job_id: str, kind: str, target: int, artifact_id: str | None = None, user_id: str | None = None) -> None:
    await self.emit("started", LifecyclePayload(job_id=job_id, kind=kind, lifecycle="started", target=target, artifact_id=artifact_id, user_id=user_id))

  async def progress(self, *, job_id: str, kind: str, current: int, target: int, sequence: int, artifact_id: str | None = None, user_id: str | None = None, message: str | None = None) -> None:
    await self.emit(
      "progress",
      LifecyclePayload(job_id=job_id, kind=kind, lifecycle="progress", current=current, target=target, percentage=progress_percentage(current, target), sequence=sequence, artifact_id=artifact_id, user_id=user_id, message=message),
    )

  async def completed(self, *, job_id: str, kind: str, current: int, target: int, sequence: int, artifact_id: str | None = None, user_id: str | None = None, title: str | None = None) -> None:
    await self.emit(
      "completed",
      LifecyclePayload(job_id=job_id, kind=kind, lifecycle="completed", current=current, target=target, percentage=100, sequence=sequence, artifact_id=artifact_id, user_id=user_id, title=title),
    )

  async def failed(self, *, job_id: str, kind: str, message: str, reason: str | None = None, current: int = 0, target: int = 0, sequence: int = 0, artifact_id: str | None = None, user_id: str | None = None) -> None:
    await self.emit(
      "failed",
      LifecyclePayload(job_id=job_id, kind=kind, lifecycle="failed", current=current, target=target, percentage=progress_percentage(current, target), sequence=sequence, artifact_id=artifact_id, user_id=user_id, message=message, reason=reason),
    )
