"""Dependency-injected task dispatch for queue deliveries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from studyforge.jobs.engine import ChunkedGenerationEngine, ChunkOutcome
from studyforge.jobs.models import CHUNK_TASK_NAME, ChunkTask

logger = logging.getLogger(__name__)


class TaskHandler(Protocol):
  """Handler contract for one queue task name."""

  async def handle(self, payload: dict[str, Any]) -> Any:
    """Process one delivery; raising hands the delivery back to the queue's retry policy."""

  async def on_exhausted(self, payload: dict[str, Any], error: BaseException) -> None:
    """Called once the queue will not retry the delivery again."""


@dataclass(frozen=True)
class Delivery:
  """Queue delivery metadata; ``attempt`` is 1-based."""

  task_name: str
  payload: dict[str, Any]
  attempt: int = 1
  max_attempts: int = 1

  @property
  def final_attempt(self) -> bool:
    return self.attempt >= self.max_attempts


class ChunkTaskHandler:
  """Adapts the chunk engine to the queue handler contract."""

  def __init__(self, engine: ChunkedGenerationEngine) -> None:
    self._engine = engine

  async def handle(self, payload: dict[str, Any]) -> ChunkOutcome:
    return await self._engine.run_chunk(ChunkTask.from_payload(payload))

  async def on_exhausted(self, payload: dict[str, Any], error: BaseException) -> None:
    await self._engine.on_chunk_failed(ChunkTask.from_payload(payload), error)


class TaskHandlerRegistry:
  """Registry mapping task names to handlers."""

  def __init__(self, handlers: dict[str, TaskHandler]) -> None:
    self._handlers = handlers

  def resolve(self, task_name: str) -> TaskHandler:
    """Resolve the handler for a task name."""
    handler = self._handlers.get(task_name)
    if handler is None:
      raise ValueError(f"Unsupported task: {task_name}")
    return handler


def build_registry(engine: ChunkedGenerationEngine) -> TaskHandlerRegistry:
  return TaskHandlerRegistry({CHUNK_TASK_NAME: ChunkTaskHandler(engine)})


async def process_delivery(delivery: Delivery, registry: TaskHandlerRegistry) -> Any:
  """Run one delivery and route the final failure through the failure channel before re-raising."""
  handler = registry.resolve(delivery.task_name)
  try:
    return await handler.handle(delivery.payload)
  except Exception as exc:
    if not delivery.final_attempt:
      logger.warning("Task %s attempt %s/%s failed, leaving retry to the queue: %s", delivery.task_name, delivery.attempt, delivery.max_attempts, exc)
      raise
    logger.error("Task %s failed on final attempt %s/%s: %s", delivery.task_name, delivery.attempt, delivery.max_attempts, exc)
    try:
      await handler.on_exhausted(delivery.payload, exc)
    except Exception:
      logger.exception("Failure handler for task %s raised", delivery.task_name)
    raise


async def handle_undeliverable(registry: TaskHandlerRegistry, task_name: str, payload: dict[str, Any], error: BaseException) -> None:
  """Route a task no worker ever accepted through its failure channel."""
  logger.error("Task %s could not be delivered, running its failure channel: %s", task_name, error)
  await registry.resolve(task_name).on_exhausted(payload, error)
