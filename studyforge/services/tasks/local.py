from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from studyforge.config import Settings
from studyforge.services.tasks.interface import EnqueueOptions
from studyforge.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

ATTEMPT_HEADER = "x-task-attempt"
MAX_ATTEMPTS_HEADER = "x-task-max-attempts"
TASK_ID_HEADER = "x-task-id"

UndeliverableHandler = Callable[[str, dict[str, Any], BaseException], Awaitable[None]]


class LocalHttpEnqueuer:
  """Delivers tasks by POSTing to the worker endpoint, retrying like a hosted queue would."""

  def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
    self.settings = settings
    # Never trust environment proxy variables for internal task dispatch.
    self._client = client or httpx.AsyncClient(trust_env=False)
    self._inflight: set[asyncio.Task[None]] = set()
    self._on_undeliverable: UndeliverableHandler | None = None

  def set_undeliverable_handler(self, handler: UndeliverableHandler) -> None:
    """Register the callback run when every delivery attempt for a task has failed."""
    self._on_undeliverable = handler

  def _task_headers(self) -> dict[str, str]:
    """Build task authentication headers for internal endpoints."""
    # Enforce shared-secret auth for internal endpoints (deny-by-default).
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    return {"authorization": f"Bearer {self.settings.task_secret}"}

  def _task_url(self, task_name: str) -> str:
    if not self.settings.queue_base_url:
      raise RuntimeError("Queue base URL not configured, strictly required for LocalHttpEnqueuer.")
    return f"{self.settings.queue_base_url.rstrip('/')}/internal/tasks/{task_name}"

  async def enqueue(self, task_name: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
    """Schedule delivery in the background and return the task id immediately."""
    options = options or EnqueueOptions()
    url = self._task_url(task_name)
    headers = self._task_headers()
    task_id = generate_job_id()
    delivery = asyncio.create_task(self._deliver(task_name, url, task_id, payload, headers, options))
    self._inflight.add(delivery)
    delivery.add_done_callback(self._inflight.discard)
    return task_id

  async def _deliver(self, task_name: str, url: str, task_id: str, payload: dict[str, Any], headers: dict[str, str], options: EnqueueOptions) -> None:
    if options.delay_seconds > 0:
      await asyncio.sleep(options.delay_seconds)

    policy = options.retry_policy
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
      attempt_headers = {**headers, TASK_ID_HEADER: task_id, ATTEMPT_HEADER: str(attempt), MAX_ATTEMPTS_HEADER: str(policy.max_attempts)}
      try:
        logger.info("Dispatching task %s to %s (attempt %s/%s)", task_id, url, attempt, policy.max_attempts)
        # Chunk handlers run synchronously behind the endpoint, so allow a long deadline.
        response = await self._client.post(url, json=payload, headers=attempt_headers, timeout=1800.0)
        response.raise_for_status()
        return
      except httpx.HTTPStatusError as e:
        last_error = e
        logger.error("Task %s returned %s: %s", task_id, e.response.status_code, e.response.text)
      except httpx.RequestError as e:
        last_error = e
        logger.error("Failed to dispatch task %s: %s", task_id, e)
      if attempt < policy.max_attempts:
        await asyncio.sleep(policy.backoff_delay(attempt))

    logger.error("Task %s exhausted %s delivery attempts.", task_id, policy.max_attempts)
    # Worker-side final attempts already ran their failure channel; handlers must tolerate a second call.
    if self._on_undeliverable is None or last_error is None:
      return
    try:
      await self._on_undeliverable(task_name, payload, last_error)
    except Exception:
      logger.exception("Undeliverable handler for task %s raised", task_id)

  async def drain(self) -> None:
    """Wait for in-flight deliveries, typically during shutdown."""
    if self._inflight:
      await asyncio.gather(*self._inflight, return_exceptions=True)

  async def aclose(self) -> None:
    await self.drain()
    await self._client.aclose()
