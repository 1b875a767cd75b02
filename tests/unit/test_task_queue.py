from __future__ import annotations

import json
from dataclasses import replace

import httpx
import pytest

from studyforge.config import get_settings
from studyforge.services.tasks.interface import EnqueueOptions, RetryPolicy
from studyforge.services.tasks.local import LocalHttpEnqueuer


def _settings(**overrides):
  fields = {"queue_base_url": "http://worker.local/", "task_secret": "s3cret"}
  fields.update(overrides)
  return replace(get_settings.__wrapped__(), **fields)


def test_backoff_grows_and_is_capped() -> None:
  policy = RetryPolicy(max_attempts=5, backoff_seconds=2.0, max_backoff_seconds=5.0)

  assert 2.0 <= policy.backoff_delay(1) < 2.25
  assert 4.0 <= policy.backoff_delay(2) < 4.25
  assert 5.0 <= policy.backoff_delay(4) < 5.25


@pytest.mark.anyio
async def test_enqueue_posts_payload_with_auth_and_attempt_headers() -> None:
  """Ensure deliveries carry the shared secret and retry on server errors."""
  seen: list[httpx.Request] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(503 if len(seen) == 1 else 200)

  client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
  enqueuer = LocalHttpEnqueuer(_settings(), client=client)
  options = EnqueueOptions(retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0.001, max_backoff_seconds=0.001))

  task_id = await enqueuer.enqueue("generation.chunk", {"job_id": "job-1", "chunk_index": 2}, options)
  await enqueuer.aclose()

  assert len(seen) == 2
  assert str(seen[0].url) == "http://worker.local/internal/tasks/generation.chunk"
  assert seen[0].headers["authorization"] == "Bearer s3cret"
  assert seen[0].headers["x-task-id"] == task_id
  assert [request.headers["x-task-attempt"] for request in seen] == ["1", "2"]
  assert seen[1].headers["x-task-max-attempts"] == "3"
  assert json.loads(seen[1].content) == {"job_id": "job-1", "chunk_index": 2}


@pytest.mark.anyio
async def test_enqueue_requires_secret_and_url() -> None:
  with pytest.raises(RuntimeError):
    await LocalHttpEnqueuer(_settings(task_secret=None), client=httpx.AsyncClient()).enqueue("generation.chunk", {})
  with pytest.raises(RuntimeError):
    await LocalHttpEnqueuer(_settings(queue_base_url=None), client=httpx.AsyncClient()).enqueue("generation.chunk", {})


@pytest.mark.anyio
async def test_exhausted_transport_failures_reach_undeliverable_handler() -> None:
  """Ensure a worker that is never reachable still triggers the failure channel."""
  attempts: list[httpx.Request] = []
  undeliverable: list[tuple[str, dict, BaseException]] = []

  def handler(request: httpx.Request) -> httpx.Response:
    attempts.append(request)
    raise httpx.ConnectError("connection refused", request=request)

  async def record(task_name: str, payload: dict, error: BaseException) -> None:
    undeliverable.append((task_name, payload, error))

  enqueuer = LocalHttpEnqueuer(_settings(), client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
  enqueuer.set_undeliverable_handler(record)
  options = EnqueueOptions(retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=0.001, max_backoff_seconds=0.001))

  await enqueuer.enqueue("generation.chunk", {"job_id": "job-1", "chunk_index": 3}, options)
  await enqueuer.aclose()

  assert len(attempts) == 2
  assert len(undeliverable) == 1
  task_name, payload, error = undeliverable[0]
  assert (task_name, payload) == ("generation.chunk", {"job_id": "job-1", "chunk_index": 3})
  assert isinstance(error, httpx.ConnectError)
