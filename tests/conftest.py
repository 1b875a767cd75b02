"""Shared fakes for generation pipeline tests."""

from __future__ import annotations

import fnmatch
import json
import random
from typing import Any, Callable

import pytest

from studyforge.ai.providers.base import AIModel, ModelResponse, Provider, SimpleModelResponse
from studyforge.ai.providers.policy import ProviderGateway, ProviderPolicy
from studyforge.ai.routing import DEFAULT_POLICY, ModelRouter, RoutingPolicy, restrict_to_available
from studyforge.generation.dedup import DedupCache
from studyforge.jobs.engine import ChunkedGenerationEngine
from studyforge.jobs.models import ChunkTask
from studyforge.jobs.progress import LifecycleNotifier
from studyforge.services.generation import GenerationService
from studyforge.services.tasks.interface import EnqueueOptions
from studyforge.storage.state_repo import CacheStateRepository


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
  return "asyncio"


class InMemoryCache:
  """Dict-backed cache that records TTLs and can simulate write failures."""

  def __init__(self) -> None:
    self.values: dict[str, str] = {}
    self.ttls: dict[str, int | None] = {}
    self.fail_writes = False

  async def get(self, key: str) -> str | None:
    return self.values.get(key)

  async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
    if self.fail_writes:
      raise ConnectionError("cache unavailable")
    self.values[key] = value
    self.ttls[key] = ttl_seconds

  async def add(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
    if key in self.values:
      return False
    await self.set(key, value, ttl_seconds)
    return True

  async def delete(self, key: str) -> int:
    self.ttls.pop(key, None)
    return 1 if self.values.pop(key, None) is not None else 0

  async def delete_pattern(self, pattern: str) -> int:
    matches = [key for key in self.values if fnmatch.fnmatchcase(key, pattern)]
    for key in matches:
      await self.delete(key)
    return len(matches)


class RecordingQueue:
  """Job queue double that records every enqueue."""

  def __init__(self) -> None:
    self.enqueued: list[tuple[str, dict[str, Any], EnqueueOptions | None]] = []
    self.fail = False

  async def enqueue(self, task_name: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
    if self.fail:
      raise RuntimeError("queue unavailable")
    self.enqueued.append((task_name, payload, options))
    return f"task-{len(self.enqueued)}"

  def pop(self) -> ChunkTask | None:
    if not self.enqueued:
      return None
    _, payload, _ = self.enqueued.pop(0)
    return ChunkTask.from_payload(payload)


class RecordingBus:
  """Event bus double that records publishes."""

  def __init__(self) -> None:
    self.published: list[tuple[str, dict[str, Any]]] = []
    self.error: Exception | None = None

  async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
    if self.error is not None:
      raise self.error
    self.published.append((event_name, payload))

  def names(self) -> list[str]:
    return [name for name, _ in self.published]


class ScriptedModel(AIModel):
  """Returns queued raw responses in order; exceptions in the script are raised."""

  def __init__(self, name: str, script: list[Any]) -> None:
    self.name = name
    self._script = script
    self.prompts: list[str] = []
    self.temperatures: list[float | None] = []

  async def generate(self, prompt: str, *, temperature: float | None = None, schema: dict[str, Any] | None = None) -> ModelResponse:
    self.prompts.append(prompt)
    self.temperatures.append(temperature)
    if not self._script:
      raise AssertionError("Scripted model ran out of responses")
    step = self._script.pop(0)
    if isinstance(step, Exception):
      raise step
    return SimpleModelResponse(content=step)


class ScriptedProvider(Provider):
  """Provider whose every model shares one script."""

  def __init__(self, name: str, script: list[Any] | None = None) -> None:
    self.name = name
    self.script: list[Any] = script if script is not None else []
    self.models: dict[str, ScriptedModel] = {}

  def get_model(self, model: str | None = None) -> AIModel:
    model_name = model or "default"
    if model_name not in self.models:
      self.models[model_name] = ScriptedModel(model_name, self.script)
    return self.models[model_name]

  @property
  def prompts(self) -> list[str]:
    return [prompt for model in self.models.values() for prompt in model.prompts]


def _quiz_response(start: int, count: int, *, title: str | None = "Photosynthesis Quiz") -> str:
  questions = [{"questionType": "single-select", "question": f"Question {index}?", "options": ["A", "B", "C", "D"], "correctAnswer": 0, "explanation": "Because."} for index in range(start, start + count)]
  payload: dict[str, Any] = {"questions": questions}
  if title:
    payload["title"] = title
  return json.dumps(payload)


def _flashcard_response(start: int, count: int) -> str:
  cards = [{"front": f"Term {index}", "back": f"Definition {index}"} for index in range(start, start + count)]
  return json.dumps({"title": "Cards", "cards": cards})


class Harness:
  """Wires the engine and service against in-memory collaborators."""

  quiz_response = staticmethod(_quiz_response)
  flashcard_response = staticmethod(_flashcard_response)

  def __init__(self, *, policy: RoutingPolicy = DEFAULT_POLICY, chunk_ceiling: int = 10, seed: int = 7, providers: tuple[str, ...] = ("gemini", "openrouter")) -> None:
    self.cache = InMemoryCache()
    self.queue = RecordingQueue()
    self.bus = RecordingBus()
    self.gemini = ScriptedProvider("gemini")
    self.openrouter = ScriptedProvider("openrouter")
    self.states = CacheStateRepository(self.cache)
    self.dedup = DedupCache(self.cache, pending_ttl_seconds=900)
    self.notifier = LifecycleNotifier(self.bus, publish_timeout_seconds=1.0)
    configured = {name: provider for name, provider in (("gemini", self.gemini), ("openrouter", self.openrouter)) if name in providers}
    self.router = ModelRouter(restrict_to_available(policy, configured))
    self.gateway = ProviderGateway(configured, ProviderPolicy(timeout_seconds=5.0))
    self.engine = ChunkedGenerationEngine(states=self.states, router=self.router, gateway=self.gateway, notifier=self.notifier, dedup=self.dedup, queue=self.queue, chunk_ceiling=chunk_ceiling, rng=random.Random(seed))
    self.service = GenerationService(dedup=self.dedup, states=self.states, queue=self.queue, notifier=self.notifier)

  def script(self, provider: str, *responses: Any) -> None:
    target = self.gemini if provider == "gemini" else self.openrouter
    target.script.extend(responses)

  async def drain(self, limit: int = 50) -> list[Any]:
    """Run queued chunk tasks in order until the queue is empty."""
    outcomes = []
    for _ in range(limit):
      task = self.queue.pop()
      if task is None:
        return outcomes
      outcomes.append(await self.engine.run_chunk(task))
    raise AssertionError("Queue did not drain")


@pytest.fixture
def harness() -> Harness:
  return Harness()


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
  return Harness


@pytest.fixture
def memory_cache() -> InMemoryCache:
  return InMemoryCache()


@pytest.fixture
def recording_bus() -> RecordingBus:
  return RecordingBus()


@pytest.fixture
def scripted_provider() -> Callable[..., ScriptedProvider]:
  return ScriptedProvider
