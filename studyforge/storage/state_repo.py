"""Storage interfaces for generation job state."""

from __future__ import annotations

from typing import Protocol

import msgspec

from studyforge.jobs.models import GenerationJobState
from studyforge.services.cache import KeyValueCache


class GenerationStateRepository(Protocol):
  """Repository contract for the durable accumulator."""

  async def create(self, state: GenerationJobState) -> None:
    """Persist an initial job state."""

  async def get(self, job_id: str) -> GenerationJobState | None:
    """Fetch a job state by identifier."""

  async def save(self, state: GenerationJobState) -> None:
    """Overwrite the stored state; last writer wins."""


class CacheStateRepository:
  """Stores job state as msgspec-encoded JSON in the key/value cache."""

  def __init__(self, cache: KeyValueCache, ttl_seconds: int = 7 * 24 * 3600, prefix: str = "generation-job") -> None:
    self._cache = cache
    self._ttl = ttl_seconds
    self._prefix = prefix
    self._encoder = msgspec.json.Encoder()
    self._decoder = msgspec.json.Decoder(GenerationJobState)

  def _key(self, job_id: str) -> str:
    return f"{self._prefix}:{job_id}"

  async def create(self, state: GenerationJobState) -> None:
    written = await self._cache.add(self._key(state.job_id), self._encoder.encode(state).decode("utf-8"), self._ttl)
    if not written:
      raise ValueError(f"Job state {state.job_id} already exists.")

  async def get(self, job_id: str) -> GenerationJobState | None:
    raw = await self._cache.get(self._key(job_id))
    if raw is None:
      return None
    return self._decoder.decode(raw)

  async def save(self, state: GenerationJobState) -> None:
    await self._cache.set(self._key(state.job_id), self._encoder.encode(state).decode("utf-8"), self._ttl)
