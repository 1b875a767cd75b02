"""Fingerprint-keyed dedup cache for in-flight and completed generations."""

from __future__ import annotations

import logging
from typing import Literal

import msgspec

from studyforge.generation.models import get_kind_spec
from studyforge.services.cache import KeyValueCache

logger = logging.getLogger(__name__)

DedupStatus = Literal["pending", "completed", "failed"]

_GLOB_CHARS = ("*", "?", "[")


class DedupEntry(msgspec.Struct, frozen=True):
  """Cache record pointing identical requests at one job."""

  job_id: str
  status: DedupStatus
  result_ref: str | None = None


class DedupCache:
  """At most one non-failed entry per fingerprint.

  Reservation uses the cache's set-if-absent. Two near-simultaneous requests
  can still both reserve when an existing failed entry is being replaced; that
  duplicate work is accepted rather than taking a distributed lock.
  """

  def __init__(self, cache: KeyValueCache, pending_ttl_seconds: int = 900, key_prefix: str = "generation") -> None:
    self._cache = cache
    self._pending_ttl = pending_ttl_seconds
    self._prefix = key_prefix
    self._encoder = msgspec.json.Encoder()
    self._decoder = msgspec.json.Decoder(DedupEntry)

  def key(self, kind: str, fingerprint: str) -> str:
    return f"{self._prefix}:{kind}:{fingerprint}"

  def _encode(self, entry: DedupEntry) -> str:
    return self._encoder.encode(entry).decode("utf-8")

  async def _read(self, key: str) -> DedupEntry | None:
    raw = await self._cache.get(key)
    if raw is None:
      return None
    try:
      return self._decoder.decode(raw)
    except msgspec.DecodeError:
      logger.warning("Ignoring unreadable dedup entry at %s", key)
      return None

  async def get(self, kind: str, fingerprint: str) -> DedupEntry | None:
    return await self._read(self.key(kind, fingerprint))

  async def check_or_reserve(self, kind: str, fingerprint: str, job_id: str) -> DedupEntry | None:
    """Return the live entry for this fingerprint, or reserve it for ``job_id`` and return None."""
    key = self.key(kind, fingerprint)
    existing = await self._read(key)
    if existing is not None and existing.status != "failed":
      return existing

    pending = self._encode(DedupEntry(job_id=job_id, status="pending"))
    if existing is not None:
      # Failed entries count as absent; replace outright.
      await self._cache.set(key, pending, self._pending_ttl)
      logger.info("Replacing failed dedup entry %s with job %s", key, job_id)
      return None

    if await self._cache.add(key, pending, self._pending_ttl):
      logger.info("Reserved %s for job %s", key, job_id)
      return None

    # Another request reserved between our read and write.
    winner = await self._read(key)
    if winner is not None and winner.status != "failed":
      logger.info("Dedup reservation for %s lost to job %s", key, winner.job_id)
      return winner
    await self._cache.set(key, pending, self._pending_ttl)
    return None

  async def finalize(self, kind: str, fingerprint: str, job_id: str, status: DedupStatus, result_ref: str | None = None) -> None:
    """Record the terminal outcome. Cache failures are logged and never raised."""
    ttl = get_kind_spec(kind).completed_ttl_seconds if status == "completed" else self._pending_ttl
    key = self.key(kind, fingerprint)
    try:
      await self._cache.set(key, self._encode(DedupEntry(job_id=job_id, status=status, result_ref=result_ref)), ttl)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to finalize dedup entry %s as %s: %s", key, status, exc)

  async def invalidate(self, pattern_or_key: str) -> int:
    """Remove one key, or every key matching a glob pattern."""
    if any(char in pattern_or_key for char in _GLOB_CHARS):
      return await self._cache.delete_pattern(pattern_or_key)
    return await self._cache.delete(pattern_or_key)

  async def invalidate_kind(self, kind: str) -> int:
    return await self.invalidate(f"{self._prefix}:{kind}:*")
