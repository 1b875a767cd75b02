"""Key/value cache contract and its Redis implementation."""

from __future__ import annotations

import logging
from typing import Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class KeyValueCache(Protocol):
  """Eventually-consistent cache used for dedup entries and config snapshots."""

  async def get(self, key: str) -> str | None:
    """Return the raw value or None when absent."""

  async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
    """Write a value, replacing any existing one."""

  async def add(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
    """Write only when the key is absent. Return True when written."""

  async def delete(self, key: str) -> int:
    """Delete one key. Return the number of keys removed."""

  async def delete_pattern(self, pattern: str) -> int:
    """Delete every key matching a glob pattern."""


class RedisCache:
  """Redis-backed cache using SET NX for reservations."""

  def __init__(self, client: redis.Redis) -> None:
    self._client = client

  @classmethod
  def from_url(cls, url: str) -> RedisCache:
    client = redis.from_url(url, encoding="utf-8", decode_responses=True)
    return cls(client)

  async def get(self, key: str) -> str | None:
    return await self._client.get(key)

  async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
    if ttl_seconds:
      await self._client.setex(key, ttl_seconds, value)
      return
    await self._client.set(key, value)

  async def add(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
    written = await self._client.set(key, value, ex=ttl_seconds or None, nx=True)
    return bool(written)

  async def delete(self, key: str) -> int:
    return int(await self._client.delete(key))

  async def delete_pattern(self, pattern: str) -> int:
    """Delete matching keys in SCAN batches so large keyspaces never block Redis."""
    removed = 0
    batch: list[str] = []
    async for key in self._client.scan_iter(match=pattern, count=500):
      batch.append(key)
      if len(batch) >= 500:
        removed += int(await self._client.delete(*batch))
        batch = []
    if batch:
      removed += int(await self._client.delete(*batch))
    logger.info("Invalidated %s cache key(s) matching %s", removed, pattern)
    return removed

  async def close(self) -> None:
    await self._client.aclose()
