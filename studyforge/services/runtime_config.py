"""Admin routing overrides with a pull-and-cache snapshot."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Protocol

from studyforge.ai.routing import RoutingOverrides
from studyforge.services.cache import KeyValueCache

logger = logging.getLogger(__name__)


class AdminConfigSource(Protocol):
  """External source of admin-configured routing overrides."""

  async def get_routing_overrides(self) -> dict[str, Any]:
    """Return a task name -> ``provider[:profile]`` table."""


class KeyValueOverrideSource:
  """Reads the override table stored as JSON under a cache key."""

  def __init__(self, cache: KeyValueCache, key: str) -> None:
    self._cache = cache
    self._key = key

  async def get_routing_overrides(self) -> dict[str, Any]:
    raw = await self._cache.get(self._key)
    if not raw:
      return {}
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
      raise ValueError(f"Routing overrides under '{self._key}' must be a JSON object.")
    return parsed


class CachedOverrideSource:
  """Caches override snapshots for a short TTL; keeps the last good snapshot on fetch errors."""

  def __init__(self, source: AdminConfigSource, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
    self._source = source
    self._ttl = ttl_seconds
    self._clock = clock
    self._snapshot = RoutingOverrides()
    self._fetched_at: float | None = None

  def invalidate(self) -> None:
    self._fetched_at = None

  async def snapshot(self) -> RoutingOverrides:
    now = self._clock()
    if self._fetched_at is not None and now - self._fetched_at < self._ttl:
      return self._snapshot

    try:
      raw = await self._source.get_routing_overrides()
    except Exception as exc:  # noqa: BLE001
      # Routing must keep working when admin config is unreachable.
      logger.warning("Failed to refresh routing overrides, keeping previous snapshot: %s", exc)
      self._fetched_at = now
      return self._snapshot

    self._snapshot = RoutingOverrides.from_mapping(raw)
    self._fetched_at = now
    return self._snapshot
