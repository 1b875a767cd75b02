"""Event bus contract and its Redis pub/sub implementation."""

from __future__ import annotations

from typing import Any, Protocol

import msgspec
import redis.asyncio as redis


class EventBus(Protocol):
  """Fire-and-forget publisher for lifecycle events."""

  async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
    """Publish one event. Delivery is at-least-once at best."""


class RedisEventBus:
  """Publishes msgspec-encoded JSON payloads to ``<prefix>:<event_name>`` channels."""

  def __init__(self, client: redis.Redis, channel_prefix: str = "studyforge") -> None:
    self._client = client
    self._prefix = channel_prefix
    self._encoder = msgspec.json.Encoder()

  @classmethod
  def from_url(cls, url: str, channel_prefix: str = "studyforge") -> RedisEventBus:
    return cls(redis.from_url(url, decode_responses=True), channel_prefix)

  def channel_for(self, event_name: str) -> str:
    return f"{self._prefix}:{event_name}"

  async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
    message = self._encoder.encode({"event": event_name, "payload": payload})
    await self._client.publish(self.channel_for(event_name), message)

  async def close(self) -> None:
    await self._client.aclose()
