"""Process wiring: build collaborators from settings and tear them down."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial

from studyforge.ai.providers import ProviderGateway, ProviderPolicy, build_providers
from studyforge.ai.routing import ModelRouter, policy_from_dict, restrict_to_available
from studyforge.config import Settings
from studyforge.core.logging import _initialize_logging
from studyforge.generation.dedup import DedupCache
from studyforge.jobs.dispatch import TaskHandlerRegistry, build_registry, handle_undeliverable
from studyforge.jobs.engine import ChunkedGenerationEngine
from studyforge.jobs.progress import LifecycleNotifier
from studyforge.services.cache import RedisCache
from studyforge.services.events import RedisEventBus
from studyforge.services.generation import GenerationService
from studyforge.services.runtime_config import CachedOverrideSource, KeyValueOverrideSource
from studyforge.services.tasks.interface import RetryPolicy
from studyforge.services.tasks.local import LocalHttpEnqueuer
from studyforge.storage.state_repo import CacheStateRepository


@dataclass
class Runtime:
  """Everything a web process or worker needs to serve generations."""

  service: GenerationService
  engine: ChunkedGenerationEngine
  registry: TaskHandlerRegistry
  cache: RedisCache
  bus: RedisEventBus
  queue: LocalHttpEnqueuer


def build_runtime(settings: Settings) -> Runtime:
  """Wire Redis, providers, routing and the queue from settings."""
  cache = RedisCache.from_url(settings.redis_url)
  bus = RedisEventBus.from_url(settings.redis_url, settings.event_channel_prefix)
  notifier = LifecycleNotifier(bus, publish_timeout_seconds=settings.event_publish_timeout_seconds)
  dedup = DedupCache(cache, pending_ttl_seconds=settings.pending_ttl_seconds)
  states = CacheStateRepository(cache)
  queue = LocalHttpEnqueuer(settings)
  retry_policy = RetryPolicy(max_attempts=settings.queue_max_attempts, backoff_seconds=settings.queue_backoff_seconds, max_backoff_seconds=settings.queue_max_backoff_seconds)

  overrides = CachedOverrideSource(KeyValueOverrideSource(cache, settings.routing_overrides_key), ttl_seconds=settings.routing_overrides_ttl_seconds)
  providers = build_providers(settings)
  router = ModelRouter(restrict_to_available(policy_from_dict(settings.routing_policy), providers), overrides)
  gateway = ProviderGateway(providers, ProviderPolicy(timeout_seconds=settings.provider_timeout_seconds))

  engine = ChunkedGenerationEngine(states=states, router=router, gateway=gateway, notifier=notifier, dedup=dedup, queue=queue, chunk_ceiling=settings.chunk_ceiling, retry_policy=retry_policy)
  service = GenerationService(dedup=dedup, states=states, queue=queue, notifier=notifier, retry_policy=retry_policy)
  registry = build_registry(engine)
  queue.set_undeliverable_handler(partial(handle_undeliverable, registry))
  return Runtime(service=service, engine=engine, registry=registry, cache=cache, bus=bus, queue=queue)


@asynccontextmanager
async def runtime_context(settings: Settings) -> AsyncIterator[Runtime]:
  """Initialize logging, build the runtime, and close network clients on exit."""
  logger = logging.getLogger("studyforge.core.runtime")
  _initialize_logging(settings)
  runtime = build_runtime(settings)
  logger.info("Runtime ready (environment=%s).", settings.environment)
  try:
    yield runtime
  finally:
    await runtime.queue.aclose()
    await runtime.bus.close()
    await runtime.cache.close()
