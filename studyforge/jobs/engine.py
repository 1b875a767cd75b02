"""Chunked generation state machine.

Each queue delivery runs exactly one chunk: read the persisted state, ask the
router for a provider, call it, recover the structured payload, append the new
items, persist, and either finish or enqueue the next chunk. A crashed worker
resumes from the last persisted chunk boundary because nothing is held in
process between deliveries.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any

from studyforge.ai.errors import GenerationError, ParseExhaustedError, StalledGenerationError, is_output_error, user_safe_message
from studyforge.ai.json_parser import ParseFailure, parse
from studyforge.ai.prompts import build_prompt
from studyforge.ai.providers.policy import ProviderGateway
from studyforge.ai.routing import ModelRouter
from studyforge.ai.shapes import ExpectedShape, normalize_items, shape_for_kind
from studyforge.generation.dedup import DedupCache
from studyforge.generation.models import GenerationRequest, KindSpec, get_kind_spec
from studyforge.jobs.models import CHUNK_TASK_NAME, ChunkTask, FailureReason, GenerationJobState, JobPhase, now_iso
from studyforge.jobs.progress import LifecycleNotifier
from studyforge.jobs.shuffle import shuffle_chunk
from studyforge.services.tasks.interface import EnqueueOptions, JobQueue, RetryPolicy
from studyforge.storage.state_repo import GenerationStateRepository

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_CEILING = 10


@dataclass(frozen=True)
class ChunkOutcome:
  """What one chunk execution did."""

  job_id: str
  phase: JobPhase
  produced: int
  target: int
  chunk_index: int
  added: int = 0
  skipped: bool = False
  requeued: bool = False


class ChunkedGenerationEngine:
  """Drives one chunk per invocation until the target is met or a bound is hit."""

  def __init__(
    self,
    *,
    states: GenerationStateRepository,
    router: ModelRouter,
    gateway: ProviderGateway,
    notifier: LifecycleNotifier,
    dedup: DedupCache,
    queue: JobQueue,
    chunk_ceiling: int = DEFAULT_CHUNK_CEILING,
    retry_policy: RetryPolicy | None = None,
    rng: random.Random | None = None,
  ) -> None:
    self._states = states
    self._router = router
    self._gateway = gateway
    self._notifier = notifier
    self._dedup = dedup
    self._queue = queue
    self._ceiling = chunk_ceiling
    self._retry_policy = retry_policy or RetryPolicy()
    self._rng = rng or random.Random()

  async def run_chunk(self, task: ChunkTask) -> ChunkOutcome:
    """Execute one chunk. Provider and parse failures propagate to the queue."""
    state = await self._states.get(task.job_id)
    if state is None:
      logger.error("Chunk %s delivered for unknown job %s; dropping.", task.chunk_index, task.job_id)
      return ChunkOutcome(job_id=task.job_id, phase="failed", produced=0, target=0, chunk_index=task.chunk_index, skipped=True)

    if state.terminal:
      logger.info("Job %s already %s; ignoring chunk %s.", state.job_id, state.phase, task.chunk_index)
      return self._outcome(state, task, skipped=True)

    if task.chunk_index <= state.chunk_index:
      return await self._handle_redelivery(state, task)

    spec = get_kind_spec(state.kind)
    if state.remaining <= 0:
      await self._complete(state)
      return self._outcome(state, task)

    if task.chunk_index > self._ceiling:
      error = StalledGenerationError("ceiling", f"Job {state.job_id} exceeded {self._ceiling} chunks with {state.produced}/{state.target} items.")
      await self._fail(state, spec, error, reason="ceiling")
      return self._outcome(state, task)

    new_items, metadata = await self._generate(state, spec, task)

    state.chunk_index = task.chunk_index
    state.updated_at = now_iso()
    if task.chunk_index == 1:
      self._merge_metadata(state, spec, metadata)

    if not new_items:
      reason: FailureReason = "no_items" if state.produced == 0 else "stalled"
      error = StalledGenerationError(reason, f"Chunk {task.chunk_index} of job {state.job_id} produced no new items ({state.produced}/{state.target}).")
      await self._fail(state, spec, error, reason=reason)
      return self._outcome(state, task)

    state.items.extend(new_items)
    state.phase = "chunk_executing"
    await self._states.save(state)
    logger.info("Job %s chunk %s added %s item(s): %s/%s", state.job_id, task.chunk_index, len(new_items), state.produced, state.target)

    await self._notifier.progress(
      job_id=state.job_id,
      kind=state.kind,
      current=min(state.produced, state.target),
      target=state.target,
      sequence=task.chunk_index,
      artifact_id=state.artifact_id,
      user_id=state.user_id,
      message=f"Generated {min(state.produced, state.target)} of {state.target} {spec.item_noun}",
    )

    if state.remaining <= 0:
      await self._complete(state)
      return self._outcome(state, task, added=len(new_items))

    await self._enqueue_next(state, task.chunk_index + 1)
    return self._outcome(state, task, added=len(new_items), requeued=True)

  async def _generate(self, state: GenerationJobState, spec: KindSpec, task: ChunkTask) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Route, call, parse and normalize one chunk; return only items not already produced."""
    request = GenerationRequest.model_validate(state.request)
    shape = shape_for_kind(state.kind)
    count = min(spec.chunk_size, state.remaining)

    # Resolved per chunk so routing changes apply to in-flight jobs.
    decision = await self._router.resolve(spec.task_name, request.complexity, request.has_multimodal_input)
    previous = [shape.item_label(item) for item in state.items]
    prompt = build_prompt(request, count, previous)

    logger.info("Job %s chunk %s requesting %s %s from %s/%s", state.job_id, task.chunk_index, count, spec.item_noun, decision.provider, decision.model_id)
    raw = await self._gateway.invoke(decision.provider, decision.model_id, prompt, temperature=decision.temperature, structured_schema=shape.json_schema())

    outcome = parse(raw, shape)
    if isinstance(outcome, ParseFailure):
      raise ParseExhaustedError(outcome)
    logger.debug("Job %s chunk %s parsed via %s", state.job_id, task.chunk_index, outcome.strategy)

    chunk = normalize_items(shape, outcome.value)
    new_items = self._fresh_items(shape, state.items, chunk.items)[: state.remaining]
    if spec.shuffle_items:
      new_items = shuffle_chunk(state.kind, new_items, self._rng)
    return new_items, chunk.metadata

  @staticmethod
  def _fresh_items(shape: ExpectedShape, existing: list[dict[str, Any]], candidates: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen = {shape.item_key(item) for item in existing}
    fresh: list[dict[str, Any]] = []
    for item in candidates:
      key = shape.item_key(item)
      if key in seen:
        continue
      seen.add(key)
      fresh.append(item)
    return fresh

  @staticmethod
  def _merge_metadata(state: GenerationJobState, spec: KindSpec, metadata: dict[str, Any]) -> None:
    request_topic = str(state.request.get("topic") or "").strip() or None
    state.topic = metadata.get("topic") or state.topic or request_topic
    state.title = metadata.get("title") or state.title or request_topic or f"Untitled {spec.label}"

  async def _handle_redelivery(self, state: GenerationJobState, task: ChunkTask) -> ChunkOutcome:
    """A chunk that already ran; re-enqueue its successor only if that enqueue never landed."""
    if task.chunk_index == state.chunk_index and state.enqueued_chunk <= state.chunk_index:
      logger.warning("Job %s chunk %s redelivered before its successor was queued; re-enqueueing.", state.job_id, task.chunk_index)
      await self._enqueue_next(state, task.chunk_index + 1)
      return self._outcome(state, task, skipped=True, requeued=True)
    logger.info("Ignoring stale chunk %s for job %s (at chunk %s).", task.chunk_index, state.job_id, state.chunk_index)
    return self._outcome(state, task, skipped=True)

  async def _enqueue_next(self, state: GenerationJobState, chunk_index: int) -> None:
    await self._queue.enqueue(CHUNK_TASK_NAME, ChunkTask(job_id=state.job_id, chunk_index=chunk_index).to_payload(), EnqueueOptions(retry_policy=self._retry_policy))
    state.enqueued_chunk = chunk_index
    await self._states.save(state)

  async def _complete(self, state: GenerationJobState) -> None:
    state.phase = "complete"
    state.completed_at = now_iso()
    state.updated_at = state.completed_at
    await self._states.save(state)
    await self._dedup.finalize(state.kind, state.fingerprint, state.job_id, "completed", result_ref=state.artifact_id)
    logger.info("Job %s complete with %s/%s items after %s chunk(s).", state.job_id, state.produced, state.target, state.chunk_index)
    await self._notifier.completed(job_id=state.job_id, kind=state.kind, current=min(state.produced, state.target), target=state.target, sequence=state.chunk_index, artifact_id=state.artifact_id, user_id=state.user_id, title=state.title)

  async def _fail(self, state: GenerationJobState, spec: KindSpec, error: BaseException, *, reason: FailureReason) -> None:
    message = user_safe_message(error, artifact_label=spec.label)
    state.phase = "failed"
    state.failure_reason = reason
    state.failure_message = message
    state.updated_at = now_iso()
    await self._states.save(state)
    await self._dedup.finalize(state.kind, state.fingerprint, state.job_id, "failed")
    logger.warning("Job %s failed (%s): %s", state.job_id, reason, error)
    await self._notifier.failed(job_id=state.job_id, kind=state.kind, message=message, reason=reason, current=state.produced, target=state.target, sequence=state.chunk_index, artifact_id=state.artifact_id, user_id=state.user_id)

  async def on_chunk_failed(self, task: ChunkTask, error: BaseException) -> None:
    """Failure channel: the queue gave up on this chunk, so the job fails terminally."""
    state = await self._states.get(task.job_id)
    if state is None or state.terminal:
      return
    reason: FailureReason = error.reason if isinstance(error, StalledGenerationError) else "error"
    if is_output_error(error):
      logger.warning("Job %s chunk %s exhausted retries on unparseable output.", task.job_id, task.chunk_index)
    elif not isinstance(error, GenerationError):
      logger.error("Unexpected error in job %s chunk %s", task.job_id, task.chunk_index, exc_info=error)
    await self._fail(state, get_kind_spec(state.kind), error, reason=reason)

  @staticmethod
  def _outcome(state: GenerationJobState, task: ChunkTask, *, added: int = 0, skipped: bool = False, requeued: bool = False) -> ChunkOutcome:
    return ChunkOutcome(job_id=state.job_id, phase=state.phase, produced=state.produced, target=state.target, chunk_index=task.chunk_index, added=added, skipped=skipped, requeued=requeued)
