"""Request front door: validate, dedup, persist initial state, schedule the first chunk."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from studyforge.generation.dedup import DedupCache, DedupStatus
from studyforge.generation.fingerprint import compute_fingerprint
from studyforge.generation.models import GenerationRequest, effective_target, validate_request
from studyforge.jobs.models import CHUNK_TASK_NAME, ChunkTask, GenerationJobState, now_iso
from studyforge.jobs.progress import LifecycleNotifier
from studyforge.services.tasks.interface import EnqueueOptions, JobQueue, RetryPolicy
from studyforge.storage.state_repo import GenerationStateRepository
from studyforge.utils.ids import generate_artifact_id, generate_job_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationTicket:
  """What the caller gets back: the job to follow, and whether it was shared."""

  job_id: str
  fingerprint: str
  status: DedupStatus
  result_ref: str | None = None
  deduplicated: bool = False


class GenerationService:
  """Schedules generations, sharing in-flight or completed work for identical requests."""

  def __init__(self, *, dedup: DedupCache, states: GenerationStateRepository, queue: JobQueue, notifier: LifecycleNotifier, retry_policy: RetryPolicy | None = None) -> None:
    self._dedup = dedup
    self._states = states
    self._queue = queue
    self._notifier = notifier
    self._retry_policy = retry_policy or RetryPolicy()

  async def submit(self, request: GenerationRequest) -> GenerationTicket:
    """Validate synchronously, then reuse an existing job or schedule a new one."""
    validate_request(request)
    fingerprint = compute_fingerprint(request)
    job_id = generate_job_id()

    existing = await self._dedup.check_or_reserve(request.kind, fingerprint, job_id)
    if existing is not None:
      logger.info("Request for %s deduplicated onto job %s (%s)", request.kind, existing.job_id, existing.status)
      return GenerationTicket(job_id=existing.job_id, fingerprint=fingerprint, status=existing.status, result_ref=existing.result_ref, deduplicated=True)

    now = now_iso()
    target = effective_target(request)
    state = GenerationJobState(
      job_id=job_id,
      artifact_id=generate_artifact_id(),
      kind=request.kind,
      fingerprint=fingerprint,
      request=request.model_dump(mode="json"),
      target=target,
      source_type=request.source_type,
      created_at=now,
      updated_at=now,
      user_id=request.user_id,
      topic=(request.topic or "").strip() or None,
    )

    try:
      await self._states.create(state)
      await self._queue.enqueue(CHUNK_TASK_NAME, ChunkTask(job_id=job_id, chunk_index=1).to_payload(), EnqueueOptions(retry_policy=self._retry_policy))
    except Exception:
      # Release the reservation so the next identical request can try again.
      await self._dedup.finalize(request.kind, fingerprint, job_id, "failed")
      raise

    logger.info("Scheduled %s job %s (target=%s, source=%s)", request.kind, job_id, target, state.source_type)
    await self._notifier.started(job_id=job_id, kind=request.kind, target=target, artifact_id=state.artifact_id, user_id=request.user_id)
    return GenerationTicket(job_id=job_id, fingerprint=fingerprint, status="pending")

  async def invalidate(self, pattern_or_key: str) -> int:
    """Drop dedup entries, e.g. after upstream source content changed."""
    return await self._dedup.invalidate(pattern_or_key)
