"""Error taxonomy and classification helpers for generation jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Literal

if TYPE_CHECKING:
  from studyforge.ai.json_parser import ParseFailure

StallReason = Literal["no_items", "stalled", "ceiling"]

TIMEOUT_USER_MESSAGE = "The AI is taking too long to respond. Please try again with a smaller request or simpler content."

_PROVIDER_HINTS: tuple[str, ...] = (
  "unsupported model",
  "model not found",
  "no such model",
  "model is not available",
  "not available",
  "rate limit",
  "too many requests",
  "429",
  "quota",
  "resource exhausted",
  "timeout",
  "timed out",
  "connection",
  "network",
  "service unavailable",
  "bad gateway",
  "gateway",
  "openrouter",
  "gemini",
)

_QUOTA_HINTS: tuple[str, ...] = ("quota", "resource exhausted", "429", "too many requests", "rate limit")

_OUTPUT_HINTS: tuple[str, ...] = (
  "invalid json",
  "failed to parse",
  "parse json",
  "schema",
  "validation",
)


class GenerationError(Exception):
  """Base class for generation pipeline failures."""

  def __init__(self, message: str, *, user_message: str | None = None) -> None:
    super().__init__(message)
    self.user_message = user_message or "Generation failed. Please try again."


class RequestValidationError(GenerationError):
  """Raised synchronously when a request cannot be scheduled."""

  def __init__(self, message: str) -> None:
    # Validation messages are written for the caller and safe to surface as-is.
    super().__init__(message, user_message=message)


class ProviderError(GenerationError):
  """Raised when a provider call fails."""

  def __init__(self, message: str, *, provider: str | None = None, user_message: str | None = None) -> None:
    super().__init__(message, user_message=user_message)
    self.provider = provider


class ProviderTransientError(ProviderError):
  """Network, availability, or rate-limit failure worth retrying."""


class ProviderTimeoutError(ProviderTransientError):
  """Provider call exceeded the configured timeout."""

  def __init__(self, message: str, *, provider: str | None = None) -> None:
    super().__init__(message, provider=provider, user_message=TIMEOUT_USER_MESSAGE)


class QuotaExceededError(ProviderTransientError):
  """Provider refused the call because of quota or rate limits."""


class ParseExhaustedError(GenerationError):
  """Every parser strategy failed on a provider response."""

  def __init__(self, failure: ParseFailure) -> None:
    super().__init__(f"Failed to parse model output: {failure.reason}")
    self.failure = failure


class StalledGenerationError(GenerationError):
  """Provider cooperated but the job cannot make further progress."""

  _USER_MESSAGES: dict[str, str] = {
    "no_items": "The AI could not produce any items for this request. Please try different content.",
    "stalled": "Generation stopped making progress before reaching the requested count. Please try again.",
    "ceiling": "Generation took too many steps and was stopped. Please try again with a smaller request.",
  }

  def __init__(self, reason: StallReason, message: str) -> None:
    super().__init__(message, user_message=self._USER_MESSAGES[reason])
    self.reason: StallReason = reason


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  # Scan for known substrings to categorize provider vs output errors.
  for hint in hints:
    if hint in message:
      return True
  return False


def is_provider_error(exc: Exception) -> bool:
  """Return True when an exception indicates a provider or model availability failure."""
  if isinstance(exc, ProviderError):
    return True
  message = str(exc).lower()
  return _match_hint(message, _PROVIDER_HINTS)


def is_quota_error(exc: Exception) -> bool:
  """Return True when an exception indicates quota or rate limiting."""
  message = str(exc).lower()
  return _match_hint(message, _QUOTA_HINTS)


def is_output_error(exc: Exception) -> bool:
  """Return True when an exception indicates invalid output formatting."""
  if isinstance(exc, ParseExhaustedError):
    return True
  message = str(exc).lower()
  return _match_hint(message, _OUTPUT_HINTS)


def classify_provider_exception(exc: Exception, *, provider: str) -> ProviderError:
  """Wrap a raw SDK exception into the provider error taxonomy."""
  if isinstance(exc, ProviderError):
    return exc
  if is_quota_error(exc):
    return QuotaExceededError(f"{provider} quota exceeded: {exc}", provider=provider)
  if is_provider_error(exc):
    return ProviderTransientError(f"{provider} call failed: {exc}", provider=provider)
  return ProviderError(f"{provider} call failed: {exc}", provider=provider)


def user_safe_message(exc: BaseException, *, artifact_label: str) -> str:
  """Return a message that is safe to show to end users."""
  # Only errors whose user_message was written for end users pass through; everything else is generic.
  if isinstance(exc, (ProviderTimeoutError, StalledGenerationError, RequestValidationError)):
    return exc.user_message
  return f"Failed to generate {artifact_label}. Please try again."
