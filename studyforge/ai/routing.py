"""Model routing policy and resolution.

Routing is resolved per chunk from two immutable inputs: the static
``RoutingPolicy`` and the latest ``RoutingOverrides`` snapshot pulled from
admin configuration. Resolution never fails; unknown providers or profiles in
any rule are skipped and the next rule is consulted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final, Iterable, Literal, Mapping

if TYPE_CHECKING:
  from studyforge.services.runtime_config import CachedOverrideSource

logger = logging.getLogger(__name__)

RouteSource = Literal["override", "multimodal", "task", "complexity", "default", "fallback"]

_GEMINI_PROVIDER: Final[str] = "gemini"
_OPENROUTER_PROVIDER: Final[str] = "openrouter"

# Last resort when the policy itself names no usable provider.
FALLBACK_PROVIDER: Final[str] = _GEMINI_PROVIDER
FALLBACK_MODEL: Final[str] = "gemini-2.5-flash"
FALLBACK_TEMPERATURE: Final[float] = 0.7


@dataclass(frozen=True)
class ModelProfile:
  """A named model configuration for a provider."""

  model_id: str
  temperature: float = 0.7


@dataclass(frozen=True)
class ProviderEntry:
  """Provider with its named model profiles."""

  name: str
  profiles: Mapping[str, ModelProfile]
  default_profile: str

  def profile(self, name: str | None) -> ModelProfile | None:
    if name is None:
      return self.profiles.get(self.default_profile)
    return self.profiles.get(name)


@dataclass(frozen=True)
class RoutingPolicy:
  """Static routing table; route values are ``provider`` or ``provider:profile``."""

  providers: Mapping[str, ProviderEntry]
  default_provider: str
  task_routing: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
  complexity_routing: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
  multimodal_provider: str | None = None


@dataclass(frozen=True)
class RoutingOverrides:
  """Immutable snapshot of admin-configured task routes."""

  task_routes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

  @classmethod
  def from_mapping(cls, raw: Mapping[str, Any] | None) -> RoutingOverrides:
    if not raw:
      return cls()
    routes = {str(key): str(value).strip() for key, value in raw.items() if isinstance(value, str) and value.strip()}
    return cls(task_routes=MappingProxyType(routes))


@dataclass(frozen=True)
class RoutingDecision:
  """Concrete provider/model/temperature chosen for one chunk."""

  provider: str
  model_id: str
  temperature: float
  source: RouteSource
  profile: str | None = None


def _provider(name: str, profiles: dict[str, ModelProfile], default_profile: str) -> ProviderEntry:
  return ProviderEntry(name=name, profiles=MappingProxyType(profiles), default_profile=default_profile)


DEFAULT_POLICY: Final[RoutingPolicy] = RoutingPolicy(
  providers=MappingProxyType(
    {
      _GEMINI_PROVIDER: _provider(_GEMINI_PROVIDER, {"fast": ModelProfile("gemini-2.5-flash", 0.7), "premium": ModelProfile("gemini-2.5-pro", 0.4)}, "fast"),
      _OPENROUTER_PROVIDER: _provider(_OPENROUTER_PROVIDER, {"fast": ModelProfile("openai/gpt-oss-20b:free", 0.7), "premium": ModelProfile("openai/gpt-oss-120b:free", 0.5)}, "fast"),
    }
  ),
  default_provider=_GEMINI_PROVIDER,
  task_routing=MappingProxyType({"quiz": _OPENROUTER_PROVIDER, "flashcards": _OPENROUTER_PROVIDER, "summary": _OPENROUTER_PROVIDER}),
  complexity_routing=MappingProxyType({"high": f"{_GEMINI_PROVIDER}:premium"}),
  multimodal_provider=_GEMINI_PROVIDER,
)


def policy_from_dict(raw: Mapping[str, Any] | None, base: RoutingPolicy = DEFAULT_POLICY) -> RoutingPolicy:
  """Build a policy from a JSON-style mapping, keeping base values for missing sections."""
  if not raw:
    return base

  providers: dict[str, ProviderEntry] = dict(base.providers)
  for name, entry in (raw.get("providers") or {}).items():
    if not isinstance(entry, Mapping):
      raise ValueError(f"Provider entry for '{name}' must be an object.")
    profiles_raw = entry.get("profiles") or {}
    profiles = {str(profile): ModelProfile(model_id=str(spec["model"]), temperature=float(spec.get("temperature", FALLBACK_TEMPERATURE))) for profile, spec in profiles_raw.items()}
    if not profiles:
      raise ValueError(f"Provider '{name}' must declare at least one profile.")
    default_profile = str(entry.get("default_profile") or next(iter(profiles)))
    if default_profile not in profiles:
      raise ValueError(f"Provider '{name}' default profile '{default_profile}' is not declared.")
    providers[str(name)] = _provider(str(name), profiles, default_profile)

  return RoutingPolicy(
    providers=MappingProxyType(providers),
    default_provider=str(raw.get("default_provider") or base.default_provider),
    task_routing=MappingProxyType(dict(raw.get("task_routing") or base.task_routing)),
    complexity_routing=MappingProxyType(dict(raw.get("complexity_routing") or base.complexity_routing)),
    multimodal_provider=raw.get("multimodal_provider", base.multimodal_provider),
  )


def restrict_to_available(policy: RoutingPolicy, available: Iterable[str]) -> RoutingPolicy:
  """Drop providers that were never configured so their routes fall through to the next rule."""
  names = set(available)
  providers = {name: entry for name, entry in policy.providers.items() if name in names}
  if not providers:
    logger.error("No routed provider is configured (available: %s).", sorted(names))
    return policy
  default_provider = policy.default_provider
  if default_provider not in providers:
    default_provider = next(iter(providers))
    logger.warning("Default provider '%s' is not configured; defaulting to '%s'.", policy.default_provider, default_provider)
  return replace(policy, providers=MappingProxyType(providers), default_provider=default_provider)


def _decide(policy: RoutingPolicy, route: str | None, source: RouteSource) -> RoutingDecision | None:
  """Turn a ``provider[:profile]`` route into a decision, or None when unusable."""
  if not route:
    return None
  provider_name, _, profile_name = route.partition(":")
  entry = policy.providers.get(provider_name.strip())
  if entry is None:
    logger.warning("Skipping %s route '%s': unknown provider.", source, route)
    return None
  profile_key = profile_name.strip() or None
  profile = entry.profile(profile_key)
  if profile is None:
    # An unknown profile still names a usable provider; fall back to its default profile.
    logger.warning("Unknown profile in %s route '%s'; using '%s'.", source, route, entry.default_profile)
    profile_key = None
    profile = entry.profile(None)
    if profile is None:
      return None
  return RoutingDecision(provider=entry.name, model_id=profile.model_id, temperature=profile.temperature, source=source, profile=profile_key or entry.default_profile)


def resolve_route(policy: RoutingPolicy, overrides: RoutingOverrides, task_name: str, complexity: str | None = None, has_multimodal_input: bool = False) -> RoutingDecision:
  """Resolve a provider for a task: override, multimodal, task, complexity, then default."""
  candidates: list[tuple[str | None, RouteSource]] = [(overrides.task_routes.get(task_name), "override")]
  if has_multimodal_input:
    candidates.append((policy.multimodal_provider, "multimodal"))
  candidates.append((policy.task_routing.get(task_name), "task"))
  if complexity:
    candidates.append((policy.complexity_routing.get(complexity), "complexity"))
  candidates.append((policy.default_provider, "default"))

  for route, source in candidates:
    decision = _decide(policy, route, source)
    if decision is not None:
      return decision

  logger.error("Routing policy has no usable provider for task '%s'; using %s/%s.", task_name, FALLBACK_PROVIDER, FALLBACK_MODEL)
  return RoutingDecision(provider=FALLBACK_PROVIDER, model_id=FALLBACK_MODEL, temperature=FALLBACK_TEMPERATURE, source="fallback")


class ModelRouter:
  """Resolves routes against the latest override snapshot."""

  def __init__(self, policy: RoutingPolicy, overrides: CachedOverrideSource | None = None) -> None:
    self._policy = policy
    self._overrides = overrides

  @property
  def policy(self) -> RoutingPolicy:
    return self._policy

  async def resolve(self, task_name: str, complexity: str | None = None, has_multimodal_input: bool = False) -> RoutingDecision:
    """Resolve fresh on every call so configuration changes apply to the next chunk."""
    snapshot = await self._overrides.snapshot() if self._overrides is not None else RoutingOverrides()
    decision = resolve_route(self._policy, snapshot, task_name, complexity, has_multimodal_input)
    logger.info("Routing task=%s via %s -> %s/%s", task_name, decision.source, decision.provider, decision.model_id)
    return decision
