"""
Provider Router — Capability-Based Selection
==============================================

Chooses which AI backend serves a request:

  1. Filter: drop providers whose credentials are missing or whose context
     window is smaller than the request's estimated token count.
  2. Preferred order: if the caller named providers, the first surviving
     one in the caller's order wins.
  3. Rank: providers meeting the capability floor on every primary
     dimension outrank those that do not; within a tier, a weighted score
     (0.3 per needed dimension, 0.2 for speed) decides, and ties fall back
     to catalog order.

Selection is pure with respect to the rate limiter and performs no I/O
beyond reading the environment mapping it was given.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from moonshine.core.exceptions import NoProviderAvailable
from moonshine.core.types import AIRequest, context_kind
from moonshine.infra.telemetry import get_logger, get_metrics, get_tracer
from moonshine.providers.capabilities import ProviderConfig
from moonshine.providers.requirements import RequestRequirements, infer_requirements

logger = get_logger(__name__)
tracer = get_tracer(__name__)

DIMENSION_WEIGHT = 0.3
SPEED_WEIGHT = 0.2
DEFAULT_CAPABILITY_FLOOR = 0.8

@dataclass(frozen=True, slots=True)
class ScoredProvider:
    provider: ProviderConfig
    score: float
    meets_floor: bool
    catalog_index: int

@dataclass(frozen=True, slots=True)
class RoutingDecision:
    """Outcome of a selection, with the full fallback order."""

    provider: ProviderConfig
    reason: str
    requirements: RequestRequirements
    ranked: tuple[ProviderConfig, ...] = field(default=())
    via_preferred: bool = False

class ProviderRouter:
    """
    Selects providers from an immutable catalog.

    Usage:
        router = ProviderRouter(default_catalog(config))
        provider, reason = router.select_provider(request)
    """

    def __init__(
        self,
        catalog: Sequence[ProviderConfig],
        *,
        environ: Mapping[str, str] | None = None,
        capability_floor: float = DEFAULT_CAPABILITY_FLOOR,
    ) -> None:
        if not catalog:
            raise ValueError("provider catalog must not be empty")
        names = [p.name for p in catalog]
        if len(set(names)) != len(names):
            raise ValueError(f"provider names must be unique: {names}")
        if not 0.0 <= capability_floor <= 1.0:
            raise ValueError("capability_floor must be within [0.0, 1.0]")
        self._catalog = tuple(catalog)
        self._by_name = {p.name: p for p in self._catalog}
        self._environ = environ
        self._floor = capability_floor

    @property
    def catalog(self) -> tuple[ProviderConfig, ...]:
        return self._catalog

    @property
    def capability_floor(self) -> float:
        return self._floor

    def get(self, name: str) -> ProviderConfig | None:
        return self._by_name.get(name)

    # ── Public API ───────────────────────────────────────────────────

    def select_provider(self, request: AIRequest) -> tuple[ProviderConfig, str]:
        """Return the provider that should serve ``request`` and why."""
        decision = self.route(request)
        return decision.provider, decision.reason

    def rank_providers(self, request: AIRequest) -> list[ProviderConfig]:
        """All eligible providers in the order they should be tried."""
        return list(self.route(request).ranked)

    def route(self, request: AIRequest) -> RoutingDecision:
        kind = context_kind(request.context)
        with tracer.span("router.select", attributes={"context.kind": str(kind)}) as span:
            reqs = infer_requirements(request.context, request.prompt)
            eligible, excluded = self._filter(reqs)

            if not eligible:
                get_metrics().provider_unavailable.labels(context_kind=str(kind)).inc()
                reason = self._explain_unavailable(reqs, excluded)
                logger.warning(
                    "no_provider_available",
                    context_kind=str(kind),
                    estimated_tokens=reqs.estimated_tokens,
                    reason=reason,
                )
                raise NoProviderAvailable(reason, excluded)

            scored = sorted(
                (self._score(p, reqs) for p in eligible),
                key=lambda s: (not s.meets_floor, -s.score, s.catalog_index),
            )
            preferred = self._preferred(request.preferred_providers, eligible)

            ranked = list(preferred) + [s.provider for s in scored if s.provider not in preferred]
            if preferred:
                chosen = preferred[0]
                reason = self._explain_preferred(chosen, request.preferred_providers)
            else:
                chosen = scored[0].provider
                reason = self._explain_ranked(scored[0], reqs)

            span.set_attribute("provider", chosen.name)
            get_metrics().record_selection(
                provider=chosen.name, context_kind=str(kind), preferred=bool(preferred)
            )
            logger.debug(
                "provider_selected",
                provider=chosen.name,
                context_kind=str(kind),
                candidates=len(eligible),
                reason=reason,
            )
            return RoutingDecision(
                provider=chosen,
                reason=reason,
                requirements=reqs,
                ranked=tuple(ranked),
                via_preferred=bool(preferred),
            )

    # ── Internal ─────────────────────────────────────────────────────

    def _has_credentials(self, provider: ProviderConfig) -> bool:
        if not provider.requires_api_key:
            return True
        if not provider.api_key_env:
            return False
        environ = os.environ if self._environ is None else self._environ
        return bool(environ.get(provider.api_key_env))

    def _filter(
        self, reqs: RequestRequirements
    ) -> tuple[list[ProviderConfig], dict[str, str]]:
        eligible: list[ProviderConfig] = []
        excluded: dict[str, str] = {}
        for provider in self._catalog:
            if not self._has_credentials(provider):
                excluded[provider.name] = "credentials"
            elif provider.capabilities.context_length < reqs.estimated_tokens:
                excluded[provider.name] = "context_length"
            else:
                eligible.append(provider)
        return eligible, excluded

    def _score(self, provider: ProviderConfig, reqs: RequestRequirements) -> ScoredProvider:
        caps = provider.capabilities
        score = sum(DIMENSION_WEIGHT * caps.rating(d) for d in reqs.active_dimensions())
        if reqs.needs_speed:
            score += SPEED_WEIGHT * caps.speed
        meets_floor = all(caps.rating(d) >= self._floor for d in reqs.floor_dimensions)
        return ScoredProvider(
            provider=provider,
            score=round(score, 6),
            meets_floor=meets_floor,
            catalog_index=self._catalog.index(provider),
        )

    def _preferred(
        self, names: Sequence[str], eligible: list[ProviderConfig]
    ) -> list[ProviderConfig]:
        chosen: list[ProviderConfig] = []
        for name in names:
            provider = self._by_name.get(name)
            if provider is None:
                logger.warning("unknown_preferred_provider", provider=name)
                continue
            if provider in eligible and provider not in chosen:
                chosen.append(provider)
        return chosen

    def _explain_preferred(self, provider: ProviderConfig, names: Sequence[str]) -> str:
        parts = [
            f"provider={provider.name}",
            "selected by preferred order",
            f"preferred={','.join(names)}",
        ]
        return "; ".join(parts)

    def _explain_ranked(self, best: ScoredProvider, reqs: RequestRequirements) -> str:
        parts = [f"provider={best.provider.name}", f"score={best.score:.3f}"]
        if reqs.floor_dimensions:
            parts.append(
                f"floor={'met' if best.meets_floor else 'unmet'}({','.join(reqs.floor_dimensions)})"
            )
        if reqs.needs_speed:
            parts.append("speed weighted")
        parts.append(f"estimated_tokens={reqs.estimated_tokens}")
        return "; ".join(parts)

    def _explain_unavailable(self, reqs: RequestRequirements, excluded: dict[str, str]) -> str:
        missing_creds = [n for n, why in excluded.items() if why == "credentials"]
        too_small = [n for n, why in excluded.items() if why == "context_length"]
        parts = []
        if missing_creds:
            parts.append(f"missing credentials for {', '.join(missing_creds)}")
        if too_small:
            parts.append(
                f"context length below {reqs.estimated_tokens} estimated tokens "
                f"for {', '.join(too_small)}"
            )
        return "; ".join(parts)
