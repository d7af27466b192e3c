"""
AI Client — Admission, Routing and Fallback
=============================================

Executes AI requests end to end:

  execute(request)   route, admit through the shared rate limiter, then dispatch
  dispatch(request)  try ranked providers in order, falling back on
                     ProviderInvocationError; raise AllProvidersFailed when
                     every provider fails

``dispatch`` skips admission so callers that already admitted (the batch
processor admits once per batch) are not double counted.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping

from moonshine.core.config import AiLinterConfig, MoonShineConfig
from moonshine.core.exceptions import AllProvidersFailed, ProviderInvocationError
from moonshine.core.types import AIRequest, AIResponse
from moonshine.infra.runtime.rate_limiter import RateLimiter, admit_with_retry
from moonshine.infra.telemetry import get_logger, get_metrics, get_tracer, log_context
from moonshine.providers.capabilities import default_catalog
from moonshine.providers.invoker import ProviderInvoker, SubprocessInvoker
from moonshine.providers.router import ProviderRouter, RoutingDecision

logger = get_logger(__name__)
tracer = get_tracer(__name__)

class AIClient:
    def __init__(
        self,
        router: ProviderRouter,
        rate_limiter: RateLimiter,
        config: AiLinterConfig,
        invoker: ProviderInvoker,
    ) -> None:
        self.router = router
        self.rate_limiter = rate_limiter
        self.config = config
        self._invoker = invoker

    async def execute(self, request: AIRequest) -> AIResponse:
        # Route before admission; unroutable requests never spend capacity
        decision = self.router.route(request)
        await admit_with_retry(
            self.rate_limiter,
            attempts=self.config.retry_attempts,
            delay_s=self.config.retry_delay_s,
        )
        return await self.dispatch(request, decision)

    async def dispatch(
        self, request: AIRequest, decision: RoutingDecision | None = None
    ) -> AIResponse:
        if decision is None:
            decision = self.router.route(request)
        errors: list[ProviderInvocationError] = []
        attempted: list[str] = []
        t0 = time.perf_counter()

        with log_context(session_id=request.session_id):
            for provider in decision.ranked:
                attempted.append(provider.name)
                started = time.perf_counter()
                with tracer.span(
                    "provider.invoke",
                    attributes={"provider": provider.name, "model": provider.model},
                    kind="client",
                ):
                    try:
                        output = await asyncio.wait_for(
                            self._invoker.invoke(provider, request),
                            timeout=self.config.max_processing_time,
                        )
                    except TimeoutError:
                        err = ProviderInvocationError(
                            provider.name,
                            f"timed out after {self.config.max_processing_time}s",
                        )
                    except ProviderInvocationError as exc:
                        err = exc
                    else:
                        get_metrics().record_invocation(
                            provider=provider.name,
                            success=True,
                            latency_s=time.perf_counter() - started,
                        )
                        reason = decision.reason
                        if provider != decision.provider:
                            reason = f"{reason}; fallback to {provider.name}"
                        return AIResponse(
                            provider_used=provider.name,
                            content=output,
                            session_id=request.session_id,
                            execution_time_ms=round((time.perf_counter() - t0) * 1000, 2),
                            routing_reason=reason,
                            attempted_providers=tuple(attempted),
                        )

                get_metrics().record_invocation(
                    provider=provider.name,
                    success=False,
                    latency_s=time.perf_counter() - started,
                )
                logger.warning("provider_failed_fallback", provider=provider.name, error=str(err))
                errors.append(err)

        logger.error("all_providers_failed", attempted=",".join(attempted))
        raise AllProvidersFailed(errors)

def create_ai_client(
    ai_config: AiLinterConfig | None = None,
    moonshine_config: MoonShineConfig | None = None,
    *,
    rate_limiter: RateLimiter | None = None,
    invoker: ProviderInvoker | None = None,
    environ: Mapping[str, str] | None = None,
) -> AIClient:
    """
    Build a client from configuration. Construct once per process and share it.

    ``ai_config.quality_threshold`` is the router's capability floor: providers
    rated at or above it on every floor dimension rank first. The default 0.8
    guarantees a CodeFix request goes to a provider with analysis and
    generation of at least 0.8 whenever one is eligible; lowering the
    threshold relaxes that guarantee.
    """
    ai_config = ai_config or AiLinterConfig()
    router = ProviderRouter(
        default_catalog(moonshine_config),
        environ=environ,
        capability_floor=ai_config.quality_threshold,
    )
    return AIClient(
        router=router,
        rate_limiter=rate_limiter or RateLimiter(ai_config.rate_limit_per_minute),
        config=ai_config,
        invoker=invoker or SubprocessInvoker(
            timeout_s=ai_config.max_processing_time, environ=environ
        ),
    )
