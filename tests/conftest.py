"""Shared fixtures: fake provider invoker, deterministic clock, client factory."""

import pytest

from moonshine.core.config import AiLinterConfig, MoonShineConfig
from moonshine.core.exceptions import ProviderInvocationError
from moonshine.infra.runtime.rate_limiter import RateLimiter
from moonshine.providers.client import AIClient
from moonshine.providers.capabilities import default_catalog
from moonshine.providers.router import ProviderRouter


class FakeInvoker:
    """Records invocations; providers named in ``failing`` raise."""

    def __init__(self, failing=(), reply="ok"):
        self.failing = set(failing)
        self.reply = reply
        self.calls = []

    async def invoke(self, provider, request):
        self.calls.append((provider.name, request))
        if provider.name in self.failing:
            raise ProviderInvocationError(provider.name, "simulated failure", exit_code=1)
        if callable(self.reply):
            return self.reply(provider, request)
        return self.reply


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_ai_config():
    return AiLinterConfig(
        batch_size=3,
        max_concurrent_requests=2,
        rate_limit_per_minute=100,
        retry_attempts=0,
        retry_delay_ms=0,
        max_processing_time=5,
    )


@pytest.fixture
def oauth_config():
    """Workspace config where every provider authenticates via OAuth."""
    return MoonShineConfig(
        claude_uses_oauth=True,
        gemini_uses_oauth=True,
        codex_uses_oauth=True,
    )


@pytest.fixture
def make_client(fast_ai_config, oauth_config):
    def factory(*, failing=(), reply="ok", limit=None, ai_config=None):
        cfg = ai_config or fast_ai_config
        invoker = FakeInvoker(failing=failing, reply=reply)
        router = ProviderRouter(default_catalog(oauth_config), environ={})
        limiter = RateLimiter(limit or cfg.rate_limit_per_minute)
        return AIClient(router, limiter, cfg, invoker), invoker

    return factory
