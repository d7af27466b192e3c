"""Unit tests for AI request execution, fallback and CLI invocation."""

import sys

import pytest

from moonshine.core.config import AiLinterConfig, MoonShineConfig
from moonshine.core.exceptions import (
    AllProvidersFailed,
    NoProviderAvailable,
    ProviderInvocationError,
    RateLimitExceeded,
)
from moonshine.core.types import AIRequest, CodeAnalysis, CodeFix, General
from moonshine.providers.capabilities import (
    ProviderCapabilities,
    ProviderConfig,
    claude_provider,
    openai_provider,
)
from moonshine.providers.client import create_ai_client
from moonshine.providers.invoker import SubprocessInvoker, render_argv


def _fix_request(**kwargs):
    return AIRequest(
        prompt="fix it",
        session_id="sess-42",
        context=CodeFix(language="typescript", content="var a = 1"),
        **kwargs,
    )


class TestAIClient:

    @pytest.mark.asyncio
    async def test_execute_uses_routed_provider(self, make_client):
        client, invoker = make_client(reply="patched")
        response = await client.execute(_fix_request())

        assert response.provider_used == "claude"
        assert response.content == "patched"
        assert response.session_id == "sess-42"
        assert response.attempted_providers == ("claude",)
        assert [name for name, _ in invoker.calls] == ["claude"]

    @pytest.mark.asyncio
    async def test_falls_back_to_next_ranked_provider(self, make_client):
        client, invoker = make_client(failing={"claude"})
        response = await client.execute(_fix_request())

        assert response.provider_used == "openai"
        assert response.attempted_providers == ("claude", "openai")
        assert "fallback to openai" in response.routing_reason

    @pytest.mark.asyncio
    async def test_all_providers_failed(self, make_client):
        client, _ = make_client(failing={"claude", "google", "openai"})
        with pytest.raises(AllProvidersFailed) as info:
            await client.execute(_fix_request())
        assert [e.provider for e in info.value.errors] == ["claude", "openai", "google"]

    @pytest.mark.asyncio
    async def test_execute_is_rate_limited(self, make_client):
        client, invoker = make_client(limit=1)
        await client.execute(_fix_request())
        with pytest.raises(RateLimitExceeded):
            await client.execute(_fix_request())
        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_unroutable_request_keeps_capacity(self, make_client):
        client, invoker = make_client(limit=1)
        oversized = AIRequest(
            prompt="fix it",
            session_id="sess-42",
            context=CodeFix(language="typescript", content="x" * 4_000_000),
        )
        with pytest.raises(NoProviderAvailable):
            await client.execute(oversized)

        assert client.rate_limiter.remaining == 1
        assert invoker.calls == []
        await client.execute(_fix_request())

    @pytest.mark.asyncio
    async def test_dispatch_skips_admission(self, make_client):
        client, _ = make_client(limit=1)
        await client.dispatch(_fix_request())
        await client.dispatch(_fix_request())
        assert client.rate_limiter.remaining == 1

    @pytest.mark.asyncio
    async def test_preferred_provider_reaches_invoker(self, make_client):
        client, invoker = make_client()
        response = await client.execute(_fix_request(preferred_providers=("google",)))
        assert response.provider_used == "google"
        assert "selected by preferred order" in response.routing_reason

    @pytest.mark.asyncio
    async def test_invocation_timeout_falls_back(self, make_client):
        import asyncio

        ai_config = AiLinterConfig(max_processing_time=1, retry_attempts=0)
        client, invoker = make_client(ai_config=ai_config)

        async def slow_claude(provider, request):
            invoker.calls.append((provider.name, request))
            if provider.name == "claude":
                await asyncio.sleep(5)
            return "late"

        invoker.invoke = slow_claude
        response = await client.execute(_fix_request())
        assert response.provider_used == "openai"


class TestCreateClient:

    def test_wires_limits_from_config(self):
        client = create_ai_client(
            AiLinterConfig(rate_limit_per_minute=7, quality_threshold=0.9),
            MoonShineConfig(),
            environ={},
        )
        assert client.rate_limiter.limit == 7
        assert client.router.capability_floor == 0.9
        assert [p.name for p in client.router.catalog] == ["claude", "google", "openai"]
        assert isinstance(client._invoker, SubprocessInvoker)

    def test_shared_limiter_is_reused(self):
        from moonshine.infra.runtime.rate_limiter import RateLimiter

        limiter = RateLimiter(3)
        client = create_ai_client(rate_limiter=limiter, environ={})
        assert client.rate_limiter is limiter


class TestRenderArgv:

    def test_claude_with_file(self):
        provider = claude_provider(MoonShineConfig())
        argv = render_argv(provider, _fix_request(file_path="src/app.ts"))
        assert argv[0] == "claude"
        assert argv[argv.index("--session-id") + 1] == "sess-42"
        assert argv[argv.index("--model") + 1] == "sonnet"
        assert argv[argv.index("--file") + 1] == "src/app.ts"
        assert argv[-2:] == ["--prompt", "fix it"]

    def test_claude_without_file_drops_file_args(self):
        argv = render_argv(claude_provider(MoonShineConfig()), _fix_request())
        assert "--file" not in argv
        assert "code" not in argv

    def test_codex_uses_file_directory(self):
        provider = openai_provider(MoonShineConfig(codex_reasoning_effort="high"))
        argv = render_argv(provider, _fix_request(file_path="pkg/src/app.ts"))
        assert argv[:2] == ["codex", "exec"]
        assert 'model_reasoning_effort="high"' in argv
        assert argv[argv.index("--cd") + 1] == "pkg/src"
        assert argv[-1] == "fix it"

    def test_prompt_with_braces_is_not_reformatted(self):
        request = AIRequest(prompt="return {a: 1}", session_id="s", context=General())
        argv = render_argv(claude_provider(MoonShineConfig()), request)
        assert argv[-1] == "return {a: 1}"


def _python_provider(*args, **kwargs):
    return ProviderConfig(
        name="py",
        command=kwargs.pop("command", sys.executable),
        model="local",
        capabilities=ProviderCapabilities(
            code_analysis=0.5,
            code_generation=0.5,
            complex_reasoning=0.5,
            speed=0.5,
            context_length=1000,
        ),
        args=args,
        **kwargs,
    )


def _analysis_request(prompt="hello"):
    return AIRequest(
        prompt=prompt,
        session_id="s",
        context=CodeAnalysis(language="ts", content="x"),
    )


class TestSubprocessInvoker:

    @pytest.mark.asyncio
    async def test_returns_stdout(self):
        provider = _python_provider("-c", "import sys; print(sys.argv[1])", "{prompt}")
        output = await SubprocessInvoker(timeout_s=10).invoke(provider, _analysis_request())
        assert output.strip() == "hello"

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        provider = _python_provider("-c", "import sys; sys.stderr.write('bad'); sys.exit(3)")
        with pytest.raises(ProviderInvocationError, match="bad") as info:
            await SubprocessInvoker(timeout_s=10).invoke(provider, _analysis_request())
        assert info.value.exit_code == 3

    @pytest.mark.asyncio
    async def test_missing_command(self):
        provider = _python_provider(command="/nonexistent/moonshine-provider-cli")
        with pytest.raises(ProviderInvocationError, match="cannot start"):
            await SubprocessInvoker(timeout_s=10).invoke(provider, _analysis_request())

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        provider = _python_provider("-c", "import time; time.sleep(5)")
        with pytest.raises(ProviderInvocationError, match="timed out"):
            await SubprocessInvoker(timeout_s=0.2).invoke(provider, _analysis_request())

    @pytest.mark.asyncio
    async def test_required_key_missing(self):
        provider = _python_provider(
            "-c", "print('x')", api_key_env="MOONSHINE_TEST_KEY", requires_api_key=True
        )
        with pytest.raises(ProviderInvocationError, match="MOONSHINE_TEST_KEY"):
            await SubprocessInvoker(timeout_s=10, environ={}).invoke(provider, _analysis_request())

    @pytest.mark.asyncio
    async def test_key_passed_through_environment(self):
        provider = _python_provider(
            "-c",
            "import os; print(os.environ['MOONSHINE_TEST_KEY'])",
            api_key_env="MOONSHINE_TEST_KEY",
            requires_api_key=True,
        )
        invoker = SubprocessInvoker(timeout_s=10, environ={"MOONSHINE_TEST_KEY": "secret"})
        output = await invoker.invoke(provider, _analysis_request())
        assert output.strip() == "secret"
