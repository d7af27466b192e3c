"""
Provider Invocation
====================

Runs a provider's command-line tool for one request. The argv is rendered
from the provider's data-driven template, the API key (when configured)
is passed through the environment, and the call is bounded by a timeout.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from moonshine.core.exceptions import ProviderInvocationError
from moonshine.core.types import AIRequest
from moonshine.infra.telemetry import get_logger
from moonshine.providers.capabilities import FILE_ARGS, ProviderConfig

logger = get_logger(__name__)

class ProviderInvoker(Protocol):
    async def invoke(self, provider: ProviderConfig, request: AIRequest) -> str:
        """Return the provider's raw output or raise ProviderInvocationError."""
        ...

def render_argv(provider: ProviderConfig, request: AIRequest) -> list[str]:
    """Expand ``provider.args`` for ``request``."""
    file_dir = str(Path(request.file_path).parent) if request.file_path else ""
    values = {
        "model": provider.model,
        "prompt": request.prompt,
        "session_id": request.session_id,
        "file_path": request.file_path or "",
        "file_dir": file_dir,
    }
    argv = [provider.command]
    for token in provider.args:
        if token == FILE_ARGS:
            if request.file_path:
                argv.extend(t.format_map(values) for t in provider.file_args)
            continue
        argv.append(token.format_map(values))
    return argv

class SubprocessInvoker:
    """Invokes provider CLIs as child processes."""

    def __init__(self, *, timeout_s: float, environ: Mapping[str, str] | None = None) -> None:
        self._timeout = timeout_s
        self._environ = environ

    def _env(self, provider: ProviderConfig) -> dict[str, str]:
        base = dict(os.environ if self._environ is None else self._environ)
        if provider.api_key_env:
            key = base.get(provider.api_key_env)
            if not key and provider.requires_api_key:
                raise ProviderInvocationError(
                    provider.name,
                    f"required API key environment variable '{provider.api_key_env}' not set",
                )
        return base

    async def invoke(self, provider: ProviderConfig, request: AIRequest) -> str:
        argv = render_argv(provider, request)
        env = self._env(provider)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise ProviderInvocationError(provider.name, f"cannot start '{argv[0]}': {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError as exc:
            proc.kill()
            with contextlib.suppress(ProcessLookupError):
                await proc.wait()
            raise ProviderInvocationError(
                provider.name, f"timed out after {self._timeout}s"
            ) from exc

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:500]
            logger.warning(
                "provider_nonzero_exit",
                provider=provider.name,
                exit_code=proc.returncode,
                stderr=detail,
            )
            raise ProviderInvocationError(
                provider.name, detail or "non-zero exit", exit_code=proc.returncode
            )
        return stdout.decode("utf-8", errors="replace")
