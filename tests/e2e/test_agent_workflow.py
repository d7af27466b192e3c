"""
E2E test for the built-in agent workflow.
Tests complete flow: session dir -> metrics -> agent request -> AI fix -> cleanup
Provider CLIs are replaced by an in-process invoker.
"""
import json
from pathlib import Path

import pytest

from moonshine.core.config import MoonShineConfig
from moonshine.core.types import CodeFix, StepStatus
from moonshine.workflow import WorkflowEngine, create_agent_workflow


SOURCE = "var a = 1\nif (a == '1') console.log(a)\n"


@pytest.fixture
def workspace_config(tmp_path):
    return MoonShineConfig(session_base_path=str(tmp_path / "sessions"))


def _engine(config, source, client):
    return WorkflowEngine(create_agent_workflow(config), source, "src/app.ts", config, ai_client=client)


class TestAgentWorkflow:

    def test_plan(self, workspace_config):
        engine = _engine(workspace_config, SOURCE, None)
        assert engine.execution_plan() == [
            "session_setup",
            "source_metrics",
            "write_analysis_request",
            "ai_enhancement",
            "cleanup_session",
        ]

    @pytest.mark.asyncio
    async def test_full_pipeline(self, workspace_config, make_client):
        client, invoker = make_client(reply="const a = 1\nif (a === 1) console.log(a)\n")
        result = await _engine(workspace_config, SOURCE, client).execute()

        assert result.success is True
        assert result.stats.completed == 5
        assert result.final_context["line_count"] == 2
        assert result.final_context["enhanced_source"].startswith("const a = 1")
        assert result.final_context["ai_provider_used"] == "claude"

        (provider, request), = invoker.calls
        assert provider == "claude"
        assert isinstance(request.context, CodeFix)
        assert "src/app.ts, 2 lines" in request.prompt

        session_dir = Path(result.final_context["session_dir"])
        assert session_dir.parent == Path(workspace_config.session_base_path)
        payload = json.loads((session_dir / "analysis-request.json").read_text())
        assert payload["request_data"] == {"operation_mode": "fix"}
        assert payload["session_id"] == request.session_id

    @pytest.mark.asyncio
    async def test_empty_file_skips_ai(self, workspace_config, make_client):
        client, invoker = make_client()
        result = await _engine(workspace_config, "", client).execute()

        assert result.success is True
        assert result.result_for("ai_enhancement").status == StepStatus.SKIPPED
        assert result.result_for("cleanup_session").status == StepStatus.COMPLETED
        assert invoker.calls == []

    @pytest.mark.asyncio
    async def test_provider_outage_does_not_fail_workflow(self, workspace_config, make_client):
        client, invoker = make_client(failing={"claude", "google", "openai"})
        result = await _engine(workspace_config, SOURCE, client).execute()

        enhancement = result.result_for("ai_enhancement")
        assert result.success is True
        assert enhancement.status == StepStatus.FAILED
        assert enhancement.attempts == 2
        assert result.stats.total_retries == 1
        assert "enhanced_source" not in result.final_context
        # Three providers per attempt
        assert len(invoker.calls) == 6

    @pytest.mark.asyncio
    async def test_custom_prompt(self, tmp_path, make_client):
        config = MoonShineConfig(
            session_base_path=str(tmp_path),
            custom_prompts={"enhance_code": "Fix {language} file {file_path}"},
        )
        client, invoker = make_client()
        await _engine(config, SOURCE, client).execute()
        assert invoker.calls[0][1].prompt == "Fix typescript file src/app.ts"
