"""Built-in workflow definitions."""

from __future__ import annotations

from moonshine.core.config import MoonShineConfig
from moonshine.core.exceptions import NO_RETRY, RetryConfig
from moonshine.core.types import ConditionOperator, ContextKind
from moonshine.workflow.models import (
    CleanupSession,
    ContextValue,
    CreateSessionDir,
    CustomFunction,
    ExecuteAIProvider,
    WorkflowStep,
    WriteAgentRequest,
)

ENHANCE_PROMPT = (
    "Review this {language} file ({file_path}, {line_count} lines) and return a "
    "corrected version that fixes bugs, type errors and lint issues without "
    "changing behavior.\n\n{source}"
)

def create_agent_workflow(config: MoonShineConfig | None = None) -> list[WorkflowStep]:
    """
    Session-based analysis pipeline:

        session_setup -> source_metrics -> write_analysis_request
                      -> ai_enhancement -> cleanup_session

    The AI step only runs when the file has content, and is allowed to fail
    without failing the workflow.
    """
    config = config or MoonShineConfig()
    prompt = config.custom_prompts.get("enhance_code", ENHANCE_PROMPT)
    return [
        WorkflowStep(
            id="session_setup",
            name="Session Directory Setup",
            description="Create the per-run directory for agent request and response files",
            action=CreateSessionDir(base_path=config.session_base_path),
            retry=NO_RETRY,
            timeout_s=5.0,
            critical=True,
        ),
        WorkflowStep(
            id="source_metrics",
            name="Source Metrics",
            description="Record basic size metrics of the source file",
            depends_on=("session_setup",),
            action=CustomFunction(function_name="count_lines"),
            retry=NO_RETRY,
            timeout_s=5.0,
            critical=True,
        ),
        WorkflowStep(
            id="write_analysis_request",
            name="Write Analysis Request",
            description="Persist the analysis request for external agents",
            depends_on=("source_metrics",),
            action=WriteAgentRequest(
                agent_type="analysis",
                request_data={"operation_mode": config.operation_mode},
            ),
            timeout_s=5.0,
            critical=False,
        ),
        WorkflowStep(
            id="ai_enhancement",
            name="AI Enhancement",
            description="Ask the routed provider for a corrected version of the file",
            depends_on=("write_analysis_request",),
            action=ExecuteAIProvider(
                prompt_template=prompt,
                context_kind=ContextKind.CODE_FIX,
                output_key="enhanced_source",
            ),
            condition=ContextValue(
                key="line_count", operator=ConditionOperator.GREATER_THAN, value=0
            ),
            retry=RetryConfig(max_attempts=2, initial_delay_s=1.0),
            timeout_s=120.0,
            critical=False,
        ),
        WorkflowStep(
            id="cleanup_session",
            name="Session Cleanup",
            description="Remove session directories past their retention",
            depends_on=("ai_enhancement",),
            action=CleanupSession(max_age_hours=config.session_max_age_hours),
            retry=NO_RETRY,
            timeout_s=10.0,
            critical=False,
        ),
    ]
