"""Workflow layer: step model, dependency validation, scheduling and execution."""

from moonshine.workflow.actions import FunctionRegistry, StepContext, default_registry
from moonshine.workflow.engine import WorkflowEngine
from moonshine.workflow.graph import execution_plan, validate_steps
from moonshine.workflow.models import (
    Always,
    CleanupSession,
    ContextValue,
    CreateSessionDir,
    CustomFunction,
    ExecuteAIProvider,
    OnFailure,
    OnSuccess,
    ReadAgentResponse,
    StepResult,
    WorkflowResult,
    WorkflowStats,
    WorkflowStep,
    WriteAgentRequest,
)
from moonshine.workflow.presets import create_agent_workflow

__all__ = [
    "Always",
    "CleanupSession",
    "ContextValue",
    "CreateSessionDir",
    "CustomFunction",
    "ExecuteAIProvider",
    "FunctionRegistry",
    "OnFailure",
    "OnSuccess",
    "ReadAgentResponse",
    "StepContext",
    "StepResult",
    "WorkflowEngine",
    "WorkflowResult",
    "WorkflowStats",
    "WorkflowStep",
    "WriteAgentRequest",
    "create_agent_workflow",
    "default_registry",
    "execution_plan",
    "validate_steps",
]
