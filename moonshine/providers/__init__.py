"""Provider layer: capability catalog, requirement inference, routing and execution."""

from moonshine.providers.capabilities import (
    ProviderCapabilities,
    ProviderConfig,
    default_catalog,
)
from moonshine.providers.client import AIClient, create_ai_client
from moonshine.providers.invoker import ProviderInvoker, SubprocessInvoker
from moonshine.providers.requirements import RequestRequirements, infer_requirements
from moonshine.providers.router import ProviderRouter, RoutingDecision

__all__ = [
    "AIClient",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderInvoker",
    "ProviderRouter",
    "RequestRequirements",
    "RoutingDecision",
    "SubprocessInvoker",
    "create_ai_client",
    "default_catalog",
    "infer_requirements",
]
