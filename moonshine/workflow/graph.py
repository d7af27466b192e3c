"""
Dependency Graph — Validation and Scheduling
==============================================

Validates a set of workflow steps and derives a deterministic execution
order.

Validation (run once, at engine construction):
  - step ids are unique
  - every dependency names a declared step
  - the dependency relation is acyclic (the cycle is reported in order)
  - OnSuccess / OnFailure conditions reference a declared dependency
  - actions and conditions are known variants

Scheduling uses Kahn's algorithm; among ready steps the one declared
first is released first, so the plan is stable across calls.
"""

from __future__ import annotations

import heapq
from collections.abc import Sequence

from moonshine.core.exceptions import (
    CyclicDependency,
    DuplicateStepError,
    InvalidConditionError,
    UnhandledVariantError,
    UnknownDependency,
)
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
    WorkflowStep,
    WriteAgentRequest,
)

_ACTIONS = (
    CustomFunction,
    ExecuteAIProvider,
    CreateSessionDir,
    WriteAgentRequest,
    ReadAgentResponse,
    CleanupSession,
)
_CONDITIONS = (Always, OnSuccess, OnFailure, ContextValue)

def validate_steps(steps: Sequence[WorkflowStep]) -> None:
    """Raise a WorkflowValidationError subclass if ``steps`` is not a valid workflow."""
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise DuplicateStepError(step.id)
        seen.add(step.id)

    for step in steps:
        for dep in step.depends_on:
            if dep not in seen:
                raise UnknownDependency(step.id, dep)
        if step.id in step.depends_on:
            raise CyclicDependency([step.id, step.id])
        _check_variants(step)

    cycle = find_cycle(steps)
    if cycle:
        raise CyclicDependency(cycle)

def _check_variants(step: WorkflowStep) -> None:
    if not isinstance(step.action, _ACTIONS):
        raise UnhandledVariantError("StepAction", type(step.action).__name__)
    cond = step.condition
    if not isinstance(cond, _CONDITIONS):
        raise UnhandledVariantError("StepCondition", type(cond).__name__)
    if isinstance(cond, (OnSuccess, OnFailure)) and cond.step_id not in step.depends_on:
        raise InvalidConditionError(
            step.id,
            f"condition references '{cond.step_id}', which is not a dependency",
        )

def find_cycle(steps: Sequence[WorkflowStep]) -> list[str]:
    """
    Return one dependency cycle as ``[a, b, ..., a]``, or ``[]`` if acyclic.

    Iterative DFS over the depends_on edges; dependencies must already be
    known to exist.
    """
    deps = {s.id: s.depends_on for s in steps}
    white, grey, black = 0, 1, 2
    color = dict.fromkeys(deps, white)

    for root in deps:
        if color[root] != white:
            continue
        path: list[str] = [root]
        iters = [iter(deps[root])]
        color[root] = grey
        while iters:
            nxt = next(iters[-1], None)
            if nxt is None:
                color[path.pop()] = black
                iters.pop()
                continue
            if color[nxt] == grey:
                start = path.index(nxt)
                return path[start:] + [nxt]
            if color[nxt] == white:
                color[nxt] = grey
                path.append(nxt)
                iters.append(iter(deps[nxt]))
    return []

def execution_plan(steps: Sequence[WorkflowStep]) -> list[str]:
    """Dependency-respecting order of step ids, ties broken by declaration order."""
    index = {s.id: i for i, s in enumerate(steps)}
    in_degree = {s.id: len(set(s.depends_on)) for s in steps}
    dependents: dict[str, list[str]] = {s.id: [] for s in steps}
    for s in steps:
        for dep in set(s.depends_on):
            dependents[dep].append(s.id)

    ready = [(index[sid], sid) for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    plan: list[str] = []
    while ready:
        _, sid = heapq.heappop(ready)
        plan.append(sid)
        for child in dependents[sid]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(ready, (index[child], child))

    if len(plan) != len(steps):
        raise CyclicDependency(find_cycle(steps) or sorted(set(index) - set(plan)))
    return plan
