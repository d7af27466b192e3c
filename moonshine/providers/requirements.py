"""
Requirement Inference
======================

Maps a request's context variant to the capabilities a provider needs.
Pure: no I/O, no caching; computed fresh for every request.

    CodeFix         analysis + generation + reasoning   floor: analysis, generation
    CodeGeneration  generation                          floor: generation
    AiLinting       analysis + reasoning                floor: analysis
    CodeAnalysis    analysis                            floor: analysis
    General         speed                               no floor
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from moonshine.core.exceptions import UnhandledVariantError
from moonshine.core.types import (
    AIContext,
    AiLinting,
    CodeAnalysis,
    CodeFix,
    CodeGeneration,
    General,
)

CHARS_PER_TOKEN = 4

@dataclass(frozen=True, slots=True)
class RequestRequirements:
    needs_code_analysis: bool = False
    needs_code_generation: bool = False
    needs_complex_reasoning: bool = False
    needs_speed: bool = False
    estimated_tokens: int = 0
    # Dimensions that must meet the capability floor for top-tier ranking
    floor_dimensions: tuple[str, ...] = ()

    def active_dimensions(self) -> tuple[str, ...]:
        dims = []
        if self.needs_code_analysis:
            dims.append("code_analysis")
        if self.needs_code_generation:
            dims.append("code_generation")
        if self.needs_complex_reasoning:
            dims.append("complex_reasoning")
        return tuple(dims)

def estimate_tokens(*texts: str) -> int:
    return math.ceil(sum(len(t) for t in texts) / CHARS_PER_TOKEN)

def infer_requirements(context: AIContext, prompt: str = "") -> RequestRequirements:
    """Derive provider requirements from a context variant and its prompt."""
    if isinstance(context, CodeFix):
        return RequestRequirements(
            needs_code_analysis=True,
            needs_code_generation=True,
            needs_complex_reasoning=True,
            estimated_tokens=estimate_tokens(prompt, context.payload_text()),
            floor_dimensions=("code_analysis", "code_generation"),
        )
    if isinstance(context, CodeGeneration):
        return RequestRequirements(
            needs_code_generation=True,
            estimated_tokens=estimate_tokens(prompt, context.payload_text()),
            floor_dimensions=("code_generation",),
        )
    if isinstance(context, AiLinting):
        return RequestRequirements(
            needs_code_analysis=True,
            needs_complex_reasoning=True,
            estimated_tokens=estimate_tokens(prompt, context.payload_text()),
            floor_dimensions=("code_analysis",),
        )
    if isinstance(context, CodeAnalysis):
        return RequestRequirements(
            needs_code_analysis=True,
            estimated_tokens=estimate_tokens(prompt, context.payload_text()),
            floor_dimensions=("code_analysis",),
        )
    if isinstance(context, General):
        return RequestRequirements(needs_speed=True, estimated_tokens=estimate_tokens(prompt))
    raise UnhandledVariantError("AIContext", type(context).__name__)
