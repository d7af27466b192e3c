"""
Moon Shine — AI Orchestration Core
====================================

Routes analysis and fix requests to AI providers under rate-limit and
batching constraints, and executes dependency-ordered workflows of
analysis steps.

Layers:
  - core:       shared types, configuration and error taxonomy
  - infra:      telemetry and runtime primitives (rate limiter, batcher)
  - providers:  capability catalog, requirement inference, routing, execution
  - workflow:   step model, graph validation, scheduling and execution
"""

__version__ = "0.3.0"
