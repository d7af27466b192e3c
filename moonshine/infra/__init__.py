"""Infrastructure layer: telemetry and runtime primitives."""
