"""Runtime primitives: admission control and batching."""

from moonshine.infra.runtime.batcher import BatchProcessor, batch_process, chunk
from moonshine.infra.runtime.rate_limiter import RateLimiter, admit_with_retry

__all__ = [
    "BatchProcessor",
    "RateLimiter",
    "admit_with_retry",
    "batch_process",
    "chunk",
]
