"""
gateway/errors.py

Error taxonomy for the stream pipeline.
None of these are fatal: each has a fixed degradation policy at the call site.
"""


class PipelineError(Exception):
    """Base class for all stream pipeline errors."""


class ValidationError(PipelineError):
    """Malformed reading or out-of-range calibration; rejected at ingress."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ProcessingError(PipelineError):
    """Numerically degenerate input; the cycle is skipped and prior state kept."""


class TransportError(PipelineError):
    """Connection loss or send failure; retried by the reconnect policy."""


class ResourceError(PipelineError):
    """Queue or buffer saturation; resolved by eviction."""
