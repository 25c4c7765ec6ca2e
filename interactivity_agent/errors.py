"""Exception types raised while analyzing a trace."""

from __future__ import annotations


class InteractivityError(Exception):
    """Base class for errors raised by trace analysis."""


class InvalidCaptureError(InteractivityError):
    """The trace itself cannot support the metric; the capture must be redone."""


class ShortTraceError(InvalidCaptureError):
    def __init__(self, fmp_ms: float, trace_end_ms: float):
        self.fmp_ms = fmp_ms
        self.trace_end_ms = trace_end_ms
        super().__init__("trace not at least 5 seconds longer than FMP")


class TraceBusyError(InvalidCaptureError):
    def __init__(self, message: str = "trace was busy the entire time"):
        super().__init__(message)


class MissingTimestampError(InvalidCaptureError):
    def __init__(self, mark: str):
        self.mark = mark
        super().__init__(f"No {mark} mark found in trace")


class MainThreadNotFoundError(InteractivityError):
    """The trace model could not be indexed for the renderer main thread."""


class ArtifactComputationError(InteractivityError):
    def __init__(self, artifact: str, cause: BaseException):
        self.artifact = artifact
        self.cause = cause
        super().__init__(f"Computing {artifact} failed: {cause}")


class ArtifactCycleError(InteractivityError):
    def __init__(self, chain: tuple[str, ...]):
        self.chain = chain
        super().__init__(f"Artifact dependency cycle: {' -> '.join(chain)}")


class UnknownArtifactError(KeyError):
    """Requested an artifact name that was never registered."""
