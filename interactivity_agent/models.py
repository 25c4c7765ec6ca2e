"""Value types shared by task extraction and the First Interactive analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Task:
    """A top-level main-thread task, in ms since navigation start."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class TaskCluster:
    tasks: tuple[Task, ...] = field(default_factory=tuple)

    @property
    def start(self) -> float:
        return self.tasks[0].start

    @property
    def end(self) -> float:
        return self.tasks[-1].end

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class TraceTimestamps:
    """
    Key page-load marks of a trace.

    navigation_start is the absolute monotonic time in milliseconds; every
    other field is milliseconds since navigation start.
    """

    navigation_start: float
    first_meaningful_paint: float
    dom_content_loaded: Optional[float]
    trace_end: float
    fmp_fell_back: bool = False

    def to_dict(self) -> dict:
        return {
            "navigationStart": self.navigation_start,
            "firstMeaningfulPaint": self.first_meaningful_paint,
            "domContentLoaded": self.dom_content_loaded,
            "traceEnd": self.trace_end,
            "fmpFellBack": self.fmp_fell_back
        }


@dataclass(frozen=True)
class QuietWindowResult:
    time_in_ms: float
    timestamp: float

    def to_dict(self) -> dict:
        return {"timeInMs": self.time_in_ms, "timestamp": self.timestamp}
