"""Main-thread task extraction."""

from __future__ import annotations

from typing import Iterable, Protocol

from interactivity_agent.models import Task

LONG_TASK_THRESHOLD_MS = 50


class TraceModel(Protocol):
    def get_main_thread_slices(self) -> list[dict]:
        ...


def extract_main_thread_tasks(
    model: TraceModel,
    navigation_start: float,
    start_time: float = 0
) -> list[Task]:
    """
    Return top-level main-thread tasks ending after start_time, sorted by start.

    Slice rows carry absolute ts_ms/dur_ms; tasks are rebased so that times
    are milliseconds since navigation_start. Errors from the model (for
    example MainThreadNotFoundError) propagate untouched.
    """
    tasks = []
    for row in model.get_main_thread_slices():
        if row.get("depth", 0) != 0:
            continue
        ts_ms = row.get("ts_ms")
        dur_ms = row.get("dur_ms")
        if ts_ms is None or dur_ms is None:
            continue
        start = float(ts_ms) - navigation_start
        end = start + float(dur_ms)
        if end <= start_time:
            continue
        tasks.append(Task(start=start, end=end))

    tasks.sort(key=lambda task: task.start)
    return tasks


def get_long_tasks(
    tasks: Iterable[Task],
    fmp: float,
    threshold_ms: float = LONG_TASK_THRESHOLD_MS
) -> list[Task]:
    """Keep tasks of at least threshold_ms that end after first meaningful paint."""
    return [task for task in tasks if task.duration >= threshold_ms and task.end > fmp]
