"""
First Interactive: the first moment after FMP the main thread is durably quiet.

First Interactive is the start of the first window after first meaningful
paint that holds no long tasks other than members of insignificant task
clusters. The required window shrinks with distance from FMP:

    t = seconds since FMP
    N(t) = 4 * e^(-0.045 * t) + 1      (5s at FMP, ~3s at 15s, 1s at infinity)

An insignificant cluster is one or more long tasks that does not start in
the first 5s after FMP and does not span more than 250ms from the start of
its first task to the end of its last, with at least 1s of padding from any
other long task. The reported value is never earlier than DOMContentLoaded.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from interactivity_agent.errors import ShortTraceError, TraceBusyError
from interactivity_agent.models import QuietWindowResult, Task, TaskCluster, TraceTimestamps
from interactivity_agent.tasks import LONG_TASK_THRESHOLD_MS, get_long_tasks

logger = logging.getLogger(__name__)

MAX_TASK_CLUSTER_DURATION = 250
MIN_TASK_CLUSTER_PADDING = 1000
MIN_TASK_CLUSTER_FMP_DISTANCE = 5000

MAX_QUIET_WINDOW_SIZE = 5000


def get_required_window_size_ms(t: float) -> float:
    """Required quiet window size for a window starting t ms after FMP."""
    t_in_seconds = t / 1000
    return (4 * math.exp(-0.045 * t_in_seconds) + 1) * 1000


def get_task_clusters_in_window(
    tasks: Sequence[Task],
    start_index: int,
    window_end: float
) -> list[TaskCluster]:
    """
    Group tasks from start_index into clusters that start before window_end.

    Tasks starting up to MIN_TASK_CLUSTER_PADDING past the window are still
    walked so a cluster straddling the window boundary stays whole.
    """
    groups: list[list[Task]] = []
    current: list[Task] | None = None
    last_end_time = -math.inf

    consideration_window_end = window_end + MIN_TASK_CLUSTER_PADDING
    for task in tasks[start_index:]:
        if task.start >= consideration_window_end:
            break

        if task.start - last_end_time > MIN_TASK_CLUSTER_PADDING:
            if current:
                groups.append(current)
            current = []

        current.append(task)
        last_end_time = task.end

    if current:
        groups.append(current)

    clusters = [TaskCluster(tasks=tuple(group)) for group in groups]
    return [cluster for cluster in clusters if cluster.start < window_end]


def is_bad_cluster(cluster: TaskCluster, fmp: float) -> bool:
    too_close_to_fmp = cluster.start < fmp + MIN_TASK_CLUSTER_FMP_DISTANCE
    too_long = cluster.duration > MAX_TASK_CLUSTER_DURATION
    return too_close_to_fmp or too_long


def find_quiet_window(fmp: float, trace_end: float, long_tasks: Sequence[Task]) -> float:
    """
    Return the start of the first quiet window after FMP.

    Candidates start at FMP or at the end of a long task, never mid-task.

    Raises:
        TraceBusyError: the trace ends before any candidate is proven quiet
    """
    if not long_tasks or long_tasks[0].start > fmp + MAX_QUIET_WINDOW_SIZE:
        return fmp

    for index, task in enumerate(long_tasks):
        window_start = task.end
        window_size = get_required_window_size_ms(window_start - fmp)
        window_end = window_start + window_size

        if window_end > trace_end:
            raise TraceBusyError()

        clusters = get_task_clusters_in_window(long_tasks, index + 1, window_end)
        if not any(is_bad_cluster(cluster, fmp) for cluster in clusters):
            return window_start

    raise TraceBusyError()


def compute_first_interactive(
    timestamps: TraceTimestamps,
    tasks: Sequence[Task],
    long_task_ms: float = LONG_TASK_THRESHOLD_MS
) -> QuietWindowResult:
    """
    Compute First Interactive from page-load marks and main-thread tasks.

    Args:
        timestamps: Marks of the trace, in ms since navigation start
        tasks: Main-thread top-level tasks sorted by start
        long_task_ms: Minimum duration of a long task

    Raises:
        ShortTraceError: the trace ends less than 5s after FMP
        TraceBusyError: no quiet window was found before the trace ends
    """
    fmp = timestamps.first_meaningful_paint
    trace_end = timestamps.trace_end
    if trace_end - fmp < MAX_QUIET_WINDOW_SIZE:
        raise ShortTraceError(fmp, trace_end)

    long_tasks = get_long_tasks(tasks, fmp, long_task_ms)
    candidate = find_quiet_window(fmp, trace_end, long_tasks)

    value_in_ms = candidate
    if timestamps.dom_content_loaded is not None:
        value_in_ms = max(candidate, timestamps.dom_content_loaded)

    logger.info(
        "First Interactive at %.1fms (quiet window %.1fms, %d long tasks)",
        value_in_ms,
        candidate,
        len(long_tasks)
    )
    return QuietWindowResult(
        time_in_ms=value_in_ms,
        timestamp=(value_in_ms + timestamps.navigation_start) * 1000
    )
