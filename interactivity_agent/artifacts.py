"""
Computed artifacts: values derived from a trace, memoized per trace.

Each artifact has a name and an async compute(trace, artifacts) step that may
request other artifacts from the same cache. ArtifactCache guarantees at most
one computation per (artifact name, trace): concurrent requesters attach to
the in-flight future, later requesters get the stored value, and a failure is
stored and re-raised to every requester.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextvars import ContextVar
from typing import Any, Iterable, Optional, Protocol

from interactivity_agent.errors import (
    ArtifactComputationError,
    ArtifactCycleError,
    InteractivityError,
    UnknownArtifactError
)
from interactivity_agent.first_interactive import compute_first_interactive
from interactivity_agent.models import QuietWindowResult, Task, TraceTimestamps
from interactivity_agent.tasks import LONG_TASK_THRESHOLD_MS, TraceModel, extract_main_thread_tasks
from interactivity_agent.trace_model import PerfettoTraceModel

logger = logging.getLogger(__name__)

# Keys currently being computed on behalf of the running task, outermost first.
_request_chain: ContextVar[tuple[tuple[str, int], ...]] = ContextVar(
    "artifact_request_chain", default=()
)


class Trace:
    """
    Handle for one recorded trace. Its identity keys the artifact cache.

    A trace is either a path opened lazily by the TraceModel artifact, or an
    already built model. timestamps overrides the marks read from the model.
    """

    def __init__(
        self,
        path: str | None = None,
        model: TraceModel | None = None,
        timestamps: TraceTimestamps | None = None
    ):
        if path is None and model is None:
            raise ValueError("Trace needs a path or a model")
        self.path = path
        self.model = model
        self.timestamps = timestamps
        self._opened: list[PerfettoTraceModel] = []

    def adopt(self, model: PerfettoTraceModel) -> PerfettoTraceModel:
        """Take ownership of a model opened for this trace; close() releases it."""
        self._opened.append(model)
        return model

    def close(self):
        """Close trace models opened from path."""
        while self._opened:
            self._opened.pop().close()

    def __repr__(self) -> str:
        return f"Trace(path={self.path!r})"


class ComputedArtifact(Protocol):
    name: str

    async def compute(self, trace: Trace, artifacts: "ArtifactCache") -> Any:
        ...


class TraceModelArtifact:
    name = "TraceModel"

    async def compute(self, trace: Trace, artifacts: "ArtifactCache") -> TraceModel:
        if trace.model is not None:
            return trace.model
        return trace.adopt(PerfettoTraceModel(trace.path))


class TraceOfTabArtifact:
    name = "TraceOfTab"

    async def compute(self, trace: Trace, artifacts: "ArtifactCache") -> TraceTimestamps:
        if trace.timestamps is not None:
            return trace.timestamps
        model = await artifacts.request("TraceModel", trace)
        return model.get_trace_timestamps()


class MainThreadTasksArtifact:
    name = "MainThreadTasks"

    async def compute(self, trace: Trace, artifacts: "ArtifactCache") -> list[Task]:
        model, timestamps = await asyncio.gather(
            artifacts.request("TraceModel", trace),
            artifacts.request("TraceOfTab", trace)
        )
        return extract_main_thread_tasks(
            model,
            timestamps.navigation_start,
            timestamps.first_meaningful_paint
        )


class FirstInteractiveArtifact:
    name = "FirstInteractive"

    def __init__(self, long_task_ms: float = LONG_TASK_THRESHOLD_MS):
        self.long_task_ms = long_task_ms

    async def compute(self, trace: Trace, artifacts: "ArtifactCache") -> QuietWindowResult:
        timestamps, tasks = await asyncio.gather(
            artifacts.request("TraceOfTab", trace),
            artifacts.request("MainThreadTasks", trace)
        )
        return compute_first_interactive(timestamps, tasks, self.long_task_ms)


def default_artifacts(long_task_ms: float = LONG_TASK_THRESHOLD_MS) -> list[ComputedArtifact]:
    return [
        TraceModelArtifact(),
        TraceOfTabArtifact(),
        MainThreadTasksArtifact(),
        FirstInteractiveArtifact(long_task_ms)
    ]


class ArtifactCache:
    """Single-flight memoization of computed artifacts per trace."""

    def __init__(self, artifacts: Optional[Iterable[ComputedArtifact]] = None):
        self._artifacts: dict[str, ComputedArtifact] = {}
        self._entries: "weakref.WeakKeyDictionary[Trace, dict[str, asyncio.Future]]" = (
            weakref.WeakKeyDictionary()
        )
        self._running: set[asyncio.Task] = set()
        # Computation key -> keys its requests are blocked on.
        self._waiting: dict[tuple[str, int], list[tuple[str, int]]] = {}
        for artifact in default_artifacts() if artifacts is None else artifacts:
            self.register(artifact)

    def register(self, artifact: ComputedArtifact) -> None:
        """Register artifact under its name, replacing any previous one."""
        self._artifacts[artifact.name] = artifact

    async def request(self, name: str, trace: Trace) -> Any:
        """
        Return the artifact called name for trace, computing it at most once.

        Raises:
            UnknownArtifactError: name was never registered
            ArtifactCycleError: name is already being computed up the chain, or
                waiting on it would close a loop with another computation
            ArtifactComputationError: the computation raised a non-analysis error
        """
        artifact = self._artifacts.get(name)
        if artifact is None:
            raise UnknownArtifactError(name)

        key = (name, id(trace))
        chain = _request_chain.get()
        if key in chain:
            raise ArtifactCycleError(tuple(entry[0] for entry in chain) + (name,))

        entries = self._entries.setdefault(trace, {})
        future = entries.get(name)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            entries[name] = future
            logger.debug("Computing %s for %r", name, trace)
            task = asyncio.ensure_future(self._compute(artifact, trace, future, chain + (key,)))
            self._running.add(task)
            task.add_done_callback(self._running.discard)
        elif future.done():
            logger.debug("Cache hit for %s on %r", name, trace)
        else:
            logger.debug("Attaching to in-flight %s for %r", name, trace)

        # Shielded so one requester being cancelled does not cancel the others.
        if not chain or future.done():
            return await asyncio.shield(future)

        # A computation must not block on a key that is already waiting on it.
        requester = chain[-1]
        path = self._wait_path(key, requester)
        if path is not None:
            raise ArtifactCycleError((requester[0],) + tuple(entry[0] for entry in path))
        waits_on = self._waiting.setdefault(requester, [])
        waits_on.append(key)
        try:
            return await asyncio.shield(future)
        finally:
            waits_on.remove(key)
            if not waits_on and self._waiting.get(requester) is waits_on:
                del self._waiting[requester]

    def _wait_path(
        self,
        start: tuple[str, int],
        goal: tuple[str, int]
    ) -> Optional[tuple[tuple[str, int], ...]]:
        """Keys from start to goal following what each computation waits on, or None."""
        stack = [(start, (start,))]
        seen = set()
        while stack:
            current, path = stack.pop()
            if current == goal:
                return path
            if current in seen:
                continue
            seen.add(current)
            for blocked_on in self._waiting.get(current, ()):
                stack.append((blocked_on, path + (blocked_on,)))
        return None

    async def _compute(
        self,
        artifact: ComputedArtifact,
        trace: Trace,
        future: asyncio.Future,
        chain: tuple[tuple[str, int], ...]
    ) -> None:
        _request_chain.set(chain)
        try:
            value = await artifact.compute(trace, self)
        except InteractivityError as exc:
            future.set_exception(exc)
        except Exception as exc:
            logger.debug("Computing %s failed", artifact.name, exc_info=True)
            future.set_exception(ArtifactComputationError(artifact.name, exc))
        else:
            future.set_result(value)

    async def request_trace_of_tab(self, trace: Trace) -> TraceTimestamps:
        return await self.request("TraceOfTab", trace)

    async def request_main_thread_tasks(self, trace: Trace) -> list[Task]:
        return await self.request("MainThreadTasks", trace)

    async def request_first_interactive(self, trace: Trace) -> QuietWindowResult:
        return await self.request("FirstInteractive", trace)
