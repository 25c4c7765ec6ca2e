import asyncio
import unittest
from unittest import mock

from fakes import FakeTraceModel, make_timestamps, slice_row
from interactivity_agent.artifacts import ArtifactCache, Trace, default_artifacts
from interactivity_agent.errors import (
    ArtifactComputationError,
    ArtifactCycleError,
    MainThreadNotFoundError,
    ShortTraceError,
    TraceBusyError,
    UnknownArtifactError
)
from interactivity_agent.models import Task


class CountingArtifact:
    def __init__(self, name="Counted", error=None):
        self.name = name
        self.error = error
        self.calls = 0

    async def compute(self, trace, artifacts):
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        return {"trace": trace.path, "call": self.calls}


class DependentArtifact:
    def __init__(self, name, dependency):
        self.name = name
        self.dependency = dependency

    async def compute(self, trace, artifacts):
        return await artifacts.request(self.dependency, trace)


class CountingTraceModel(FakeTraceModel):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.slice_reads = 0

    def get_main_thread_slices(self):
        self.slice_reads += 1
        return super().get_main_thread_slices()


class TestArtifactCache(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_requests_compute_once(self):
        artifact = CountingArtifact()
        cache = ArtifactCache([artifact])
        trace = Trace(path="trace.json")

        results = await asyncio.gather(*[cache.request("Counted", trace) for _ in range(20)])

        self.assertEqual(artifact.calls, 1)
        for result in results:
            self.assertIs(result, results[0])

    async def test_completed_value_is_reused(self):
        artifact = CountingArtifact()
        cache = ArtifactCache([artifact])
        trace = Trace(path="trace.json")

        first = await cache.request("Counted", trace)
        second = await cache.request("Counted", trace)

        self.assertIs(first, second)
        self.assertEqual(artifact.calls, 1)

    async def test_distinct_traces_do_not_share_entries(self):
        artifact = CountingArtifact()
        cache = ArtifactCache([artifact])

        first = await cache.request("Counted", Trace(path="same.json"))
        second = await cache.request("Counted", Trace(path="same.json"))

        self.assertEqual(artifact.calls, 2)
        self.assertIsNot(first, second)

    async def test_failure_is_cached_and_shared(self):
        artifact = CountingArtifact(error=ValueError("bad trace"))
        cache = ArtifactCache([artifact])
        trace = Trace(path="trace.json")

        errors = await asyncio.gather(
            *[cache.request("Counted", trace) for _ in range(5)],
            return_exceptions=True
        )
        with self.assertRaises(ArtifactComputationError) as ctx:
            await cache.request("Counted", trace)

        self.assertEqual(artifact.calls, 1)
        for error in errors:
            self.assertIsInstance(error, ArtifactComputationError)
            self.assertIs(error, errors[0])
        self.assertIs(ctx.exception, errors[0])
        self.assertEqual(ctx.exception.artifact, "Counted")
        self.assertIsInstance(ctx.exception.cause, ValueError)

    async def test_analysis_errors_propagate_unchanged(self):
        cache = ArtifactCache([CountingArtifact(error=TraceBusyError())])
        with self.assertRaises(TraceBusyError):
            await cache.request("Counted", Trace(path="trace.json"))

    async def test_dependency_failure_reaches_dependents(self):
        cache = ArtifactCache([
            CountingArtifact(name="Base", error=RuntimeError("parse failed")),
            DependentArtifact("Derived", "Base")
        ])
        with self.assertRaises(ArtifactComputationError) as ctx:
            await cache.request("Derived", Trace(path="trace.json"))
        self.assertEqual(ctx.exception.artifact, "Base")

    async def test_cycle_fails_fast(self):
        cache = ArtifactCache([DependentArtifact("A", "B"), DependentArtifact("B", "A")])
        with self.assertRaises(ArtifactCycleError) as ctx:
            await asyncio.wait_for(cache.request("A", Trace(path="trace.json")), timeout=1)
        self.assertEqual(ctx.exception.chain, ("A", "B", "A"))

    async def test_cycle_between_independent_requesters_fails_fast(self):
        cache = ArtifactCache([DependentArtifact("A", "B"), DependentArtifact("B", "A")])
        trace = Trace(path="trace.json")

        results = await asyncio.wait_for(
            asyncio.gather(cache.request("A", trace), cache.request("B", trace), return_exceptions=True),
            timeout=1
        )

        for result in results:
            self.assertIsInstance(result, ArtifactCycleError)
            self.assertEqual(result.chain[0], result.chain[-1])
            self.assertEqual(set(result.chain), {"A", "B"})
        self.assertEqual(cache._waiting, {})

    async def test_longer_cycle_between_independent_requesters_fails_fast(self):
        cache = ArtifactCache([
            DependentArtifact("A", "B"),
            DependentArtifact("B", "C"),
            DependentArtifact("C", "A")
        ])
        trace = Trace(path="trace.json")

        results = await asyncio.wait_for(
            asyncio.gather(*[cache.request(name, trace) for name in "ABC"], return_exceptions=True),
            timeout=1
        )

        for result in results:
            self.assertIsInstance(result, ArtifactCycleError)
            self.assertEqual(len(result.chain), 4)

    async def test_self_cycle_fails_fast(self):
        cache = ArtifactCache([DependentArtifact("Loop", "Loop")])
        with self.assertRaises(ArtifactCycleError):
            await asyncio.wait_for(cache.request("Loop", Trace(path="trace.json")), timeout=1)

    async def test_shared_dependency_is_not_a_cycle(self):
        base = CountingArtifact(name="Base")
        cache = ArtifactCache([base, DependentArtifact("Left", "Base"), DependentArtifact("Right", "Base")])
        trace = Trace(path="trace.json")

        left, right = await asyncio.gather(cache.request("Left", trace), cache.request("Right", trace))

        self.assertIs(left, right)
        self.assertEqual(base.calls, 1)

    async def test_unknown_artifact(self):
        cache = ArtifactCache([])
        with self.assertRaises(UnknownArtifactError):
            await cache.request("Nope", Trace(path="trace.json"))

    def test_trace_needs_path_or_model(self):
        with self.assertRaises(ValueError):
            Trace()

    def test_close_releases_adopted_models(self):
        trace = Trace(path="trace.json")
        model = FakeTraceModel()

        self.assertIs(trace.adopt(model), model)
        trace.close()

        self.assertTrue(model.closed)

    async def test_trace_model_opened_from_path_is_adopted(self):
        model = FakeTraceModel()
        trace = Trace(path="trace.json")
        with mock.patch("interactivity_agent.artifacts.PerfettoTraceModel", return_value=model) as opener:
            self.assertIs(await ArtifactCache().request("TraceModel", trace), model)
        opener.assert_called_once_with("trace.json")

        trace.close()
        self.assertTrue(model.closed)


class TestDefaultArtifacts(unittest.IsolatedAsyncioTestCase):
    async def test_first_interactive_from_model(self):
        model = CountingTraceModel(
            slices=[slice_row(1500, 2000, navigation_start=100000)],
            timestamps=make_timestamps(fmp=1000, dcl=500, trace_end=20000, navigation_start=100000)
        )
        cache = ArtifactCache()
        trace = Trace(model=model)

        result, tasks = await asyncio.gather(
            cache.request_first_interactive(trace),
            cache.request_main_thread_tasks(trace)
        )

        self.assertEqual(tasks, [Task(1500, 2000)])
        self.assertEqual(result.time_in_ms, 2000)
        self.assertEqual(result.timestamp, (2000 + 100000) * 1000)
        self.assertEqual(model.slice_reads, 1)

    async def test_timestamps_override(self):
        model = FakeTraceModel(timestamps=make_timestamps(fmp=1000, trace_end=2000))
        trace = Trace(model=model, timestamps=make_timestamps(fmp=1000, dcl=4000, trace_end=10000))
        result = await ArtifactCache().request_first_interactive(trace)
        self.assertEqual(result.time_in_ms, 4000)

    async def test_short_trace_surfaces(self):
        model = FakeTraceModel(timestamps=make_timestamps(fmp=1000, dcl=500, trace_end=5000))
        with self.assertRaises(ShortTraceError):
            await ArtifactCache().request_first_interactive(Trace(model=model))

    async def test_missing_main_thread_surfaces(self):
        model = FakeTraceModel(
            timestamps=make_timestamps(fmp=1000, dcl=500, trace_end=20000),
            main_thread_found=False
        )
        with self.assertRaises(MainThreadNotFoundError):
            await ArtifactCache().request_first_interactive(Trace(model=model))

    async def test_long_task_threshold(self):
        model = FakeTraceModel(
            slices=[slice_row(1500, 1540)],
            timestamps=make_timestamps(fmp=1000, dcl=500, trace_end=20000)
        )
        default = await ArtifactCache().request_first_interactive(Trace(model=model))
        lowered = await ArtifactCache(default_artifacts(long_task_ms=30)).request_first_interactive(
            Trace(model=model)
        )
        self.assertEqual(default.time_in_ms, 1000)
        self.assertEqual(lowered.time_in_ms, 1540)


if __name__ == "__main__":
    unittest.main()
