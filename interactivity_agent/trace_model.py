"""Perfetto-backed trace model: main-thread slices and page-load marks."""

from __future__ import annotations

import logging
import os

from perfetto.trace_processor import TraceProcessor

from interactivity_agent.errors import MainThreadNotFoundError, MissingTimestampError
from interactivity_agent.models import TraceTimestamps

logger = logging.getLogger(__name__)

DEFAULT_MAIN_THREAD_NAME = "CrRendererMain"


def _q(tp: TraceProcessor, sql: str) -> list[dict]:
    """Execute a SQL query and return results as a list of dictionaries."""
    result = tp.query(sql)
    rows = []
    for row in result:
        row_dict = {col: getattr(row, col) for col in result.column_names}
        rows.append(row_dict)
    return rows


def _first_value(rows: list[dict], key: str):
    if not rows:
        return None
    return rows[0].get(key)


class PerfettoTraceModel:
    """Wrapper for Perfetto TraceProcessor exposing what the analysis reads."""

    def __init__(self, trace_path: str, main_thread_name: str | None = None):
        """
        Open a trace file.

        Args:
            trace_path: Path to a Chrome JSON or Perfetto protobuf trace
            main_thread_name: Thread name of the renderer main thread;
                defaults to $INTERACTIVITY_MAIN_THREAD or CrRendererMain
        """
        self.trace_path = trace_path
        self.main_thread_name = (
            main_thread_name
            or os.getenv("INTERACTIVITY_MAIN_THREAD")
            or DEFAULT_MAIN_THREAD_NAME
        )
        self.tp = TraceProcessor(trace=trace_path)
        self._main_thread: dict | None = None

    def close(self):
        """Close the trace processor."""
        self.tp.close()

    def resolve_main_thread(self) -> dict:
        """
        Resolve the renderer main thread.

        Prefers the thread that carries the navigationStart mark, then the
        busiest thread named after main_thread_name.
        """
        if self._main_thread is not None:
            return self._main_thread

        by_mark = _q(
            self.tp,
            """
            SELECT t.utid AS utid, t.tid AS tid, t.name AS name
            FROM slice s
            JOIN thread_track tt ON s.track_id = tt.id
            JOIN thread t ON t.utid = tt.utid
            WHERE s.name = 'navigationStart'
            ORDER BY s.ts
            LIMIT 1
            """
        )
        if by_mark:
            self._main_thread = by_mark[0]
            return self._main_thread

        escaped = self.main_thread_name.replace("'", "''")
        by_name = _q(
            self.tp,
            f"""
            SELECT
                t.utid AS utid,
                t.tid AS tid,
                t.name AS name,
                COUNT(s.id) AS slice_count
            FROM thread t
            JOIN thread_track tt ON tt.utid = t.utid
            JOIN slice s ON s.track_id = tt.id
            WHERE t.name = '{escaped}'
            GROUP BY t.utid, t.tid, t.name
            ORDER BY slice_count DESC
            LIMIT 1
            """
        )
        if not by_name:
            raise MainThreadNotFoundError(
                f"No thread named {self.main_thread_name} in {self.trace_path}"
            )

        self._main_thread = by_name[0]
        logger.debug("Main thread resolved by name: tid=%s", self._main_thread.get("tid"))
        return self._main_thread

    def get_main_thread_slices(self) -> list[dict]:
        """Return main-thread slices with ts_ms, dur_ms and depth, ordered by ts."""
        main_thread = self.resolve_main_thread()
        return _q(
            self.tp,
            f"""
            SELECT
                s.ts / 1e6 AS ts_ms,
                s.dur / 1e6 AS dur_ms,
                s.depth AS depth
            FROM slice s
            JOIN thread_track tt ON s.track_id = tt.id
            WHERE tt.utid = {int(main_thread["utid"])} AND s.dur > 0
            ORDER BY s.ts
            """
        )

    def _mark_ms(self, name: str, after_ms: float | None = None, last: bool = False) -> float | None:
        where_clauses = [f"name = '{name}'"]
        if after_ms is not None:
            where_clauses.append(f"ts / 1e6 >= {after_ms}")
        where_sql = " AND ".join(where_clauses)
        aggregate = "MAX" if last else "MIN"
        rows = _q(self.tp, f"SELECT {aggregate}(ts) / 1e6 AS ts_ms FROM slice WHERE {where_sql}")
        return _first_value(rows, "ts_ms")

    def get_trace_timestamps(self) -> TraceTimestamps:
        """
        Read the page-load marks of the trace.

        Raises:
            MissingTimestampError: no navigationStart or first meaningful paint
        """
        nav_start = self._mark_ms("navigationStart")
        if nav_start is None:
            raise MissingTimestampError("navigationStart")

        fmp_fell_back = False
        fmp = self._mark_ms("firstMeaningfulPaint", after_ms=nav_start)
        if fmp is None:
            fmp = self._mark_ms("firstMeaningfulPaintCandidate", after_ms=nav_start, last=True)
            fmp_fell_back = fmp is not None
        if fmp is None:
            raise MissingTimestampError("firstMeaningfulPaint")

        dcl = self._mark_ms("domContentLoadedEventEnd", after_ms=nav_start)
        trace_end = _first_value(_q(self.tp, "SELECT end_ts / 1e6 AS end_ms FROM trace_bounds"), "end_ms")
        if trace_end is None:
            raise MissingTimestampError("trace end")

        return TraceTimestamps(
            navigation_start=nav_start,
            first_meaningful_paint=fmp - nav_start,
            dom_content_loaded=None if dcl is None else dcl - nav_start,
            trace_end=trace_end - nav_start,
            fmp_fell_back=fmp_fell_back
        )
