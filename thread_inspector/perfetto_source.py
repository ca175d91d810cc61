"""Scheduling events read from a Perfetto trace."""

import bisect
from pathlib import PurePosixPath

from perfetto.trace_processor import TraceProcessor

from thread_inspector.errors import CaptureError
from thread_inspector.events import CallStack, ContextSwitch, Event, Frame, ReadyThread, Sample
from thread_inspector.processes import normalize_image_name
from thread_inspector.symbols import SymbolResolver
from thread_inspector import wait_reasons


# Wait reason used on switch-in events, where only the incoming thread is known.
NO_WAIT_REASON = -1

END_STATE_WAIT_REASONS = {
    "R": wait_reasons.WR_PREEMPTED,
    "R+": wait_reasons.WR_PREEMPTED,
    "S": wait_reasons.USER_REQUEST,
    "D": wait_reasons.WR_RESOURCE,
    "DK": wait_reasons.WR_RESOURCE,
    "T": wait_reasons.SUSPENDED,
    "t": wait_reasons.SUSPENDED,
    "X": wait_reasons.WR_TERMINATED,
    "Z": wait_reasons.WR_TERMINATED,
    "x": wait_reasons.WR_TERMINATED,
    "I": wait_reasons.WR_DELAY_EXECUTION,
}

# Same-timestamp ordering: leave the CPU, become ready, sample, then run.
_SWITCH_OUT, _READY, _SAMPLE, _SWITCH_IN = range(4)


def _q(tp: TraceProcessor, sql: str) -> list[dict]:
    """Execute a SQL query and return results as a list of dictionaries."""
    result = tp.query(sql)
    rows = []
    for row in result:
        row_dict = {col: getattr(row, col) for col in result.column_names}
        rows.append(row_dict)
    return rows


def _safe_q(tp: TraceProcessor, sql: str, what: str, notes: list[str]) -> list[dict]:
    """Execute a SQL query, returning [] on failure and recording the reason."""
    try:
        return _q(tp, sql)
    except Exception as exc:
        notes.append(f"Query failed for {what}: {str(exc)}")
        return []


def end_state_wait_reason(end_state: str | None) -> int:
    if end_state is None:
        return NO_WAIT_REASON
    return END_STATE_WAIT_REASONS.get(end_state.strip(), NO_WAIT_REASON)


def module_name(mapping_name: str | None) -> str | None:
    """Reduce a mapping path to a module name, e.g. /usr/lib/libc.so.6 -> libc."""
    if not mapping_name:
        return None
    base = PurePosixPath(mapping_name.replace("\\", "/")).name
    if ".so" in base:
        return base.split(".so", 1)[0]
    for suffix in (".dll", ".exe"):
        if base.lower().endswith(suffix):
            return base[: -len(suffix)]
    return base or None


class PerfettoEventSource:
    """Event source over `perfetto.trace_processor.TraceProcessor`."""

    def __init__(self, trace_path: str, resolver: SymbolResolver | None = None, tp=None):
        """
        Args:
            trace_path: Path to the Perfetto trace file
            resolver: Optional resolver for frames without a symbol name
            tp: Pre-built trace processor, mainly for tests
        """
        self.trace_path = trace_path
        self.resolver = resolver
        self.notes: list[str] = []
        if tp is None:
            try:
                tp = TraceProcessor(trace=trace_path)
            except Exception as exc:
                raise CaptureError(f"Cannot open Perfetto trace {trace_path}: {exc}") from exc
        self.tp = tp
        self._callsites: dict[int, tuple[int | None, Frame]] | None = None
        self._stacks: dict[int, CallStack] = {}
        self._origin_ns: int | None = None

    def close(self):
        """Close the trace processor."""
        self.tp.close()

    def _origin(self) -> int:
        if self._origin_ns is None:
            rows = _safe_q(self.tp, "SELECT start_ts FROM trace_bounds", "trace_bounds", self.notes)
            start = rows[0].get("start_ts") if rows else None
            self._origin_ns = int(start) if start is not None else 0
        return self._origin_ns

    def _to_ms(self, ts_ns: int) -> float:
        return (ts_ns - self._origin()) / 1e6

    def find_processes(self, image_name: str) -> list[int]:
        rows = _safe_q(
            self.tp,
            """
            SELECT DISTINCT pid, name
            FROM process
            WHERE pid IS NOT NULL AND name IS NOT NULL
            ORDER BY pid
            """,
            "processes",
            self.notes
        )
        wanted = normalize_image_name(image_name)
        return [row["pid"] for row in rows if normalize_image_name(row.get("name")) == wanted]

    def _load_callsites(self) -> dict[int, tuple[int | None, Frame]]:
        if self._callsites is not None:
            return self._callsites

        rows = _safe_q(
            self.tp,
            """
            SELECT
                c.id AS id,
                c.parent_id AS parent_id,
                f.name AS frame_name,
                f.rel_pc AS rel_pc,
                m.name AS mapping_name
            FROM stack_profile_callsite c
            JOIN stack_profile_frame f ON c.frame_id = f.id
            LEFT JOIN stack_profile_mapping m ON f.mapping = m.id
            """,
            "callsites",
            self.notes
        )
        callsites = {}
        for row in rows:
            frame = Frame(
                module=module_name(row.get("mapping_name")),
                method=row.get("frame_name") or None,
                address=row.get("rel_pc"),
            )
            if self.resolver is not None:
                frame = self.resolver.resolve_frame(frame)
            callsites[row["id"]] = (row.get("parent_id"), frame)
        self._callsites = callsites
        return callsites

    def call_stack(self, callsite_id: int | None) -> CallStack:
        """Return the leaf-first stack for a callsite id."""
        if callsite_id is None:
            return []
        if callsite_id in self._stacks:
            return self._stacks[callsite_id]

        callsites = self._load_callsites()
        stack: CallStack = []
        seen = set()
        current = callsite_id
        while current is not None and current in callsites and current not in seen:
            seen.add(current)
            parent_id, frame = callsites[current]
            stack.append(frame)
            current = parent_id
        self._stacks[callsite_id] = stack
        return stack

    def load_samples(self, pid: int) -> list[Sample]:
        rows = _safe_q(
            self.tp,
            f"""
            SELECT
                ps.ts AS ts,
                t.tid AS tid,
                p.pid AS pid,
                ps.callsite_id AS callsite_id
            FROM perf_sample ps
            JOIN thread t ON ps.utid = t.utid
            JOIN process p ON t.upid = p.upid
            WHERE p.pid = {int(pid)} AND ps.callsite_id IS NOT NULL
            ORDER BY ps.ts
            """,
            "samples",
            self.notes
        )
        return [
            Sample(
                timestamp=self._to_ms(row["ts"]),
                thread_id=row["tid"],
                call_stack=self.call_stack(row.get("callsite_id")),
                process_id=row.get("pid"),
            )
            for row in rows
        ]

    def _sched_slices(self, pid: int, tid: int) -> list[dict]:
        return _safe_q(
            self.tp,
            f"""
            SELECT
                s.ts AS ts,
                s.dur AS dur,
                s.end_state AS end_state
            FROM sched_slice s
            JOIN thread t ON s.utid = t.utid
            JOIN process p ON t.upid = p.upid
            WHERE p.pid = {int(pid)} AND t.tid = {int(tid)} AND s.dur > 0
            ORDER BY s.ts
            """,
            "context_switches",
            self.notes
        )

    def _wakeups(self, pid: int, tid: int) -> list[dict]:
        return _safe_q(
            self.tp,
            f"""
            SELECT st.ts AS ts
            FROM thread_state st
            JOIN thread t ON st.utid = t.utid
            JOIN process p ON t.upid = p.upid
            WHERE p.pid = {int(pid)}
                AND t.tid = {int(tid)}
                AND st.state = 'R'
                AND st.waker_utid IS NOT NULL
            ORDER BY st.ts
            """,
            "ready_threads",
            self.notes
        )

    def load_events(self, pid: int, tid: int) -> list[Event]:
        """
        Build the ordered event stream for one thread of one process.

        Context switches are synthesized from the thread's scheduling slices.
        The switch-in stack is the thread's latest sample at or before the
        switch-in, which is the stack it was last seen running with.
        """
        samples = self.load_samples(pid)
        target_samples = [sample for sample in samples if sample.thread_id == tid]
        sample_times = [sample.timestamp for sample in target_samples]

        keyed: list[tuple[float, int, Event]] = [
            (sample.timestamp, _SAMPLE, sample) for sample in samples
        ]

        slices = self._sched_slices(pid, tid)
        if not slices:
            self.notes.append(f"No scheduling slices found for thread {tid}")
        for row in slices:
            start_ms = self._to_ms(row["ts"])
            end_ms = self._to_ms(row["ts"] + row["dur"])
            index = bisect.bisect_right(sample_times, start_ms) - 1
            stack = target_samples[index].call_stack if index >= 0 else []
            keyed.append((
                start_ms,
                _SWITCH_IN,
                ContextSwitch(start_ms, None, tid, NO_WAIT_REASON, stack),
            ))
            keyed.append((
                end_ms,
                _SWITCH_OUT,
                ContextSwitch(end_ms, tid, None, end_state_wait_reason(row.get("end_state"))),
            ))

        for row in self._wakeups(pid, tid):
            ts_ms = self._to_ms(row["ts"])
            keyed.append((ts_ms, _READY, ReadyThread(ts_ms, tid)))

        keyed.sort(key=lambda item: (item[0], item[1]))
        if slices:
            self.notes.append(
                "Perfetto switch-in stacks approximated from the latest sample of the thread"
            )
        return [event for _, _, event in keyed]
