"""Thread-state classifier: attributes a thread's lifetime to activity buckets."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from thread_inspector.events import ContextSwitch, Event, ReadyThread, Sample
from thread_inspector.stacks import extract_activity_label
from thread_inspector.wait_reasons import WAIT_REASON_TABLE, wait_reason_name


BUCKETS = (
    "running",
    "message_pump_wait",
    "process_message",
    "idle",
    "blocked",
    "not_running",
    "ready",
)
COUNTERS = (
    "samples",
    "context_switches",
    "ready_thread_events",
    "skipped_samples",
    "skipped_context_switches",
)
DEFAULT_BUCKET = "blocked"


@dataclass
class ClassifierState:
    last_switch_out_time: float | None = None
    last_switch_in_time: float | None = None
    last_ready_time: float | None = None
    # Only meaningful while last_switch_out_time is set.
    last_switch_was_blocking: bool = False
    seen_first_switch: bool = False
    durations: dict[str, float] = field(default_factory=lambda: dict.fromkeys(BUCKETS, 0.0))
    counters: dict[str, int] = field(default_factory=lambda: dict.fromkeys(COUNTERS, 0))


@dataclass
class ClassificationResult:
    target_thread_id: int
    counters: dict[str, int]
    durations: dict[str, float]
    anomalies: list[str]
    span: tuple[float, float] | None
    blocking_by_label: dict[str, float] = field(default_factory=dict)
    samples_by_label: dict[str, int] = field(default_factory=dict)
    switch_out_reasons: dict[str, int] = field(default_factory=dict)

    @property
    def span_ms(self) -> float:
        if self.span is None:
            return 0.0
        return self.span[1] - self.span[0]


class ThreadStateClassifier:
    """
    Single-pass state machine over an ordered scheduling event stream.

    Events must be fed in non-decreasing timestamp order. Irregularities in
    the stream are recorded in `anomalies` and processing continues.
    """

    def __init__(
        self,
        target_thread_id: int,
        anchor_signature: str,
        label_buckets: Mapping[str, str] | None = None,
        wait_reasons: Mapping[int, bool] | None = None,
    ):
        """
        Args:
            target_thread_id: Thread whose lifetime is attributed
            anchor_signature: Frame signature bounding the activity label search
            label_buckets: Activity label to bucket name for blocking intervals
            wait_reasons: Wait-reason code to blocking flag
        """
        self.target_thread_id = target_thread_id
        self.anchor_signature = anchor_signature
        self.label_buckets = dict(label_buckets or {})
        self.wait_reasons = WAIT_REASON_TABLE if wait_reasons is None else wait_reasons
        for bucket in self.label_buckets.values():
            if bucket not in BUCKETS:
                raise ValueError(f"Unknown bucket for activity label: {bucket}")

        self.state = ClassifierState()
        self.anomalies: list[str] = []
        self.blocking_by_label: dict[str, float] = defaultdict(float)
        self.samples_by_label: dict[str, int] = defaultdict(int)
        self.switch_out_reasons: dict[str, int] = defaultdict(int)
        self._first_timestamp: float | None = None
        self._last_timestamp: float | None = None

    def _anomaly(self, timestamp: float, message: str) -> None:
        self.anomalies.append(f"{timestamp:.3f}ms: thread {self.target_thread_id} {message}")

    def feed(self, events: Iterable[Event]) -> "ThreadStateClassifier":
        for event in events:
            self.process(event)
        return self

    def process(self, event: Event) -> None:
        timestamp = event.timestamp
        if self._first_timestamp is None:
            self._first_timestamp = timestamp
        elif timestamp < self._last_timestamp:
            self._anomaly(
                timestamp,
                f"event out of order (previous event at {self._last_timestamp:.3f}ms)"
            )
        self._last_timestamp = timestamp

        if isinstance(event, Sample):
            self._on_sample(event)
        elif isinstance(event, ContextSwitch):
            self._on_context_switch(event)
        elif isinstance(event, ReadyThread):
            self._on_ready_thread(event)

    def _on_sample(self, event: Sample) -> None:
        if event.thread_id != self.target_thread_id:
            return
        counters = self.state.counters
        counters["samples"] += 1
        label = extract_activity_label(event.call_stack, self.anchor_signature)
        if label is None:
            counters["skipped_samples"] += 1
        else:
            self.samples_by_label[label] += 1

    def _on_context_switch(self, event: ContextSwitch) -> None:
        if event.old_thread_id == self.target_thread_id:
            self._switch_out(event)
            self.state.seen_first_switch = True
        if event.new_thread_id == self.target_thread_id:
            self._switch_in(event)
            self.state.seen_first_switch = True

    def _switch_out(self, event: ContextSwitch) -> None:
        state = self.state
        timestamp = event.timestamp
        state.counters["context_switches"] += 1

        if state.last_switch_out_time is not None:
            self._anomaly(
                timestamp,
                f"switched out again, already switched out at {state.last_switch_out_time:.3f}ms"
            )
        if state.last_ready_time is not None:
            self._anomaly(
                timestamp,
                f"switched out while ready since {state.last_ready_time:.3f}ms"
            )
        if state.seen_first_switch and state.last_switch_in_time is None:
            self._anomaly(timestamp, "switched out without a matching switch in")

        if state.last_switch_in_time is not None:
            state.durations["running"] += timestamp - state.last_switch_in_time
            state.last_switch_in_time = None
        state.last_switch_out_time = timestamp

        self.switch_out_reasons[wait_reason_name(event.old_thread_wait_reason)] += 1
        blocking = self.wait_reasons.get(event.old_thread_wait_reason)
        if blocking is None:
            self._anomaly(
                timestamp,
                f"switched out with unknown wait reason {event.old_thread_wait_reason}, "
                "treating as non-blocking"
            )
            blocking = False
        state.last_switch_was_blocking = blocking

    def _switch_in(self, event: ContextSwitch) -> None:
        state = self.state
        timestamp = event.timestamp
        state.counters["context_switches"] += 1

        if state.last_switch_in_time is not None:
            self._anomaly(
                timestamp,
                f"switched in again, already switched in at {state.last_switch_in_time:.3f}ms"
            )
        if state.seen_first_switch and state.last_switch_out_time is None:
            self._anomaly(timestamp, "switched in without a matching switch out")

        label = extract_activity_label(event.call_stack, self.anchor_signature)
        if label is None:
            state.counters["skipped_context_switches"] += 1
        elif state.last_switch_out_time is not None:
            elapsed = timestamp - state.last_switch_out_time
            if state.last_switch_was_blocking:
                bucket = self.label_buckets.get(label, DEFAULT_BUCKET)
                state.durations[bucket] += elapsed
                self.blocking_by_label[label] += elapsed
            else:
                state.durations["not_running"] += elapsed
            if state.last_ready_time is not None:
                state.durations["ready"] += timestamp - state.last_ready_time

        state.last_switch_out_time = None
        state.last_switch_in_time = timestamp
        state.last_ready_time = None

    def _on_ready_thread(self, event: ReadyThread) -> None:
        if event.awakened_thread_id != self.target_thread_id:
            return
        state = self.state
        state.counters["ready_thread_events"] += 1
        if state.last_ready_time is not None:
            self._anomaly(
                event.timestamp,
                f"readied again, already ready since {state.last_ready_time:.3f}ms"
            )
        # A wake signal for a thread that is already on-CPU is not recorded.
        if state.last_switch_out_time is not None:
            state.last_ready_time = event.timestamp

    def result(self) -> ClassificationResult:
        span = None
        if self._first_timestamp is not None:
            span = (self._first_timestamp, self._last_timestamp)
        return ClassificationResult(
            target_thread_id=self.target_thread_id,
            counters=dict(self.state.counters),
            durations=dict(self.state.durations),
            anomalies=list(self.anomalies),
            span=span,
            blocking_by_label=dict(self.blocking_by_label),
            samples_by_label=dict(self.samples_by_label),
            switch_out_reasons=dict(self.switch_out_reasons),
        )


def classify(
    events: Iterable[Event],
    target_thread_id: int,
    anchor_signature: str,
    wait_reasons: Mapping[int, bool] | None = None,
    label_buckets: Mapping[str, str] | None = None,
) -> ClassificationResult:
    """Run a fresh classifier over `events` and return the final totals."""
    classifier = ThreadStateClassifier(
        target_thread_id,
        anchor_signature,
        label_buckets=label_buckets,
        wait_reasons=wait_reasons,
    )
    return classifier.feed(events).result()
