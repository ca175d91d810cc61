"""Track instances of the target process from process lifecycle events."""

from collections import defaultdict
from typing import Callable, Iterable

from thread_inspector.events import (
    PROCESS_END,
    PROCESS_RUNDOWN_END,
    PROCESS_RUNDOWN_START,
    PROCESS_START,
    ProcessLifecycle,
)

ProcessListener = Callable[[str, ProcessLifecycle], None]

STARTED = "started"
ENDED = "ended"
ALL_PROCESSES = None


def normalize_image_name(name: str | None) -> str:
    if not name:
        return ""
    base = name.replace("\\", "/").rsplit("/", 1)[-1].lower()
    if base.endswith(".exe"):
        base = base[:-4]
    return base


class ProcessTracker:
    """
    Follows start/end and rundown events for one image name.

    Listeners are registered per process id, or for every process with
    `process_id=None`, and are called synchronously as events are consumed.
    """

    def __init__(self, image_name: str):
        self.image_name = normalize_image_name(image_name)
        self.instances: list[int] = []
        self.running: set[int] = set()
        self.ended: set[int] = set()
        self.notes: list[str] = []
        self._listeners: dict[int | None, list[ProcessListener]] = defaultdict(list)

    def subscribe(self, listener: ProcessListener, process_id: int | None = ALL_PROCESSES) -> None:
        self._listeners[process_id].append(listener)

    def unsubscribe(self, listener: ProcessListener, process_id: int | None = ALL_PROCESSES) -> None:
        listeners = self._listeners.get(process_id)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def _publish(self, change: str, event: ProcessLifecycle) -> None:
        for listener in list(self._listeners.get(event.process_id, [])):
            listener(change, event)
        for listener in list(self._listeners.get(ALL_PROCESSES, [])):
            listener(change, event)

    def matches(self, image_name: str | None) -> bool:
        return normalize_image_name(image_name) == self.image_name

    def consume(self, event: ProcessLifecycle) -> None:
        if not self.matches(event.image_name):
            return

        process_id = event.process_id
        if event.kind in (PROCESS_START, PROCESS_RUNDOWN_START):
            if process_id in self.running:
                self.notes.append(f"Process {process_id} already started")
                return
            if event.kind == PROCESS_RUNDOWN_START:
                self.notes.append(f"Process {process_id} already running at capture start")
            self.running.add(process_id)
            if process_id not in self.instances:
                self.instances.append(process_id)
            self._publish(STARTED, event)
        elif event.kind in (PROCESS_END, PROCESS_RUNDOWN_END):
            if process_id not in self.running:
                if event.kind == PROCESS_END or process_id in self.ended:
                    self.notes.append(f"Process {process_id} ended but was not started")
                    return
                # Rundown at capture end for a process whose start was not captured.
                if process_id not in self.instances:
                    self.instances.append(process_id)
            self.running.discard(process_id)
            self.ended.add(process_id)
            self._publish(ENDED, event)

    def consume_all(self, events: Iterable) -> "ProcessTracker":
        for event in events:
            if isinstance(event, ProcessLifecycle):
                self.consume(event)
        return self
