"""Locate, unpack and read captures."""

import json
import shutil
import tempfile
import zipfile
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from thread_inspector.errors import CaptureError
from thread_inspector.events import (
    PROCESS_END,
    PROCESS_RUNDOWN_END,
    PROCESS_RUNDOWN_START,
    PROCESS_START,
    CallStack,
    ContextSwitch,
    Event,
    Frame,
    ProcessLifecycle,
    ReadyThread,
    Sample,
    parse_signature,
)
from thread_inspector.processes import ProcessTracker
from thread_inspector.symbols import SymbolResolver


JSON_SUFFIXES = (".json", ".jsonl")
PERFETTO_SUFFIXES = (".perfetto-trace", ".pftrace", ".perfetto", ".pb")
MAX_EVENT_NOTES = 20

PROCESS_EVENT_KINDS = {
    "ProcessStart": PROCESS_START,
    "ProcessEnd": PROCESS_END,
    "ProcessDCStart": PROCESS_RUNDOWN_START,
    "ProcessDCEnd": PROCESS_RUNDOWN_END,
}


class CaptureLog:
    """Diagnostics from locating, unpacking and reading a capture."""

    def __init__(self):
        self.lines: list[str] = []

    def note(self, stage: str, message: str) -> None:
        stamp = datetime.now().isoformat(timespec="seconds")
        self.lines.append(f"[{stamp}] {stage}: {message}")

    def extend(self, stage: str, messages: Iterable[str]) -> None:
        for message in messages:
            self.note(stage, message)

    def messages(self) -> list[str]:
        return [line.split("] ", 1)[-1] for line in self.lines]

    def save(self, path: Path) -> None:
        with open(path, "w") as f:
            f.write("\n".join(self.lines) + "\n")


def _select_capture_member(zip_path: Path, zip_file: zipfile.ZipFile) -> zipfile.ZipInfo:
    members = [m for m in zip_file.infolist() if not m.is_dir()]
    if not members:
        raise CaptureError(f"Archive is empty: {zip_path}")

    def _pick(suffixes: tuple[str, ...]) -> zipfile.ZipInfo | None:
        candidates = [m for m in members if m.filename.lower().endswith(suffixes)]
        if not candidates:
            return None
        return sorted(candidates, key=lambda m: (-m.file_size, m.filename.lower()))[0]

    picked = _pick(JSON_SUFFIXES) or _pick(PERFETTO_SUFFIXES)
    if picked is None:
        raise CaptureError(f"Archive contains no capture file: {zip_path}")
    return picked


def unpack_capture(zip_path: Path, work_dir: Path | None, log: CaptureLog) -> Path:
    work_dir = Path(work_dir) if work_dir else Path(tempfile.mkdtemp(prefix="thread_inspector_"))
    try:
        with zipfile.ZipFile(zip_path, "r") as zip_file:
            member = _select_capture_member(zip_path, zip_file)
            target = work_dir / Path(member.filename).name
            work_dir.mkdir(parents=True, exist_ok=True)
            with zip_file.open(member, "r") as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
    except zipfile.BadZipFile as exc:
        raise CaptureError(f"Invalid archive: {zip_path}") from exc
    except OSError as exc:
        raise CaptureError(f"Cannot unpack {zip_path}: {exc}") from exc

    log.note("unpack", f"Extracted {member.filename} from {zip_path} to {target}")
    return target


def locate_capture(path: Path, log: CaptureLog, work_dir: Path | None = None) -> Path:
    """
    Return a readable capture file for `path`.

    A `.zip` path is unpacked. A missing path is looked up as an archive
    next to it (`<path>.zip`, then `<path without suffix>.zip`).
    """
    path = Path(path)
    if path.is_file():
        if zipfile.is_zipfile(path):
            return unpack_capture(path, work_dir, log)
        return path
    if path.exists():
        raise CaptureError(f"Path is not a file: {path}")

    candidates = [path.with_name(path.name + ".zip")]
    if path.suffix:
        candidates.append(path.with_suffix(".zip"))
    for archive in candidates:
        if archive.is_file():
            log.note("locate", f"Capture {path} not found, using archive {archive}")
            return unpack_capture(archive, work_dir, log)

    raise CaptureError(f"Capture file not found: {path}")


def _parse_address(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def parse_stack(frames: list | None) -> CallStack:
    stack = []
    for item in frames or []:
        if isinstance(item, str):
            stack.append(parse_signature(item))
            continue
        stack.append(
            Frame(
                module=item.get("module"),
                method=item.get("method"),
                address=_parse_address(item.get("address")),
            )
        )
    return stack


def parse_event(data: dict) -> Event:
    """Convert one event object of a JSON capture. Raises on malformed input."""
    kind = data["type"]
    timestamp = float(data["ts"])
    if kind == "Sample":
        pid = data.get("pid")
        return Sample(
            timestamp=timestamp,
            thread_id=int(data["tid"]),
            call_stack=parse_stack(data.get("stack")),
            process_id=int(pid) if pid is not None else None,
        )
    if kind == "CSwitch":
        old_tid = data.get("old_tid")
        new_tid = data.get("new_tid")
        return ContextSwitch(
            timestamp=timestamp,
            old_thread_id=int(old_tid) if old_tid is not None else None,
            new_thread_id=int(new_tid) if new_tid is not None else None,
            old_thread_wait_reason=int(data.get("old_wait_reason", -1)),
            call_stack=parse_stack(data.get("stack")),
        )
    if kind == "ReadyThread":
        return ReadyThread(timestamp=timestamp, awakened_thread_id=int(data["tid"]))
    if kind in PROCESS_EVENT_KINDS:
        return ProcessLifecycle(
            timestamp=timestamp,
            process_id=int(data["pid"]),
            image_name=str(data["image"]),
            kind=PROCESS_EVENT_KINDS[kind],
        )
    raise ValueError(f"unknown event type {kind!r}")


def _read_json_objects(path: Path) -> tuple[list, list]:
    if path.suffix.lower() == ".jsonl":
        objects = []
        with open(path, "r") as f:
            for line in f:
                line = line.strip()
                if line:
                    objects.append(json.loads(line))
        return objects, []

    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, list):
        return data, []
    if isinstance(data, dict):
        return data.get("events", []), data.get("processes", [])
    raise ValueError("capture must be a JSON object or list")


def load_json_capture(path: Path, log: CaptureLog) -> list[Event]:
    """
    Read a JSON or JSON Lines event log.

    Malformed events are skipped and reported in the capture log. A process
    table becomes rundown events at the capture origin.
    """
    try:
        objects, processes = _read_json_objects(path)
    except (OSError, ValueError) as exc:
        raise CaptureError(f"Cannot read capture {path}: {exc}") from exc

    events: list[Event] = []
    for entry in processes:
        try:
            events.append(
                ProcessLifecycle(0.0, int(entry["pid"]), str(entry["name"]), PROCESS_RUNDOWN_START)
            )
        except (KeyError, TypeError, ValueError) as exc:
            log.note("read", f"Skipping malformed process entry {entry!r}: {exc}")

    malformed = 0
    for index, data in enumerate(objects):
        try:
            events.append(parse_event(data))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            malformed += 1
            if malformed <= MAX_EVENT_NOTES:
                log.note("read", f"Skipping malformed event #{index}: {exc}")
    if malformed > MAX_EVENT_NOTES:
        log.note("read", f"Skipped {malformed} malformed events in total")

    log.note("read", f"Read {len(events)} events from {path}")
    return events


class JsonEventSource:
    """Event source over an in-memory JSON event log."""

    def __init__(self, path: Path, log: CaptureLog, resolver: SymbolResolver | None = None):
        self.path = path
        self.resolver = resolver
        self.notes: list[str] = []
        self.events = load_json_capture(path, log)

    def close(self):
        pass

    def _resolve(self, call_stack: CallStack) -> CallStack:
        if self.resolver is None:
            return call_stack
        return self.resolver.resolve_stack(call_stack)

    def find_processes(self, image_name: str) -> list[int]:
        tracker = ProcessTracker(image_name)
        tracker.subscribe(
            lambda change, event: self.notes.append(
                f"Process {event.process_id} ({event.image_name}) {change} at {event.timestamp:.3f}ms"
            )
        )
        tracker.consume_all(self.events)
        self.notes.extend(tracker.notes)
        return list(tracker.instances)

    def load_samples(self, pid: int) -> list[Sample]:
        return [
            replace(event, call_stack=self._resolve(event.call_stack))
            for event in self.events
            if isinstance(event, Sample) and event.process_id in (pid, None)
        ]

    def load_events(self, pid: int, tid: int) -> list[Event]:
        events: list[Event] = []
        for event in self.events:
            if isinstance(event, Sample) and event.thread_id == tid:
                event = replace(event, call_stack=self._resolve(event.call_stack))
            elif isinstance(event, ContextSwitch) and event.new_thread_id == tid:
                event = replace(event, call_stack=self._resolve(event.call_stack))
            events.append(event)
        return events


def open_event_source(path: Path, log: CaptureLog, resolver: SymbolResolver | None = None):
    """Open a JSON or Perfetto event source based on the file suffix."""
    if path.suffix.lower() in JSON_SUFFIXES:
        return JsonEventSource(path, log, resolver)

    from thread_inspector.perfetto_source import PerfettoEventSource

    log.note("read", f"Opening {path} with the Perfetto trace processor")
    return PerfettoEventSource(str(path), resolver)
