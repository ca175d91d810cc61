"""Scheduling event types consumed by the thread-state classifier."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypeAlias, Union


@dataclass(frozen=True)
class Frame:
    module: str | None = None
    method: str | None = None
    address: int | None = None


CallStack: TypeAlias = list[Frame]


def frame_signature(frame: Frame) -> str:
    """Return the `module!method` signature used for frame matching.

    Frames without a module use `?`; frames without a method name fall back
    to the hex address.
    """
    module = frame.module or "?"
    if frame.method is not None:
        return f"{module}!{frame.method}"
    if frame.address is not None:
        return f"{module}!{frame.address:#x}"
    return f"{module}!?"


def parse_signature(signature: str) -> Frame:
    module, _, method = signature.partition("!")
    return Frame(module=None if module == "?" else module, method=method or None)


@dataclass(frozen=True)
class Sample:
    timestamp: float
    thread_id: int
    call_stack: CallStack = field(default_factory=list)
    process_id: int | None = None


@dataclass(frozen=True)
class ContextSwitch:
    timestamp: float
    old_thread_id: int | None
    new_thread_id: int | None
    old_thread_wait_reason: int
    # Stack of the incoming thread at the moment it was switched in.
    call_stack: CallStack = field(default_factory=list)


@dataclass(frozen=True)
class ReadyThread:
    timestamp: float
    awakened_thread_id: int


PROCESS_START = "start"
PROCESS_END = "end"
PROCESS_RUNDOWN_START = "rundown_start"
PROCESS_RUNDOWN_END = "rundown_end"


@dataclass(frozen=True)
class ProcessLifecycle:
    timestamp: float
    process_id: int
    image_name: str
    kind: str


Event: TypeAlias = Union[Sample, ContextSwitch, ReadyThread, ProcessLifecycle]
