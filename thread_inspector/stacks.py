"""Call-stack helpers: activity labels and target-thread lookup."""

from typing import Iterable

from thread_inspector.events import CallStack, Frame, Sample, frame_signature


def extract_activity_label(call_stack: CallStack, anchor_signature: str) -> str | None:
    """
    Return the signature of the frame immediately inside the anchor frame.

    The stack is walked leaf to root. Frames are collected until a frame whose
    signature equals `anchor_signature` is reached; the outermost collected
    frame is the activity label.

    Returns:
        The label, or None when the anchor is absent or is the leaf frame
    """
    chain: list[Frame] = []
    for frame in call_stack:
        if frame_signature(frame) == anchor_signature:
            break
        chain.append(frame)
    else:
        return None

    if not chain:
        return None
    return frame_signature(chain[-1])


def stack_contains(call_stack: CallStack, signature: str) -> bool:
    return any(frame_signature(frame) == signature for frame in call_stack)


def locate_target_thread(samples: Iterable[Sample], entry_signature: str) -> int | None:
    """Return the thread id of the first sample whose stack contains `entry_signature`."""
    for sample in samples:
        if stack_contains(sample.call_stack, entry_signature):
            return sample.thread_id
    return None
