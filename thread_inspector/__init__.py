"""Scheduling-trace breakdown of where a UI thread spends its time."""

from thread_inspector.classifier import (
    ClassificationResult,
    ThreadStateClassifier,
    classify
)
from thread_inspector.stacks import extract_activity_label, locate_target_thread

__all__ = [
    "ClassificationResult",
    "ThreadStateClassifier",
    "classify",
    "extract_activity_label",
    "locate_target_thread"
]
