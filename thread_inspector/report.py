"""Build and render the thread time breakdown report."""

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from thread_inspector.classifier import BUCKETS, COUNTERS, ClassificationResult


BUCKET_TITLES = {
    "running": "Running",
    "message_pump_wait": "Message pump wait",
    "process_message": "Process message",
    "idle": "Idle",
    "blocked": "Blocked",
    "not_running": "Not running (runnable)",
    "ready": "Ready (wake to run latency)",
}
MAX_RENDERED_ANOMALIES = 10


def _top(values: dict, top_n: int) -> list[tuple[str, float]]:
    return sorted(values.items(), key=lambda item: (-item[1], item[0]))[:top_n]


def build_report(
    result: ClassificationResult,
    process_name: str,
    process_id: int | None,
    capture_path: str,
    top_n: int = 5,
    notes: list[str] | None = None
) -> dict:
    """
    Convert classifier output into a JSON-serializable report.

    `share_of_span` is each bucket's fraction of the event span, or None for
    an empty span. `ready` overlaps the off-CPU buckets and is excluded from
    `accounted_ms`.
    """
    span_ms = result.span_ms
    durations = {bucket: result.durations.get(bucket, 0.0) for bucket in BUCKETS}
    share_of_span = {
        bucket: (value / span_ms if span_ms > 0 else None)
        for bucket, value in durations.items()
    }
    accounted_ms = sum(value for bucket, value in durations.items() if bucket != "ready")

    span = None
    if result.span is not None:
        span = {"start_ms": result.span[0], "end_ms": result.span[1], "duration_ms": span_ms}

    return {
        "capture_path": capture_path,
        "process_name": process_name,
        "process_id": process_id,
        "thread_id": result.target_thread_id,
        "span": span,
        "counters": {name: result.counters.get(name, 0) for name in COUNTERS},
        "durations_ms": durations,
        "share_of_span": share_of_span,
        "accounted_ms": accounted_ms,
        "top_blocking_labels": [
            {"label": label, "ms": value}
            for label, value in _top(result.blocking_by_label, top_n)
        ],
        "top_sample_labels": [
            {"label": label, "samples": value}
            for label, value in _top(result.samples_by_label, top_n)
        ],
        "switch_out_reasons": dict(sorted(result.switch_out_reasons.items())),
        "anomalies": list(result.anomalies),
        "notes": list(notes or []),
    }


def format_ms(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value:,.3f} ms"


def format_share(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value * 100:.1f}%"


def render_report(report: dict, console: Console) -> None:
    span = report.get("span")
    console.print(
        f"[blue]Thread:[/blue] {report.get('thread_id')} in "
        f"{escape(str(report.get('process_name')))} (pid {report.get('process_id')})"
    )
    if span:
        console.print(
            f"[blue]Span:[/blue] {format_ms(span['start_ms'])} to {format_ms(span['end_ms'])} "
            f"({format_ms(span['duration_ms'])})"
        )

    durations = Table(title="Thread time breakdown")
    durations.add_column("Bucket")
    durations.add_column("Time", justify="right")
    durations.add_column("Share", justify="right")
    for bucket in BUCKETS:
        durations.add_row(
            BUCKET_TITLES[bucket],
            format_ms(report["durations_ms"].get(bucket)),
            format_share(report["share_of_span"].get(bucket))
        )
    durations.add_row("Accounted (excluding ready)", format_ms(report.get("accounted_ms")), "")
    console.print(durations)

    counters = Table(title="Event counters")
    counters.add_column("Counter")
    counters.add_column("Count", justify="right")
    for name, value in report["counters"].items():
        counters.add_row(name, str(value))
    console.print(counters)

    if report.get("top_blocking_labels"):
        labels = Table(title="Top blocking activity labels")
        labels.add_column("Label")
        labels.add_column("Time", justify="right")
        for entry in report["top_blocking_labels"]:
            labels.add_row(escape(entry["label"]), format_ms(entry["ms"]))
        console.print(labels)

    anomalies = report.get("anomalies", [])
    if anomalies:
        console.print(f"[yellow]{len(anomalies)} anomalies detected[/yellow]")
        for line in anomalies[:MAX_RENDERED_ANOMALIES]:
            console.print(f"  [yellow]![/yellow] {escape(line)}")
        if len(anomalies) > MAX_RENDERED_ANOMALIES:
            console.print(f"  ... {len(anomalies) - MAX_RENDERED_ANOMALIES} more in the JSON output")
