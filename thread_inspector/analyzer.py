"""End-to-end analysis of one capture for the configured target thread."""

from pathlib import Path

from thread_inspector.capture import CaptureLog, locate_capture, open_event_source
from thread_inspector.classifier import classify
from thread_inspector.config import InspectorConfig
from thread_inspector.errors import ProcessSelectionError, TargetThreadError
from thread_inspector.report import build_report
from thread_inspector.stacks import locate_target_thread
from thread_inspector.symbols import SymbolResolver


def select_process(pids: list[int], process_name: str) -> int:
    """Return the only matching process id, or raise ProcessSelectionError."""
    if not pids:
        raise ProcessSelectionError(f"No {process_name} process found in capture")
    if len(pids) > 1:
        listed = ", ".join(str(pid) for pid in pids)
        raise ProcessSelectionError(
            f"Expected exactly one {process_name} process, found {len(pids)}: {listed}"
        )
    return pids[0]


def analyze_capture(
    capture_path: str,
    config: InspectorConfig,
    log: CaptureLog,
    local_symbols: bool = False,
    work_dir: Path | None = None
) -> dict:
    """
    Analyze a capture and return the report dictionary.

    Args:
        capture_path: Capture file or archive path
        config: Target process, signatures and label buckets
        log: Receives acquisition and conversion diagnostics
        local_symbols: Only use the local symbol cache
        work_dir: Where archives are unpacked (a temp dir by default)

    Raises:
        InspectorError subclasses for fatal conditions
    """
    path = locate_capture(Path(capture_path), log, work_dir)
    resolver = SymbolResolver(
        config.symbol_cache,
        server_url=config.symbol_server,
        local_only=local_symbols
    )
    source = open_event_source(path, log, resolver)

    try:
        pids = source.find_processes(config.process_name)
        pid = select_process(pids, config.process_name)
        log.note("select", f"Target process {config.process_name} pid={pid}")

        samples = source.load_samples(pid)
        tid = locate_target_thread(samples, config.entry_signature)
        if tid is None:
            raise TargetThreadError(
                f"No sample of pid {pid} contains {config.entry_signature} "
                f"({len(samples)} samples searched)"
            )
        log.note("select", f"Target thread tid={tid}")

        events = source.load_events(pid, tid)
        result = classify(
            events,
            tid,
            config.anchor_signature,
            label_buckets=config.label_buckets()
        )
    finally:
        log.extend("source", source.notes)
        log.extend("symbols", resolver.notes)
        source.close()

    if resolver.resolved_count or resolver.unresolved_count:
        log.note(
            "symbols",
            f"Resolved {resolver.resolved_count} address frames, "
            f"{resolver.unresolved_count} left unresolved"
        )

    return build_report(
        result,
        process_name=config.process_name,
        process_id=pid,
        capture_path=str(capture_path),
        top_n=config.top_n,
        notes=log.messages()
    )
