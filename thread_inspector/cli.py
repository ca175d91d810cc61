"""CLI entry point for the thread inspector."""

import typer
from dataclasses import replace
from typing import Optional
from pathlib import Path
from rich.console import Console
from thread_inspector.analyzer import analyze_capture
from thread_inspector.capture import CaptureLog
from thread_inspector.config import load_config
from thread_inspector.errors import InspectorError
from thread_inspector.report import render_report

app = typer.Typer(
    help="Thread inspector - Break down where a UI thread spends its time",
    no_args_is_help=True
)
console = Console()


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Thread inspector - Break down where a UI thread spends its time."""
    if ctx.invoked_subcommand is None:
        # Show help if no subcommand is provided
        pass


@app.command()
def analyze(
    capture: Path = typer.Option(..., "--capture", help="Path to the capture (JSON event log, Perfetto trace or .zip)"),
    out: Path = typer.Option("analysis.json", "--out", help="Output JSON file path"),
    save_logs: bool = typer.Option(False, "--save-logs", help="Write capture diagnostics next to the capture"),
    local_symbols: bool = typer.Option(False, "--local-symbols", help="Only use the local symbol cache"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="JSON file overriding signatures and buckets"),
    process: Optional[str] = typer.Option(None, "--process", help="Target process image name"),
    top_n: Optional[int] = typer.Option(None, "--top-n", help="Number of top activity labels to report"),
):
    """Analyze a capture and write the thread time breakdown to JSON."""
    log = CaptureLog()

    try:
        config = load_config(config_path)
        if process:
            config = replace(config, process_name=process)
        if top_n is not None:
            config = replace(config, top_n=top_n)

        console.print(f"[blue]Analyzing capture:[/blue] {capture}")
        console.print(f"[blue]Output file:[/blue] {out}")
        console.print(f"[blue]Target process:[/blue] {config.process_name}")
        console.print(f"[blue]Entry signature:[/blue] {config.entry_signature}")
        console.print(f"[blue]Anchor signature:[/blue] {config.anchor_signature}")
        if local_symbols:
            console.print(f"[blue]Symbols:[/blue] local cache only ({config.symbol_cache})")

        report = analyze_capture(
            capture_path=str(capture),
            config=config,
            log=log,
            local_symbols=local_symbols
        )
    except InspectorError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]Error during analysis:[/red] {e}")
        raise typer.Exit(code=1)
    finally:
        if save_logs:
            _save_logs(capture, log)

    import json
    with open(out, 'w') as f:
        json.dump(report, f, indent=2)

    render_report(report, console)
    console.print(f"[green]✓[/green] Analysis complete: {out}")


def _save_logs(capture: Path, log: CaptureLog) -> None:
    log_path = capture.with_name(capture.name + ".inspector.log")
    try:
        log.save(log_path)
    except OSError as e:
        console.print(f"[yellow]Warning:[/yellow] Could not write log {log_path}: {e}")
        return
    console.print(f"[green]✓[/green] Capture log written to: {log_path}")


if __name__ == "__main__":
    app()
