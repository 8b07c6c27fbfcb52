"""``reqforge run``: execute one request concurrently with live terminal output."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from reqforge._internal.config import load_config
from reqforge._internal.errors import ReqForgeError
from reqforge._internal.logging import setup_logging
from reqforge.engine.coordinator import ExecutionCoordinator
from reqforge.engine.protocol import ExecutionRequest, ExecutionStatus, RequestTemplate
from reqforge.report import write_report

if TYPE_CHECKING:
    from reqforge.metrics.models import EnhancedConcurrentResult, ExecutionProgress

console = Console(stderr=True)

_REFRESH_SECONDS = 0.25


# ---------------------------------------------------------------------------
# Request construction helpers
# ---------------------------------------------------------------------------


def _parse_headers(raw_headers: list[str]) -> dict[str, str]:
    """Parse ``Name: value`` strings into a header dictionary.

    Args:
        raw_headers: Values of the repeated ``--header`` option.

    Returns:
        Header names mapped to their values.

    Raises:
        typer.BadParameter: If a header has no colon or an empty name.
    """
    headers: dict[str, str] = {}
    for raw in raw_headers:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            msg = f"Header must look like 'Name: value', got: {raw!r}"
            raise typer.BadParameter(msg)
        headers[name.strip()] = value.strip()
    return headers


# ---------------------------------------------------------------------------
# Rich live display
# ---------------------------------------------------------------------------


def _make_live_table(progress: ExecutionProgress | None) -> Table:
    """Build a Rich table summarising the current progress.

    Args:
        progress: Latest progress snapshot, or None if nothing arrived yet.

    Returns:
        Formatted Rich Table.
    """
    table = Table(show_header=True, header_style="bold cyan", expand=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    if progress is None:
        table.add_row("Status", "Starting...")
        return table

    average = progress.average_response_time_ms
    table.add_row("Elapsed", f"{progress.elapsed_seconds:.1f}s")
    table.add_row(
        "Completed",
        f"{progress.completed_requests}/{progress.total_requests} "
        f"({progress.percent_complete:.1f}%)",
    )
    table.add_row("Successful", str(progress.successful_requests))
    table.add_row("Failed", str(progress.failed_requests))
    table.add_row("Avg Response", f"{average:.1f}ms" if average is not None else "-")
    table.add_row("p95 Response", f"{progress.latency_p95_ms:.1f}ms")
    return table


def _print_summary(result: EnhancedConcurrentResult) -> None:
    """Print the final summary tables after the execution ends.

    Args:
        result: Result of the finished execution.
    """
    basic = result.basic
    table = Table(
        title=f"Execution {basic.status.value.capitalize()}",
        show_header=True,
        header_style="bold green",
        expand=True,
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Duration", f"{basic.total_duration_seconds:.2f}s")
    table.add_row("Requests", f"{basic.completed_requests}/{basic.total_requests}")
    table.add_row("Successful", str(basic.successful_requests))
    table.add_row("Failed", str(basic.failed_requests))
    table.add_row("Success Rate", f"{basic.success_rate:.2f}%")
    table.add_row("Requests/sec", f"{result.throughput.requests_per_second:.1f}")
    table.add_row("Min / Avg / Max", (
        f"{basic.min_response_time_ms:.1f} / {basic.avg_response_time_ms:.1f} / "
        f"{basic.max_response_time_ms:.1f}ms"
    ))
    table.add_row("p50 Response", f"{result.percentiles.p50:.1f}ms")
    table.add_row("p95 Response", f"{result.percentiles.p95:.1f}ms")
    table.add_row("p99 Response", f"{result.percentiles.p99:.1f}ms")
    table.add_row("Bytes Received", f"{result.throughput.total_bytes:,}")

    errors = result.error_statistics()
    most_common = errors.most_common()
    if most_common is not None:
        table.add_row("Most Common Error", most_common.value)

    distribution = basic.status_code_distribution()
    if distribution:
        codes_table = Table(
            title="Status Codes",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        codes_table.add_column("Status")
        codes_table.add_column("Count", justify="right")
        for status_code, count in distribution.items():
            codes_table.add_row(str(status_code), str(count))
        console.print(codes_table)

    if errors.total_errors:
        error_table = Table(
            title="Error Breakdown",
            show_header=True,
            header_style="bold red",
            expand=True,
        )
        error_table.add_column("Category")
        error_table.add_column("Count", justify="right")
        error_table.add_column("Share", justify="right")
        for category, count in errors.breakdown.items():
            error_table.add_row(
                category.value, str(count), f"{errors.percentages[category]:.1f}%"
            )
        console.print(error_table)

    console.print(table)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def run_cmd(
    url: str = typer.Argument(..., help="Absolute http(s) URL to request."),
    method: str = typer.Option("GET", "--method", "-X", help="HTTP method."),
    header: list[str] = typer.Option(
        [],
        "--header",
        "-H",
        help="Request header as 'Name: value'. Repeatable.",
    ),
    data: str | None = typer.Option(None, "--data", "-d", help="Request body."),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        help="Per-request timeout in seconds (default: REQFORGE_TIMEOUT or 30).",
    ),
    threads: int = typer.Option(1, "--threads", "-t", help="Concurrent workers."),
    iterations: int = typer.Option(1, "--iterations", "-n", help="Requests per worker."),
    ramp_up: float = typer.Option(
        0.0,
        "--ramp-up",
        "-r",
        help="Seconds over which worker start times are spread.",
    ),
    no_follow_redirects: bool = typer.Option(
        False,
        "--no-follow-redirects",
        help="Report 3xx responses instead of following them.",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Export the result to this file (.json for JSON, text otherwise).",
    ),
    fail_on_error_rate: float | None = typer.Option(
        None,
        "--fail-on-error-rate",
        help="Exit non-zero if the failure rate exceeds this threshold (e.g., 0.05).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose (DEBUG) logging.",
    ),
) -> None:
    """Execute a request concurrently with live terminal output."""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)

    try:
        config = load_config()
    except ReqForgeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    template = RequestTemplate(
        method=method.upper(),
        url=url,
        headers=_parse_headers(header),
        body=data,
        timeout=timeout if timeout is not None else config.request_timeout,
        follow_redirects=not no_follow_redirects,
    )
    request = ExecutionRequest(
        template=template,
        thread_count=threads,
        iterations_per_thread=iterations,
        ramp_up_seconds=ramp_up,
    )

    violations = request.validate()
    if violations:
        console.print("[red]Invalid execution request:[/red]")
        for violation in violations:
            console.print(f"  - {violation}")
        raise typer.Exit(code=2)

    console.print(
        Panel(
            f"[bold]Request:[/bold]    {template.method} {template.url}\n"
            f"[bold]Threads:[/bold]    {threads}\n"
            f"[bold]Iterations:[/bold] {iterations} per thread "
            f"({request.total_requests} total)\n"
            f"[bold]Ramp-up:[/bold]    {ramp_up}s",
            title="ReqForge",
            border_style="cyan",
        )
    )

    coordinator = ExecutionCoordinator(config=config)

    # Mutable holder so the listener thread can hand snapshots to the display
    latest: list[ExecutionProgress | None] = [None]
    latest_lock = threading.Lock()

    def _on_progress(progress: ExecutionProgress) -> None:
        with latest_lock:
            latest[0] = progress

    try:
        execution_id = coordinator.start(request)
    except ReqForgeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    coordinator.add_progress_listener(execution_id, _on_progress)

    try:
        with Live(
            _make_live_table(None),
            console=console,
            refresh_per_second=4,
            transient=True,
        ) as live:
            while True:
                try:
                    finished = coordinator.wait(execution_id, timeout=_REFRESH_SECONDS)
                except KeyboardInterrupt:
                    console.print("[yellow]Cancelling, waiting for in-flight requests...[/yellow]")
                    coordinator.cancel(execution_id)
                    continue
                with latest_lock:
                    live.update(_make_live_table(latest[0]))
                if finished:
                    break
        result = coordinator.get_result(execution_id)
    finally:
        coordinator.shutdown()

    _print_summary(result)

    if output is not None:
        try:
            written = write_report(result, output)
        except OSError as exc:
            console.print(f"[red]Could not write report:[/red] {exc}")
            raise typer.Exit(code=1) from exc
        console.print(f"Report written to [bold]{written}[/bold]")

    if result.status is ExecutionStatus.CANCELLED:
        console.print("[yellow]Execution cancelled.[/yellow]")
        raise typer.Exit(code=130)

    if result.status is ExecutionStatus.FAILED:
        console.print("[red]Execution failed:[/red] see the log output for details")
        raise typer.Exit(code=1)

    failure_rate = result.failure_rate / 100.0
    if fail_on_error_rate is not None and failure_rate > fail_on_error_rate:
        console.print(
            f"[red]FAIL:[/red] Failure rate {failure_rate * 100:.2f}% "
            f"exceeds threshold {fail_on_error_rate * 100:.2f}%"
        )
        raise typer.Exit(code=1)

    console.print("[green]Execution completed successfully.[/green]")
