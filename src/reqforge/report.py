"""Plain-text and JSON export of execution results."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from reqforge._internal.logging import get_logger

if TYPE_CHECKING:
    from reqforge.metrics.models import EnhancedConcurrentResult

logger = get_logger("report")

_WIDTH = 80
_LABEL_WIDTH = 22


def _section(lines: list[str], title: str) -> None:
    lines.append(title)
    lines.append("-" * _WIDTH)


def _row(lines: list[str], label: str, value: str) -> None:
    lines.append(f"{label + ':':<{_LABEL_WIDTH}}{value}")


def format_text_report(result: EnhancedConcurrentResult) -> str:
    """Render a result as the human-readable text export.

    Args:
        result: Result of a finished execution.

    Returns:
        The report, newline-terminated.
    """
    basic = result.basic
    throughput = result.throughput
    percentiles = result.percentiles
    lines: list[str] = []

    lines.append("=" * _WIDTH)
    lines.append("CONCURRENT EXECUTION RESULTS")
    lines.append("=" * _WIDTH)
    lines.append("")

    _section(lines, "SUMMARY")
    lines.append(result.summary())
    lines.append("")

    _section(lines, "REQUEST STATISTICS")
    _row(lines, "Total Requests", f"{basic.total_requests:,}")
    _row(lines, "Completed Requests", f"{basic.completed_requests:,}")
    _row(lines, "Successful Requests", f"{basic.successful_requests:,}")
    _row(lines, "Failed Requests", f"{basic.failed_requests:,}")
    _row(lines, "Success Rate", f"{basic.success_rate:.2f}%")
    _row(lines, "Failure Rate", f"{basic.failure_rate:.2f}%")
    lines.append("")

    _section(lines, "RESPONSE TIME STATISTICS")
    _row(lines, "Average", f"{basic.avg_response_time_ms:.0f} ms")
    _row(lines, "Minimum", f"{basic.min_response_time_ms:.0f} ms")
    _row(lines, "Maximum", f"{basic.max_response_time_ms:.0f} ms")
    lines.append("")

    _section(lines, "PERCENTILES")
    _row(lines, "P50 (Median)", f"{percentiles.p50:.0f} ms")
    _row(lines, "P95", f"{percentiles.p95:.0f} ms")
    _row(lines, "P99", f"{percentiles.p99:.0f} ms")
    lines.append("")

    _section(lines, "THROUGHPUT")
    _row(lines, "Requests per Second", f"{throughput.requests_per_second:.2f}")
    _row(lines, "Bytes per Second", f"{int(throughput.bytes_per_second):,}")
    _row(lines, "Total Bytes", f"{throughput.total_bytes:,}")
    _row(lines, "Avg Response Size", f"{int(throughput.average_response_size):,} bytes")
    lines.append("")

    errors = result.error_statistics()
    if errors.total_errors > 0:
        _section(lines, "ERROR BREAKDOWN")
        for category, count in sorted(
            errors.breakdown.items(), key=lambda item: (-item[1], item[0].value)
        ):
            lines.append(
                f"{category.value:<30} {count:>6} ({errors.percentages[category]:.2f}%)"
            )
        lines.append("")

    distribution = basic.status_code_distribution()
    if distribution:
        _section(lines, "STATUS CODES")
        for status_code, count in distribution.items():
            _row(lines, str(status_code), f"{count:,}")
        lines.append("")

    _section(lines, "EXECUTION DETAILS")
    _row(lines, "Execution ID", basic.execution_id)
    _row(lines, "Status", basic.status.value)
    _row(lines, "Thread Count", str(basic.thread_count))
    _row(lines, "Iterations/Thread", str(basic.iterations_per_thread))
    _row(lines, "Total Duration", f"{basic.total_duration_seconds * 1000:.0f} ms")
    _row(lines, "Start Time", basic.started_at.isoformat())
    ended_at = basic.started_at + timedelta(seconds=basic.total_duration_seconds)
    _row(lines, "End Time", ended_at.isoformat())
    lines.append("")

    return "\n".join(lines)


def result_to_dict(result: EnhancedConcurrentResult) -> dict[str, Any]:
    """Convert a result into JSON-serialisable primitives.

    Individual attempts are included under ``"results"``, ordered by their
    sequence index.
    """
    basic = result.basic
    errors = result.error_statistics()
    return {
        "execution_id": basic.execution_id,
        "status": basic.status.value,
        "started_at": basic.started_at.isoformat(),
        "duration_seconds": basic.total_duration_seconds,
        "thread_count": basic.thread_count,
        "iterations_per_thread": basic.iterations_per_thread,
        "requests": {
            "total": basic.total_requests,
            "completed": basic.completed_requests,
            "successful": basic.successful_requests,
            "failed": basic.failed_requests,
            "success_rate": basic.success_rate,
            "failure_rate": basic.failure_rate,
        },
        "response_time_ms": {
            "min": basic.min_response_time_ms,
            "avg": basic.avg_response_time_ms,
            "max": basic.max_response_time_ms,
            "p50": result.percentiles.p50,
            "p95": result.percentiles.p95,
            "p99": result.percentiles.p99,
        },
        "throughput": {
            "requests_per_second": result.throughput.requests_per_second,
            "bytes_per_second": result.throughput.bytes_per_second,
            "total_bytes": result.throughput.total_bytes,
            "average_response_size": result.throughput.average_response_size,
        },
        "errors": {
            category.value: {"count": count, "percentage": errors.percentages[category]}
            for category, count in errors.breakdown.items()
        },
        "status_codes": {
            str(code): count for code, count in basic.status_code_distribution().items()
        },
        "results": [
            {
                "worker_id": r.worker_id,
                "iteration": r.iteration,
                "sequence": r.sequence,
                "elapsed_ms": r.elapsed_ms,
                "status_code": r.status_code,
                "response_bytes": r.response_bytes,
                "error": r.error.value if r.error is not None else None,
                "error_message": r.error_message,
            }
            for r in basic.results
        ],
    }


def write_report(result: EnhancedConcurrentResult, path: Path | str) -> Path:
    """Write a result to ``path``.

    The format follows the extension: ``.json`` writes JSON, anything else
    writes the text report. Missing parent directories are created.

    Args:
        result: Result of a finished execution.
        path: Destination file.

    Returns:
        The path written.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    if target.suffix.lower() == ".json":
        content = json.dumps(result_to_dict(result), indent=2)
    else:
        content = format_text_report(result)

    target.write_text(content, encoding="utf-8")
    logger.info("Report written to %s", target)
    return target
