"""Report persistence.

A sink failure is reported on the console and never invalidates the report
that was already produced.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from rich.console import Console

from ..models.report import ConsolidatedReport
from ..utils.sanitize import sanitize_error

console = Console()


@runtime_checkable
class ReportSink(Protocol):
    """Anything that can store a report and return an identifier for it."""

    def persist(self, report: ConsolidatedReport) -> str: ...


def report_filename(report: ConsolidatedReport) -> str:
    safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", report.metadata.contract_name) or "contract"
    stamp = report.metadata.finished_at.strftime("%Y%m%d-%H%M%S")
    return f"{safe_name}-{stamp}.json"


def export_report_json(report: ConsolidatedReport, output_path: Path) -> Path:
    """Write a report to a JSON file (UTF-8, no BOM, camelCase keys)."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(report.to_json_dict(), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    return output_path


class JsonFileSink:
    """Writes ``<directory>/<contract>-<timestamp>.json``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def persist(self, report: ConsolidatedReport) -> str:
        path = export_report_json(report, self.directory / report_filename(report))
        return str(path)


def persist_report(
    report: ConsolidatedReport, sink: ReportSink, quiet: bool = False
) -> Optional[str]:
    """Hand the report to ``sink``. Returns its id, or None if the sink failed."""
    try:
        report_id = sink.persist(report)
    except Exception as e:
        console.print(
            f"  [yellow]WARN[/yellow] Could not persist report: "
            f"{sanitize_error(f'{type(e).__name__}: {e}')}"
        )
        return None
    if not quiet:
        console.print(f"  [green]OK[/green] Report saved: {report_id}")
    return report_id
