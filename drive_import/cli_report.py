"""Console rendering and report formatting for the drive-import CLI."""
from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .models import DuplicateGroup, FileRecord
from .orchestrator.models import (
    DiscoveryReport,
    ItemStatus,
    UploadReport,
    VerificationReport,
    WorkflowResult,
)
from .services.store import RecordStore
from .utils.events import (
    PHASE_COMPLETE,
    PHASE_START,
    RECORD_DISCOVERED,
    RECORD_FAILED,
    RECORD_RETRY,
    RECORD_UPLOADED,
    RECORD_VERIFIED,
    EventEmitter,
    PhaseProgress,
)

console = Console()

CSV_COLUMNS = [
    "external_id",
    "name",
    "size",
    "mime_type",
    "upload_status",
    "processing_status",
    "destination_id",
    "duplicate_of",
    "attempts",
    "import_error",
    "verification_error",
    "last_error",
]


@dataclass
class StatusReport:
    """Snapshot of the record store for the ``status`` command."""
    counts: Dict[str, Dict[str, int]]
    records: List[FileRecord] = field(default_factory=list)
    failed_only: bool = False
    status_filter: Optional[str] = None

    @property
    def total(self) -> int:
        return sum(self.counts.get("upload", {}).values())


async def collect_status(
    store: RecordStore, status_filter: Optional[str] = None, failed_only: bool = False
) -> StatusReport:
    counts = await store.status_counts()
    if failed_only:
        records = await store.failed_records()
    else:
        records = await store.all_records()
    if status_filter:
        wanted = status_filter.strip().lower()
        records = [
            r for r in records
            if r.upload_status.value == wanted
            or (r.processing_status is not None and r.processing_status.value == wanted)
        ]
    return StatusReport(counts=counts, records=records, failed_only=failed_only, status_filter=status_filter)


def _record_row(record: FileRecord) -> Dict[str, Any]:
    imported = record.import_response
    verified = record.verification_response
    return {
        "external_id": record.external_id,
        "name": record.name,
        "size": record.size,
        "mime_type": record.mime_type,
        "upload_status": record.upload_status.value,
        "processing_status": record.processing_status.value if record.processing_status else None,
        "destination_id": record.destination_id,
        "duplicate_of": record.duplicate_of_external_id,
        "attempts": record.upload_attempts,
        "import_error": imported.error if imported else None,
        "verification_error": verified.error if verified else None,
        "last_error": record.last_error,
    }


def format_json(report: StatusReport) -> str:
    doc = {
        "total_files": report.total,
        "upload": report.counts.get("upload", {}),
        "processing": report.counts.get("processing", {}),
        "files": [
            dict(
                _record_row(r),
                import_response=r.import_response.to_dict() if r.import_response else None,
                verification_response=(
                    r.verification_response.to_dict() if r.verification_response else None
                ),
                discovered_at=r.discovered_at.isoformat() if r.discovered_at else None,
                uploaded_at=r.uploaded_at.isoformat() if r.uploaded_at else None,
                completed_at=r.completed_at.isoformat() if r.completed_at else None,
            )
            for r in report.records
        ],
    }
    return json.dumps(doc, indent=2)


def format_csv(report: StatusReport) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for record in report.records:
        writer.writerow(_record_row(record))
    return buffer.getvalue()


def format_text(report: StatusReport) -> str:
    lines = ["", "Import Session Status", "=" * 21]
    total = report.total
    if report.failed_only:
        lines.append("")
        lines.append(f"Failed: {len(report.records)} files ready for retry")
    else:
        for title, key in (("Upload", "upload"), ("Processing", "processing")):
            lines.append("")
            lines.append(f"{title}:")
            for status, count in sorted(report.counts.get(key, {}).items()):
                percent = round(count / total * 100, 1) if total else 0
                label = "not started" if status == "none" else status
                lines.append(f"  {label}: {count} files ({percent}%)")

    if report.records:
        lines.append("")
        lines.append("-" * 80)
        for record in report.records:
            row = _record_row(record)
            lines.append(f"{record.name} ({record.external_id})")
            lines.append(f"  Upload: {row['upload_status']}")
            lines.append(f"  Processing: {row['processing_status'] or 'not started'}")
            lines.append(f"  Destination: {record.destination_id or 'not uploaded'}")
            if record.duplicate_of_external_id:
                lines.append(f"  Duplicate of: {record.duplicate_of_external_id}")
            if row["attempts"]:
                lines.append(f"  Attempts: {row['attempts']}")
            if row["import_error"]:
                lines.append(f"  Import error: {row['import_error']}")
            if row["verification_error"]:
                lines.append(f"  Verification error: {row['verification_error']}")
            lines.append("-" * 80)
    return "\n".join(lines) + "\n"


FORMATTERS = {"text": format_text, "json": format_json, "csv": format_csv}


def format_duplicates_json(groups: List[DuplicateGroup]) -> str:
    return json.dumps(
        [
            {
                "file_hash": g.file_hash,
                "count": g.count,
                "files": [
                    {"external_id": m.external_id, "name": m.name, "size": m.size, "mime_type": m.mime_type}
                    for m in g.members
                ],
            }
            for g in groups
        ],
        indent=2,
    )


def render_duplicates(groups: List[DuplicateGroup]) -> None:
    if not groups:
        console.print("[green]No duplicate files found[/green]")
        return

    table = Table(title=f"Duplicate groups ({len(groups)})")
    table.add_column("Hash", style="dim")
    table.add_column("Files", justify="right")
    table.add_column("Original", style="bold")
    table.add_column("Duplicates")
    for group in groups:
        table.add_row(
            group.file_hash[:12],
            str(group.count),
            f"{group.original.name} ({group.original.external_id})",
            "\n".join(f"{m.name} ({m.external_id})" for m in group.members[1:]),
        )
    console.print(table)


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]drive-import[/bold green]",
        subtitle="[dim]Google Drive to Humata[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_discovery(report: DiscoveryReport) -> None:
    table = _summary_table("Discovery")
    table.add_row("Files seen", str(report.seen))
    table.add_row("Added", str(report.added))
    table.add_row("Already known", str(report.existing))
    table.add_row("Duplicates", str(report.duplicates))
    table.add_row("Errors", str(len(report.errors)))
    if report.listing_error:
        table.add_row("Listing error", f"[red]{report.listing_error}[/red]")
    if report.timed_out:
        table.add_row("Timed out", "[yellow]yes[/yellow]")
    console.print(table)


def render_upload(report: UploadReport) -> None:
    table = _summary_table("Upload")
    table.add_row("Uploaded", f"[green]{report.uploaded}[/green]")
    table.add_row("Failed", f"[red]{report.failed}[/red]" if report.failed else "0")
    table.add_row("Skipped", str(report.skipped))
    if report.requeued:
        table.add_row("Re-queued", str(report.requeued))
    if report.reclaimed:
        table.add_row("Reclaimed", str(report.reclaimed))
    console.print(table)
    for result in report.results:
        if result.status is ItemStatus.FAILED:
            console.print(f"  [red]✗[/red] {result.name}: {result.error}")


def render_verification(report: VerificationReport) -> None:
    table = _summary_table("Verification")
    table.add_row("Completed", f"[green]{report.completed}[/green]")
    table.add_row("Failed", f"[red]{report.failed}[/red]" if report.failed else "0")
    table.add_row("Still processing", str(report.still_pending))
    table.add_row("Check errors", str(report.check_errors))
    table.add_row("Duration", f"{report.duration:.1f}s")
    if report.timed_out:
        table.add_row("Timed out", "[yellow]yes[/yellow]")
    console.print(table)


def render_workflow(result: WorkflowResult) -> None:
    if result.discovery is not None:
        render_discovery(result.discovery)
    if result.upload is not None:
        render_upload(result.upload)
    if result.verification is not None:
        render_verification(result.verification)
    if result.halted_phase:
        console.print(f"[red]Workflow halted during {result.halted_phase}: {result.error}[/red]")
        console.print(f"[dim]Re-run `drive-import {result.halted_phase}` to resume.[/dim]")


def _summary_table(title: str) -> Table:
    table = Table(title=title, show_header=False, title_justify="left")
    table.add_column(style="bold cyan", justify="right")
    table.add_column()
    return table


class PhaseProgressDisplay:
    """Event-based console display for the three phases."""

    def __init__(self):
        self._phase: Optional[PhaseProgress] = None

    def attach(self, events: EventEmitter) -> "PhaseProgressDisplay":
        events.on(PHASE_START, self.on_phase_start)
        events.on(RECORD_DISCOVERED, self.on_record_discovered)
        events.on(RECORD_UPLOADED, self.on_record_uploaded)
        events.on(RECORD_RETRY, self.on_record_retry)
        events.on(RECORD_FAILED, self.on_record_failed)
        events.on(RECORD_VERIFIED, self.on_record_verified)
        events.on(PHASE_COMPLETE, self.on_phase_complete)
        return self

    def on_phase_start(self, phase: str) -> None:
        self._phase = PhaseProgress(phase=phase)
        console.print(f"[bold cyan]=== {phase.capitalize()} ===[/bold cyan]")

    def on_record_discovered(self, item, duplicate_of: Optional[str]) -> None:
        self._advance()
        if duplicate_of:
            console.print(f"  [yellow]≈[/yellow] {item.name} [dim](duplicate of {duplicate_of})[/dim]")
        else:
            console.print(f"  [cyan]+[/cyan] {item.name}")

    def on_record_uploaded(self, result) -> None:
        self._advance()
        console.print(f"  [green]✓[/green] {result.name} [dim]{result.destination_id}[/dim]")

    def on_record_retry(self, record, attempt: int, error: str) -> None:
        console.print(f"  [yellow]↻[/yellow] {record.name} [dim](attempt {attempt}: {error})[/dim]")

    def on_record_failed(self, result) -> None:
        self._advance(failed=True)
        console.print(f"  [red]✗[/red] {result.name}: {result.error}")

    def on_record_verified(self, record, status) -> None:
        self._advance(failed=status.value == "failed")
        mark = "[green]✓[/green]" if status.value == "completed" else "[red]✗[/red]"
        console.print(f"  {mark} {record.name} [dim]{status.value}[/dim]")

    def on_phase_complete(self, phase: str, report) -> None:
        current = self._phase.current if self._phase else 0
        failed = self._phase.failed if self._phase else 0
        suffix = f", {failed} failed" if failed else ""
        console.print(f"[dim]{phase}: {current} record(s) processed{suffix}[/dim]")
        self._phase = None

    def _advance(self, failed: bool = False) -> None:
        if self._phase is None:
            return
        self._phase.current += 1
        if failed:
            self._phase.failed += 1
