"""Sync report formatting.

- ``format_sync_report`` -- human-readable post-run summary.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import MergeStats

if TYPE_CHECKING:
    from .models import SyncReport


def _totals(report: SyncReport) -> MergeStats:
    totals = MergeStats()
    for r in report.results:
        if r.stats is None:
            continue
        for name in MergeStats.model_fields:
            setattr(totals, name, getattr(totals, name) + getattr(r.stats, name))
    return totals


def format_sync_report(report: SyncReport) -> str:
    """Format a sync report as human-readable text.

    Failed records are listed with their error; synced and skipped records
    are summarised by count.
    """
    lines: list[str] = [
        f"Sync report for '{report.mapping_type}'",
        f"Started: {report.started_at}",
    ]
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    totals = _totals(report)
    lines.append(
        f"Processed {len(report.results)} records: "
        f"{len(report.synced)} synced, {len(report.skipped)} skipped, "
        f"{len(report.failed)} failed"
    )
    lines.append(
        f"Documents: {totals.created} created, {totals.updated} updated, "
        f"{totals.removed} removed; {totals.uploaded} attachments uploaded"
    )
    if totals.attachment_errors:
        lines.append(f"Attachment errors: {totals.attachment_errors}")
    lines.append("")

    if report.failed:
        lines.append("Failed:")
        for r in report.failed:
            lines.append(f"  {r.remote_id}: {r.error}")
        lines.append("")

    if report.error:
        lines.append(f"Run aborted: {report.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "remote_id": r.remote_id,
            "outcome": r.outcome.value,
        }
        if r.document_id:
            entry["document_id"] = r.document_id
        if r.error:
            entry["error"] = r.error
        if r.stats is not None:
            entry["stats"] = r.stats.model_dump()
        results_list.append(entry)

    return {
        "mapping_type": report.mapping_type,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "error": report.error,
        "counts": {
            "total": len(report.results),
            "synced": len(report.synced),
            "skipped": len(report.skipped),
            "failed": len(report.failed),
        },
        "writes": _totals(report).model_dump(),
        "documents": [doc.id for doc in report.documents],
        "results": results_list,
    }
