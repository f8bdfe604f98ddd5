"""Markdown report of a transfer run."""

from typing import Any, Callable, List, Mapping, Optional, Sequence

from n8n_transfer.core.models import TransferState, TransferStatus, TransferSummary
from n8n_transfer.plugins.base import ReporterPlugin
from n8n_transfer.plugins.reporters.utils import format_duration

_EMOJIS = {
    "title": "📊",
    "total": "📋",
    "success": "✅",
    "skipped": "⏭️",
    "failed": "❌",
    "duplicate": "🔄",
    "cancelled": "🛑",
    "errors": "🔍",
    "warning": "⚠️",
}


def escape_cell(value: Any) -> str:
    """Make a value safe for a Markdown table cell."""
    text = "" if value is None else str(value)
    return text.replace("\\", "\\\\").replace("|", "\\|").replace("\r", " ").replace("\n", " ")


def _percentage(value: int, total: int) -> str:
    if total == 0:
        return "0.0"
    return f"{value / total * 100:.1f}"


class MarkdownReporter(ReporterPlugin):
    """Renders the summary as a Markdown document.

    Sections: header, summary table, transferred / skipped / failed /
    cancelled tables, error details and footer. Empty sections are omitted.

    Options:
        include_emojis: Prefix headings with emojis (default False)
    """

    extension = "md"

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            "markdown-reporter",
            "1.0.0",
            options={"include_emojis": False, **(options or {})},
            description="Generates transfer reports in Markdown",
        )

    def _icon(self, key: str) -> str:
        if not self.get_option("include_emojis", False):
            return ""
        return f"{_EMOJIS[key]} "

    def generate(self, summary: TransferSummary) -> str:
        sections = [
            self._header(summary),
            self._summary_table(summary),
            self._table(
                summary.by_status(TransferStatus.COMPLETED),
                f"## {self._icon('success')}Transferred Workflows",
                ["Workflow Name", "Source ID", "Target ID"],
                lambda s: [s.name, f"`{s.source_id or 'N/A'}`", f"`{s.target_id or 'N/A'}`"],
            ),
            self._table(
                summary.by_status(TransferStatus.SKIPPED),
                f"## {self._icon('skipped')}Skipped Workflows",
                ["Workflow Name", "Reason"],
                lambda s: [s.name, s.reason or "Not specified"],
            ),
            self._table(
                summary.by_status(TransferStatus.FAILED),
                f"## {self._icon('failed')}Failed Workflows",
                ["Workflow Name", "Error"],
                lambda s: [s.name, s.reason or "Unknown error"],
            ),
            self._table(
                summary.by_status(TransferStatus.CANCELLED),
                f"## {self._icon('cancelled')}Cancelled Workflows",
                ["Workflow Name"],
                lambda s: [s.name],
            ),
            self._error_details(summary),
            self._footer(summary),
        ]
        return "\n\n".join(section for section in sections if section) + "\n"

    def _header(self, summary: TransferSummary) -> str:
        lines = [
            f"# {self._icon('title')}n8n Transfer Report",
            "",
            f"**Date:** {summary.start_time.isoformat()}",
            f"**Duration:** {format_duration(summary.duration_ms)}",
            f"**Source:** {summary.source}",
            f"**Target:** {summary.target}",
        ]
        if summary.dry_run:
            lines.append("**Mode:** dry run (no workflows were written)")
        if summary.cancelled:
            lines.append("**Cancelled:** yes")
        lines.extend(["", "---"])
        return "\n".join(lines)

    def _summary_table(self, summary: TransferSummary) -> str:
        total = summary.total
        rows = [
            ("total", "Total Workflows", total, "100"),
            ("success", "Transferred", summary.transferred, _percentage(summary.transferred, total)),
            ("skipped", "Skipped", summary.skipped, _percentage(summary.skipped, total)),
            ("failed", "Failed", summary.failed, _percentage(summary.failed, total)),
            ("duplicate", "Duplicates Detected", summary.duplicates, _percentage(summary.duplicates, total)),
        ]
        if summary.cancelled_count:
            rows.append((
                "cancelled", "Cancelled", summary.cancelled_count, _percentage(summary.cancelled_count, total),
            ))

        lines = [
            f"## {self._icon('total')}Summary",
            "",
            "| Metric | Count | Percentage |",
            "|--------|-------|------------|",
        ]
        for icon, label, count, percent in rows:
            lines.append(f"| {self._icon(icon)}**{label}** | {count} | {percent}% |")
        return "\n".join(lines)

    def _table(
        self,
        states: List[TransferState],
        heading: str,
        columns: Sequence[str],
        row: Callable[[TransferState], List[str]],
    ) -> Optional[str]:
        if not states:
            return None
        lines = [
            heading,
            "",
            "| # | " + " | ".join(columns) + " |",
            "|---|" + "|".join("-" * (len(c) + 2) for c in columns) + "|",
        ]
        for index, state in enumerate(states, start=1):
            cells = [escape_cell(cell) for cell in row(state)]
            lines.append(f"| {index} | " + " | ".join(cells) + " |")
        return "\n".join(lines)

    def _error_details(self, summary: TransferSummary) -> Optional[str]:
        if not summary.errors:
            return None
        items = []
        for index, error in enumerate(summary.errors, start=1):
            items.append(
                f"{index}. **{error.workflow}**\n"
                f"   - **Code:** `{error.code}`\n"
                f"   - **Message:** {error.message}"
            )
        return f"## {self._icon('errors')}Error Details\n\n" + "\n\n".join(items)

    def _footer(self, summary: TransferSummary) -> str:
        if summary.cancelled:
            status = "cancelled"
        elif summary.failed:
            status = "completed with errors"
        else:
            status = "completed successfully"

        lines = ["---", "", f"Transfer **{status}** at {summary.end_time.isoformat()}"]
        if summary.failed:
            lines.extend([
                "",
                f"> {self._icon('warning')}**Attention:** {summary.failed} workflow(s) failed "
                f"during the transfer. See the error details above.",
            ])
        return "\n".join(lines)
