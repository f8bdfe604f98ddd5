"""JSON report of a transfer run."""

import json
from typing import Any, Dict, Mapping, Optional

from n8n_transfer.core.models import TransferSummary
from n8n_transfer.plugins.base import ReporterPlugin
from n8n_transfer.plugins.reporters.utils import format_duration, format_rate, workflow_row


class JSONReporter(ReporterPlugin):
    """Renders the summary as a nested JSON document.

    Top-level sections: ``metadata``, ``statistics``, ``workflows``,
    ``errors`` and ``configuration``.

    Options:
        pretty_print: Indent with two spaces (default True)
        include_workflow_details: Emit the per-workflow list (default True)
    """

    extension = "json"

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            "json-reporter",
            "1.0.0",
            options={"pretty_print": True, "include_workflow_details": True, **(options or {})},
            description="Generates JSON reports with metadata, statistics, workflow details and errors",
        )

    def build_report(self, summary: TransferSummary) -> Dict[str, Any]:
        duration_ms = summary.duration_ms
        workflows = []
        if self.get_option("include_workflow_details", True):
            workflows = [workflow_row(state) for state in summary.workflows]

        return {
            "metadata": {
                "timestamp": summary.end_time.isoformat(),
                "duration": {
                    "ms": duration_ms,
                    "seconds": round(duration_ms / 1000, 2),
                    "formatted": format_duration(duration_ms),
                },
                "source": summary.source,
                "target": summary.target,
                "transferStarted": summary.start_time.isoformat(),
                "transferEnded": summary.end_time.isoformat(),
                "dryRun": summary.dry_run,
                "cancelled": summary.cancelled,
            },
            "statistics": {
                "total": summary.total,
                "transferred": summary.transferred,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "duplicates": summary.duplicates,
                "cancelled": summary.cancelled_count,
                "successRate": format_rate(summary.transferred, summary.total),
                "failureRate": format_rate(summary.failed, summary.total),
            },
            "workflows": workflows,
            "errors": [error.to_dict() for error in summary.errors],
            "configuration": {
                "options": dict(summary.options),
                "pluginsUsed": list(summary.plugins_used),
            },
        }

    def generate(self, summary: TransferSummary) -> str:
        indent = 2 if self.get_option("pretty_print", True) else None
        return json.dumps(self.build_report(summary), indent=indent, ensure_ascii=False, default=str)
