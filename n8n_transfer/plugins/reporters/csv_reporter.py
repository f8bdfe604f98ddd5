"""CSV report with one row per workflow."""

import csv
import io
from typing import Any, List, Mapping, Optional

from n8n_transfer.core.models import TransferState, TransferStatus, TransferSummary, tag_names
from n8n_transfer.plugins.base import ReporterPlugin

HEADER = ["Name", "Status", "Tags", "Nodes", "Source ID", "Target ID", "Reason"]

_STATUS_LABELS = {
    TransferStatus.COMPLETED: "Success",
    TransferStatus.SKIPPED: "Skipped",
    TransferStatus.FAILED: "Failed",
    TransferStatus.CANCELLED: "Cancelled",
    TransferStatus.PENDING: "Pending",
    TransferStatus.VALIDATING: "Validating",
    TransferStatus.TRANSFERRING: "Transferring",
}


class CSVReporter(ReporterPlugin):
    """Renders one CSV row per workflow.

    Fields containing the delimiter, a quote or a newline are quoted with
    internal quotes doubled. Rows end with ``\\n``.

    Options:
        delimiter: Field delimiter (default ``,``)
    """

    extension = "csv"

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            "csv-reporter",
            "1.0.0",
            options={"delimiter": ",", **(options or {})},
            description="Generates a CSV spreadsheet with one row per workflow",
        )

    @staticmethod
    def status_label(state: TransferState) -> str:
        label = _STATUS_LABELS.get(state.status, state.status.value)
        if state.status is TransferStatus.SKIPPED and state.reason:
            return f"{label} ({state.reason})"
        return label

    @staticmethod
    def reason(state: TransferState) -> str:
        if state.reason:
            return state.reason
        if state.validation and state.validation.errors:
            return "; ".join(state.validation.errors)
        return ""

    def row(self, state: TransferState) -> List[Any]:
        workflow = state.workflow
        nodes = workflow.get("nodes")
        return [
            state.name,
            self.status_label(state),
            ", ".join(tag_names(workflow.get("tags"))),
            len(nodes) if isinstance(nodes, list) else 0,
            state.source_id or "",
            state.target_id or "",
            self.reason(state),
        ]

    def generate(self, summary: TransferSummary) -> str:
        buffer = io.StringIO()
        writer = csv.writer(
            buffer,
            delimiter=self.get_option("delimiter", ","),
            quotechar='"',
            doublequote=True,
            quoting=csv.QUOTE_MINIMAL,
            lineterminator="\n",
        )
        writer.writerow(HEADER)
        for state in summary.workflows:
            writer.writerow(self.row(state))
        return buffer.getvalue()
