"""Built-in reporter plugins."""

from n8n_transfer.plugins.reporters.csv_reporter import CSVReporter
from n8n_transfer.plugins.reporters.json_reporter import JSONReporter
from n8n_transfer.plugins.reporters.markdown_reporter import MarkdownReporter

__all__ = ["CSVReporter", "JSONReporter", "MarkdownReporter"]
