"""Built-in deduplicator plugins."""

from n8n_transfer.plugins.deduplicators.fuzzy_deduplicator import FuzzyDeduplicator
from n8n_transfer.plugins.deduplicators.standard_deduplicator import StandardDeduplicator

__all__ = ["FuzzyDeduplicator", "StandardDeduplicator"]
