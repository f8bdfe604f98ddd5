"""Exact-match deduplication over configurable fields and tags."""

import json
from collections import Counter
from typing import Any, List, Mapping, Optional

from n8n_transfer.core.models import tag_names
from n8n_transfer.plugins.base import DeduplicatorPlugin

_MISSING = object()


class StandardDeduplicator(DeduplicatorPlugin):
    """Flags a workflow whose compared fields and tags equal an existing one.

    Options:
        compare_fields: Fields compared with case-sensitive equality (default ``["name"]``)
        compare_tags: Also require equal tag sets (default True)
        tag_order_sensitive: Compare tags as ordered lists (default False)
    """

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            "standard-deduplicator",
            "1.0.0",
            options={
                "compare_fields": ["name"],
                "compare_tags": True,
                "tag_order_sensitive": False,
                **(options or {}),
            },
            description="Detects duplicate workflows by exact name and tag comparison (tag order ignored by default)",
        )
        self._last_match: Optional[Mapping[str, Any]] = None

    def is_duplicate(self, workflow: Any, existing_workflows: Any) -> bool:
        self._last_reason = None
        self._last_match = None

        if not isinstance(workflow, Mapping):
            self._last_reason = "Invalid workflow provided for duplicate check"
            return False
        if not isinstance(existing_workflows, list):
            self._last_reason = "Invalid list of existing workflows"
            return False

        fields: List[str] = list(self.get_option("compare_fields", ["name"]))
        compare_tags = self.get_option("compare_tags", True)
        workflow_tags = tag_names(workflow.get("tags"))

        for existing in existing_workflows:
            if not isinstance(existing, Mapping):
                continue
            if not all(self._field_equal(workflow, existing, name) for name in fields):
                continue
            if compare_tags and not self._tags_equal(workflow_tags, tag_names(existing.get("tags"))):
                continue

            self._last_match = existing
            self._last_reason = self._build_reason(workflow, fields, workflow_tags if compare_tags else None)
            return True

        self._last_reason = "No duplicate found"
        return False

    def get_duplicate_workflow(self) -> Optional[Mapping[str, Any]]:
        """Existing workflow matched by the last ``is_duplicate`` call."""
        return self._last_match

    @staticmethod
    def _field_equal(workflow: Mapping[str, Any], existing: Mapping[str, Any], name: str) -> bool:
        value = workflow.get(name, _MISSING)
        return value is not _MISSING and value == existing.get(name, _MISSING)

    def _tags_equal(self, left: List[str], right: List[str]) -> bool:
        if self.get_option("tag_order_sensitive", False):
            return left == right
        return Counter(left) == Counter(right)

    @staticmethod
    def _build_reason(workflow: Mapping[str, Any], fields: List[str], tags: Optional[List[str]]) -> str:
        parts = [f"{name} '{workflow.get(name)}'" for name in fields]
        if tags is not None:
            parts.append(f"tags {json.dumps(tags)}")
        return f"Duplicate workflow found: {' and '.join(parts)} already exist at target"
