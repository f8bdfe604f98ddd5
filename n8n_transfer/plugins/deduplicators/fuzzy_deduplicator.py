"""Content-hash deduplication with optional name similarity."""

import hashlib
import json
from typing import Any, Iterable, Mapping, Optional

from rapidfuzz.distance import Levenshtein

from n8n_transfer.plugins.base import DeduplicatorPlugin

DEFAULT_IGNORED_NODE_FIELDS = ("id", "position", "webhookId")


def name_similarity(left: str, right: str, case_sensitive: bool = False) -> float:
    """Normalized Levenshtein similarity in ``[0, 1]``."""
    left, right = left.strip(), right.strip()
    if not case_sensitive:
        left, right = left.lower(), right.lower()
    if not left and not right:
        return 1.0
    return Levenshtein.normalized_similarity(left, right)


class FuzzyDeduplicator(DeduplicatorPlugin):
    """Flags workflows whose graph content matches an existing workflow.

    The content hash is a SHA-256 over canonical JSON (sorted keys) of the
    workflow's ``nodes`` and ``connections``, so renamed copies and key
    reordering do not hide a duplicate.

    Options:
        ignore_node_fields: Node fields dropped before hashing
            (default ``["id", "position", "webhookId"]``)
        name_threshold: When set (0..1), a name similarity at or above it
            also counts as a duplicate
        case_sensitive: Case-sensitive name similarity (default False)
    """

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(
            "fuzzy-deduplicator",
            "1.0.0",
            options={
                "ignore_node_fields": list(DEFAULT_IGNORED_NODE_FIELDS),
                "name_threshold": None,
                "case_sensitive": False,
                **(options or {}),
            },
            description="Detects duplicate workflows by node/connection content hash, optionally by name similarity",
        )
        self._last_match: Optional[Mapping[str, Any]] = None

    def compute_hash(self, workflow: Mapping[str, Any]) -> str:
        """Stable content hash of a workflow's nodes and connections."""
        ignored = set(self.get_option("ignore_node_fields", DEFAULT_IGNORED_NODE_FIELDS))
        nodes = workflow.get("nodes")
        if isinstance(nodes, list):
            nodes = [
                {k: v for k, v in node.items() if k not in ignored} if isinstance(node, Mapping) else node
                for node in nodes
            ]
        content = {"nodes": nodes, "connections": workflow.get("connections")}
        canonical = json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def is_duplicate(self, workflow: Any, existing_workflows: Any) -> bool:
        self._last_reason = None
        self._last_match = None

        if not isinstance(workflow, Mapping):
            self._last_reason = "Invalid workflow provided for duplicate check"
            return False
        if not isinstance(existing_workflows, list):
            self._last_reason = "Invalid list of existing workflows"
            return False

        candidates = [w for w in existing_workflows if isinstance(w, Mapping)]
        try:
            digest = self.compute_hash(workflow)
            for existing in candidates:
                if self.compute_hash(existing) == digest:
                    self._last_match = existing
                    self._last_reason = (
                        f"Identical content found in '{existing.get('name')}' (hash {digest[:12]})"
                    )
                    return True
        except (TypeError, ValueError) as e:
            self._last_reason = f"Could not hash workflow: {e}"
            return False

        threshold = self.get_option("name_threshold")
        if threshold is not None and isinstance(workflow.get("name"), str):
            if self._match_name(workflow["name"], candidates, float(threshold)):
                return True

        self._last_reason = "No duplicate found"
        return False

    def _match_name(self, name: str, candidates: Iterable[Mapping[str, Any]], threshold: float) -> bool:
        if not 0 <= threshold <= 1:
            self._last_reason = f"Invalid name_threshold {threshold}: must be between 0 and 1"
            return False

        case_sensitive = bool(self.get_option("case_sensitive", False))
        best: Optional[Mapping[str, Any]] = None
        best_score = 0.0
        for existing in candidates:
            other = existing.get("name")
            if not isinstance(other, str) or not other:
                continue
            score = name_similarity(name, other, case_sensitive)
            if score >= best_score:
                best, best_score = existing, score

        if best is not None and best_score >= threshold:
            self._last_match = best
            self._last_reason = f"Similar workflow found: '{best.get('name')}' (similarity: {best_score * 100:.1f}%)"
            return True
        return False

    def get_duplicate_workflow(self) -> Optional[Mapping[str, Any]]:
        """Existing workflow matched by the last ``is_duplicate`` call."""
        return self._last_match
