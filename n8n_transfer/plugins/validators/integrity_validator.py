"""Structural integrity validation for workflow graphs.

Checks run in order: node presence, connection referential integrity,
credential sanity, orphaned nodes and circular dependencies. Without nodes
the remaining checks are skipped.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from n8n_transfer.core.models import workflow_name
from n8n_transfer.plugins.base import ValidationResult, ValidatorPlugin


def _iter_connections(connection_types: Any) -> Iterator[Any]:
    """Yield every connection entry below one source node, skipping malformed levels."""
    if not isinstance(connection_types, Mapping):
        return
    for outputs in connection_types.values():
        if not isinstance(outputs, list):
            continue
        for slot in outputs:
            if not isinstance(slot, list):
                continue
            yield from slot


def _target(connection: Any) -> Optional[str]:
    if isinstance(connection, Mapping) and isinstance(connection.get("node"), str) and connection["node"]:
        return connection["node"]
    return None


def _node_id(node: Mapping[str, Any]) -> Optional[str]:
    node_id = node.get("id")
    return node_id if isinstance(node_id, str) else None


class IntegrityValidator(ValidatorPlugin):
    """Validates node/connection consistency of a workflow.

    Blocking errors: no nodes, connections referencing unknown nodes,
    circular dependencies. Everything else is reported as a warning.
    """

    def __init__(self) -> None:
        super().__init__(
            "integrity-validator",
            "1.0.0",
            description=(
                "Validates structural integrity of n8n workflows (nodes, connections, "
                "credentials, orphaned nodes, circular dependencies)"
            ),
        )

    def validate(self, workflow: Any) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []
        nodes = workflow.get("nodes") if isinstance(workflow, Mapping) else None
        metadata: Dict[str, Any] = {
            "workflowName": workflow_name(workflow),
            "nodeCount": len(nodes) if isinstance(nodes, list) else 0,
            "connectionCount": 0,
            "credentialNodeCount": 0,
            "orphanedNodeCount": 0,
            "circularDependencies": False,
            "validator": self.name,
            "validatedAt": datetime.now(timezone.utc).isoformat(),
        }

        if not isinstance(nodes, list) or not nodes:
            errors.append("Workflow has no nodes - at least 1 node is required")
            return ValidationResult(valid=False, errors=errors, warnings=warnings, metadata=metadata)

        nodes = [node for node in nodes if isinstance(node, Mapping)]
        connections = workflow.get("connections")
        if not isinstance(connections, Mapping):
            warnings.append("Workflow has no connections defined")
            connections = {}

        metadata["connectionCount"] = self._check_connections(nodes, connections, errors, warnings)
        metadata["credentialNodeCount"] = self._check_credentials(nodes, warnings)
        metadata["orphanedNodeCount"] = self._detect_orphans(nodes, connections, warnings)
        metadata["circularDependencies"] = self._detect_cycle(nodes, connections, errors)

        return ValidationResult(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            metadata=metadata,
        )

    def _check_connections(
        self,
        nodes: List[Mapping[str, Any]],
        connections: Mapping[str, Any],
        errors: List[str],
        warnings: List[str],
    ) -> int:
        """Check that every source and target node exists; return the valid connection count."""
        node_ids = {_node_id(node) for node in nodes} - {None}
        count = 0

        for source_id, connection_types in connections.items():
            if source_id not in node_ids:
                errors.append(f'Connection from source node "{source_id}" references nonexistent node')
                continue
            if not isinstance(connection_types, Mapping):
                warnings.append(f'Connections of node "{source_id}" are not an object')
                continue

            for connection_type, outputs in connection_types.items():
                if not isinstance(outputs, list):
                    warnings.append(f'Connection type "{connection_type}" in node "{source_id}" is not an array')
                    continue

                for index, slot in enumerate(outputs):
                    if not isinstance(slot, list):
                        warnings.append(f'Connection output {index} in node "{source_id}" is not an array')
                        continue

                    for connection in slot:
                        if not isinstance(connection, Mapping):
                            warnings.append(f'Invalid connection (not an object) in node "{source_id}"')
                            continue
                        target = connection.get("node")
                        if not target:
                            errors.append(
                                f'Connection in node "{source_id}" has no "node" property (target node ID)'
                            )
                            continue
                        if not isinstance(target, str):
                            warnings.append(f'Invalid connection target (not a node ID) in node "{source_id}"')
                            continue
                        if target not in node_ids:
                            errors.append(
                                f'Connection of source node "{source_id}" to "{target}" '
                                f"references nonexistent target node"
                            )
                            continue
                        count += 1

        return count

    def _check_credentials(self, nodes: List[Mapping[str, Any]], warnings: List[str]) -> int:
        count = 0
        for node in nodes:
            label = f'Node "{node.get("name")}" ({node.get("id")})'
            credentials = node.get("credentials")

            if isinstance(credentials, Mapping):
                if not credentials:
                    warnings.append(f"{label} has an empty credentials property")
                else:
                    count += 1
                    for cred_type, cred in credentials.items():
                        if not isinstance(cred, Mapping):
                            warnings.append(f'{label} has invalid credential "{cred_type}" (not an object)')
                        elif not cred.get("id") and not cred.get("name"):
                            warnings.append(f'{label} has credential "{cred_type}" without ID or name')

            if node.get("disabled") is True:
                warnings.append(f"{label} is disabled")

        return count

    def _detect_orphans(
        self,
        nodes: List[Mapping[str, Any]],
        connections: Mapping[str, Any],
        warnings: List[str],
    ) -> int:
        if not connections:
            # A lone node needs no connections
            if len(nodes) > 1:
                warnings.append(
                    f"Workflow has {len(nodes)} nodes but no connections - all nodes are orphaned"
                )
                return len(nodes)
            return 0

        outgoing: Set[str] = set(connections.keys())
        incoming: Set[str] = set()
        for connection_types in connections.values():
            for connection in _iter_connections(connection_types):
                target = _target(connection)
                if target:
                    incoming.add(target)

        orphaned = 0
        for node in nodes:
            node_id = _node_id(node)
            if node_id not in outgoing and node_id not in incoming:
                warnings.append(
                    f'Node "{node.get("name")}" ({node.get("id")}) is orphaned - '
                    f"no incoming or outgoing connections"
                )
                orphaned += 1
        return orphaned

    def _build_graph(self, connections: Mapping[str, Any]) -> Dict[str, List[str]]:
        graph: Dict[str, List[str]] = {}
        for source_id, connection_types in connections.items():
            neighbors = graph.setdefault(source_id, [])
            for connection in _iter_connections(connection_types):
                target = _target(connection)
                if target:
                    neighbors.append(target)
        return graph

    def _detect_cycle(
        self,
        nodes: List[Mapping[str, Any]],
        connections: Mapping[str, Any],
        errors: List[str],
    ) -> bool:
        """Depth-first search for a directed cycle; reports the first one found."""
        if not connections:
            return False

        graph = self._build_graph(connections)
        names = {_node_id(node): node.get("name") for node in nodes if _node_id(node) is not None}
        visited: Set[str] = set()

        for node in nodes:
            start = _node_id(node)
            if start is None or start in visited:
                continue

            path: List[str] = [start]
            on_path: Set[str] = {start}
            stack: List[Tuple[str, Iterator[str]]] = [(start, iter(graph.get(start, ())))]
            visited.add(start)

            while stack:
                current, neighbors = stack[-1]
                advanced = False
                for neighbor in neighbors:
                    if neighbor in on_path:
                        cycle = path[path.index(neighbor):] + [neighbor]
                        errors.append(
                            "Circular dependency detected: "
                            + " -> ".join(self._label(node_id, names) for node_id in cycle)
                        )
                        return True
                    if neighbor not in visited:
                        visited.add(neighbor)
                        path.append(neighbor)
                        on_path.add(neighbor)
                        stack.append((neighbor, iter(graph.get(neighbor, ()))))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    on_path.discard(path.pop())

        return False

    @staticmethod
    def _label(node_id: str, names: Mapping[Any, Any]) -> str:
        if node_id in names:
            return f'"{names[node_id]}" ({node_id})'
        return str(node_id)
