"""Schema validation of workflow definitions using pydantic models."""

from datetime import datetime, timezone
from typing import Any, List, Mapping

from pydantic import ValidationError

from n8n_transfer.core.models import WorkflowSchema
from n8n_transfer.plugins.base import ValidationResult, ValidatorPlugin


def format_validation_errors(error: ValidationError) -> List[str]:
    """Turn pydantic errors into ``"<dotted.path>: <reason>"`` messages."""
    messages = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue["loc"]) or "root"
        messages.append(f"{path}: {issue['msg']}")
    return messages


class SchemaValidator(ValidatorPlugin):
    """Validates a workflow against the structural workflow contract.

    Every violated constraint becomes one error. Valid workflows without
    tags or settings get advisory warnings.
    """

    def __init__(self) -> None:
        super().__init__(
            "schema-validator",
            "1.0.0",
            description="Validates workflow structure (name, nodes, connections) against the n8n workflow schema",
        )

    def validate(self, workflow: Any) -> ValidationResult:
        metadata = {
            "validator": self.name,
            "version": self.version,
            "validatedAt": datetime.now(timezone.utc).isoformat(),
        }

        if not isinstance(workflow, Mapping):
            return ValidationResult(
                valid=False,
                errors=["root: workflow must be an object"],
                metadata=metadata,
            )

        try:
            parsed = WorkflowSchema.model_validate(dict(workflow))
        except ValidationError as e:
            if isinstance(workflow.get("name"), str):
                metadata["attemptedWorkflowName"] = workflow["name"]
            return ValidationResult(valid=False, errors=format_validation_errors(e), metadata=metadata)

        metadata.update({
            "workflowName": parsed.name,
            "nodeCount": len(parsed.nodes),
            "tagCount": len(parsed.tags or []),
            "isActive": bool(parsed.active),
        })

        warnings = []
        if not parsed.tags:
            warnings.append("Workflow has no tags. Consider adding tags for better organization.")
        if parsed.settings is None:
            warnings.append("Workflow has no settings defined. Default settings will be used.")

        return ValidationResult(valid=True, warnings=warnings, metadata=metadata)
