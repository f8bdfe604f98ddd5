"""Built-in validator plugins."""

from n8n_transfer.plugins.validators.integrity_validator import IntegrityValidator
from n8n_transfer.plugins.validators.schema_validator import SchemaValidator

__all__ = ["IntegrityValidator", "SchemaValidator"]
