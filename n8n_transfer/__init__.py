"""n8n-transfer.

Plugin-extensible engine that migrates workflow definitions between n8n
instances: validation, deduplication, concurrent retryable transfer and
reporting.
"""

__version__ = "1.0.0"
