"""Process-wide identifiers shared by logging helpers."""

SERVICE_NAME = "batch-worker"
