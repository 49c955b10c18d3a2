"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- storage: Blob storage (R2/S3 or in-memory mock), upload tokens, completion delivery
- catalog: JSON-file persistence for the registry and upload records

These wrappers translate between external formats and our domain models.
"""
