"""Database models."""
from rewards_backend.models.completion_record import CompletionRecord, build_storage_key

__all__ = [
    "CompletionRecord",
    "build_storage_key",
]
