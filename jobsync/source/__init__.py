"""Operational document store access."""

from jobsync.source.store import DocumentStore, to_object_id

__all__ = ["DocumentStore", "to_object_id"]
