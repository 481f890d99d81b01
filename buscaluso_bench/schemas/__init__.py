"""Pydantic schemas persisted alongside benchmark sessions."""

from .config_snapshot_v1 import ConfigSnapshotV1, FileIdentity

__all__ = [
    "ConfigSnapshotV1",
    "FileIdentity",
]
