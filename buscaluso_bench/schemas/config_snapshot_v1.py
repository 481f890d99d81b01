from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def file_sha256_hex(path: str | Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 16), b""):
            h.update(chunk)
    return h.hexdigest()


class FileIdentity(BaseModel):
    """Input file used by a session: where it was and what it contained."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    path: str
    sha256: str = Field(..., min_length=64, max_length=64)

    @classmethod
    def of(cls, path: str | Path) -> "FileIdentity":
        return cls(path=str(path), sha256=file_sha256_hex(path))


class ConfigSnapshotV1(BaseModel):
    """Run settings stored with every session."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    schema_version: str = "config_snapshot_v1"
    machine: str = Field(..., min_length=1)
    repeat: int = Field(..., gt=0)
    timeout: float = Field(..., gt=0.0)
    warmup: bool = True
    searcher: str
    searcher_command: Optional[list[str]] = None
    rules: FileIdentity
    dictionary: FileIdentity
    bench: FileIdentity
    n_trials: int = Field(..., ge=0)


__all__ = ["ConfigSnapshotV1", "FileIdentity", "file_sha256_hex"]
