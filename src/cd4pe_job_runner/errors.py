"""Exceptions surfaced to callers of the job runner."""

from __future__ import annotations


class JobConfigError(ValueError):
    """Invalid job configuration detected before any subprocess is spawned."""


class ArchiveFormatError(ValueError):
    """Corrupt or unsupported job payload archive."""


class PayloadFetchError(RuntimeError):
    """Job payload could not be downloaded from the web UI."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
