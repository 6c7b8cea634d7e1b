"""
Error taxonomy for pgpipe

Every failure raised by the core carries enough context (version label,
command category, diagnostic text) to be shown to an operator without a
stack trace. Nothing here is retried automatically.
"""

from typing import Any, Dict, Optional


class PgPipeError(Exception):
    """Base exception for all pgpipe errors."""

    category = "pgpipe"

    def __init__(
        self,
        message: str,
        version: Optional[str] = None,
        detail: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.version = version
        self.detail = detail
        self.details = details or {}

    def __str__(self):
        text = self.message
        if self.detail:
            text = f"{text}: {self.detail.strip()}"
        if self.details:
            text = f"{text} | Details: {self.details}"
        return text


class UnsupportedVersionError(PgPipeError):
    """Raised when a PostgreSQL version label is not in the supported set."""

    category = "version"

    def __init__(self, label: Any):
        super().__init__(f"pg version not allowed: {label!r}")
        self.label = label


class ConnectivityError(PgPipeError):
    """Raised when the psql connectivity probe exits non-zero."""

    category = "psql test"

    def __init__(self, version: str, output: str):
        super().__init__(f"error running psql test v{version}", version=version, detail=output)


class DumpFailedError(PgPipeError):
    """Raised through a dump stream when pg_dump exits non-zero."""

    category = "pg_dump"

    def __init__(self, version: str, stderr: str, returncode: Optional[int] = None):
        details = {"returncode": returncode} if returncode is not None else None
        super().__init__(f"error running pg_dump v{version}", version=version, detail=stderr, details=details)
        self.returncode = returncode


class PackagingError(PgPipeError):
    """Raised through an archive stream when building the ZIP fails.

    The original failure (for example a DumpFailedError) is kept as
    ``__cause__``.
    """

    category = "zip"

    def __init__(self, message: str, version: Optional[str] = None, detail: str = ""):
        super().__init__(message, version=version, detail=detail)


class AcquisitionError(PgPipeError):
    """Raised when the restore source cannot be read or fetched."""

    category = "acquisition"

    def __init__(self, source: str, detail: str = ""):
        super().__init__(f"restore: cannot read {source}", detail=detail)
        self.source = source


class ExtractionError(PgPipeError):
    """Raised when the archive is malformed or lacks the required entry."""

    category = "unzip"


class RestoreFailedError(PgPipeError):
    """Raised when psql exits non-zero while ingesting a dump."""

    category = "psql restore"

    def __init__(self, version: str, returncode: Optional[int] = None, detail: str = ""):
        details = {"returncode": returncode} if returncode is not None else None
        super().__init__(f"restore: psql v{version} failed", version=version, detail=detail, details=details)
        self.returncode = returncode


class PipelineCancelledError(PgPipeError):
    """Delivered to readers of a channel whose pipeline was cancelled."""

    category = "pipeline"
