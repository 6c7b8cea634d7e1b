"""
pgpipe - Core Module
"""

from .client import PostgresClient
from .config import ConfigManager
from .archive import package_as_archive, extract_entry
from .dump import build_dump_args
from .probe import test_connection
from .versions import PostgresVersion, SupportedVersion, resolve_version, list_versions
from .models import DumpOptions, LocalSource, RemoteSource, RestoreResult
from .errors import (
    PgPipeError, UnsupportedVersionError, ConnectivityError, DumpFailedError,
    PackagingError, AcquisitionError, ExtractionError, RestoreFailedError,
    PipelineCancelledError
)

__all__ = [
    'PostgresClient',
    'ConfigManager',
    'package_as_archive',
    'extract_entry',
    'build_dump_args',
    'test_connection',
    'PostgresVersion',
    'SupportedVersion',
    'resolve_version',
    'list_versions',
    'DumpOptions',
    'LocalSource',
    'RemoteSource',
    'RestoreResult',
    'PgPipeError',
    'UnsupportedVersionError',
    'ConnectivityError',
    'DumpFailedError',
    'PackagingError',
    'AcquisitionError',
    'ExtractionError',
    'RestoreFailedError',
    'PipelineCancelledError'
]
