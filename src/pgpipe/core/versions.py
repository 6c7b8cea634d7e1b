"""
Supported PostgreSQL versions and their client toolsets

Versions supported here must be supported by the PostgreSQL versioning
policy (https://www.postgresql.org/support/versioning/). Backing up a
database from an unsupported release is not allowed, so adding a version
means adding an enum member; unknown labels never fall through.
"""

from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_TOOLS_ROOT
from .errors import UnsupportedVersionError


class PostgresVersion(str, Enum):
    PG13 = "13"
    PG14 = "14"
    PG15 = "15"
    PG16 = "16"
    PG17 = "17"


class SupportedVersion(BaseModel):
    """A supported PostgreSQL release bound to its pg_dump and psql binaries"""
    model_config = ConfigDict(frozen=True)

    version: PostgresVersion = Field(..., description="Supported release")
    dump_tool: Path = Field(..., description="Absolute path to pg_dump")
    interactive_tool: Path = Field(..., description="Absolute path to psql")

    @property
    def label(self) -> str:
        return self.version.value

    @classmethod
    def for_version(cls, version: PostgresVersion, tools_root: Path = DEFAULT_TOOLS_ROOT) -> "SupportedVersion":
        bin_dir = Path(tools_root) / version.value / "bin"
        return cls(
            version=version,
            dump_tool=bin_dir / "pg_dump",
            interactive_tool=bin_dir / "psql",
        )


def resolve_version(label: Any, tools_root: Optional[Path] = None) -> SupportedVersion:
    """Return the toolset for ``label`` or raise UnsupportedVersionError"""
    if not isinstance(label, str):
        raise UnsupportedVersionError(label)
    try:
        version = PostgresVersion(label)
    except ValueError:
        raise UnsupportedVersionError(label) from None
    return SupportedVersion.for_version(version, tools_root or DEFAULT_TOOLS_ROOT)


def list_versions(tools_root: Optional[Path] = None) -> List[SupportedVersion]:
    """All supported versions, oldest first"""
    return [
        SupportedVersion.for_version(version, tools_root or DEFAULT_TOOLS_ROOT)
        for version in PostgresVersion
    ]
