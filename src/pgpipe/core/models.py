"""
Data models for pgpipe
"""

from pathlib import Path
from typing import List, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DumpOptions(BaseModel):
    """pg_dump switches; every field maps to exactly one flag when true"""
    model_config = ConfigDict(frozen=True)

    # --data-only: table data, large objects and sequence values only
    data_only: bool = Field(False, description="Dump only the data, not the schema")
    # --schema-only: object definitions only
    schema_only: bool = Field(False, description="Dump only the schema, not the data")
    # --clean: DROP each object before creating it
    drop_before_create: bool = Field(False, description="Emit DROP statements before CREATE")
    # --if-exists: use DROP ... IF EXISTS, only valid together with --clean
    drop_if_exists: bool = Field(False, description="Use DROP ... IF EXISTS")
    # --create: create the database itself and reconnect to it
    create_target_database: bool = Field(False, description="Emit CREATE DATABASE")
    # --no-comments
    omit_comments: bool = Field(False, description="Do not dump comments")

    @model_validator(mode="after")
    def check_drop_if_exists(self):
        if self.drop_if_exists and not self.drop_before_create:
            raise ValueError("drop_if_exists requires drop_before_create")
        return self


class LocalSource(BaseModel):
    """Archive stored on the local filesystem"""
    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Path to the ZIP archive")

    def describe(self) -> str:
        return str(self.path)


class RemoteSource(BaseModel):
    """Archive fetched over HTTP(S)"""
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="HTTP(S) URL of the ZIP archive")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("URL must be an absolute http(s) URL")
        return v

    def describe(self) -> str:
        # Signed URLs carry credentials in the query string and userinfo
        parsed = urlparse(self.url)
        host = parsed.hostname or ""
        if parsed.port:
            host = f"{host}:{parsed.port}"
        return f"{parsed.scheme}://{host}{parsed.path}"


RestoreSource = Union[LocalSource, RemoteSource]


class StageOutcome(BaseModel):
    """How one pipeline stage finished"""
    name: str = Field(..., description="Stage name")
    bytes_out: int = Field(0, description="Bytes written to the next stage")
    duration: float = Field(0.0, description="Wall time in seconds")
    error: str = Field("", description="Error message if the stage failed")
    stopped: bool = Field(False, description="Stopped early because the next stage stopped reading")

    @property
    def ok(self) -> bool:
        return not self.error


class RestoreResult(BaseModel):
    """Restore operation result"""
    version: str = Field(..., description="PostgreSQL version label used")
    source: str = Field(..., description="Archive location")
    stages: List[StageOutcome] = Field(default_factory=list, description="Per-stage outcomes")
    duration: float = Field(0.0, description="Total wall time in seconds")

    @property
    def bytes_restored(self) -> int:
        """Bytes of SQL handed to psql"""
        for stage in self.stages:
            if stage.name == "extraction":
                return stage.bytes_out
        return 0
