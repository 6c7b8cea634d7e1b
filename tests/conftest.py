"""Shared fixtures: a temporary tools root populated with fake pg_dump/psql scripts."""

import textwrap

import pytest

from pgpipe.core.versions import PostgresVersion, SupportedVersion


@pytest.fixture
def tools_root(tmp_path):
    root = tmp_path / "tools"
    (root / "15" / "bin").mkdir(parents=True)
    return root


@pytest.fixture
def pg15(tools_root):
    return SupportedVersion.for_version(PostgresVersion.PG15, tools_root)


@pytest.fixture
def install_tool(tools_root):
    """Write an executable /bin/sh script standing in for a PostgreSQL client tool."""

    def install(name, body, label="15"):
        path = tools_root / label / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip("\n"))
        path.chmod(0o755)
        return path

    return install


@pytest.fixture
def capture_file(tmp_path, monkeypatch):
    """File that fake psql scripts write their stdin to (via $PGPIPE_TEST_CAPTURE)."""
    path = tmp_path / "psql-stdin.sql"
    monkeypatch.setenv("PGPIPE_TEST_CAPTURE", str(path))
    return path
