"""
Connectivity probe: runs ``SELECT 1;`` through psql
"""

import asyncio

from .errors import ConnectivityError
from .process import reap_process, start_process
from .versions import SupportedVersion
from ..utils.logger import get_logger, OperationLogger

logger = get_logger(__name__)

PROBE_QUERY = "SELECT 1;"


async def test_connection(version: SupportedVersion, conn_string: str) -> None:
    """Check that ``conn_string`` is reachable and its credentials are valid.

    Raises ConnectivityError with psql's combined stdout and stderr when
    psql exits non-zero.
    """
    with OperationLogger(logger, f"psql test v{version.label}"):
        try:
            process = await start_process(
                version.interactive_tool,
                conn_string,
                "-c",
                PROBE_QUERY,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ConnectivityError(version.label, str(e)) from e

        try:
            output, _ = await process.communicate()
        finally:
            await reap_process(process)

        if process.returncode != 0:
            raise ConnectivityError(version.label, output.decode(errors="replace"))
