"""
Restore pipeline: acquisition -> extraction -> ingestion

Downloads or reads the ZIP archive, unzips its dump.sql entry on the fly
and pipes it straight into psql, without a full local copy at any point.
"""

import asyncio
from typing import AsyncIterator, Optional

import httpx

from .archive import DUMP_ENTRY_NAME, extract_entry
from .errors import AcquisitionError, RestoreFailedError
from .models import LocalSource, RemoteSource, RestoreResult, RestoreSource
from .pipeline import Pipeline, Stage
from .process import reap_process, start_process
from .stream import DEFAULT_CHANNEL_DEPTH, DEFAULT_CHUNK_SIZE
from .versions import SupportedVersion
from ..utils.logger import get_logger, OperationLogger

logger = get_logger(__name__)

DEFAULT_HTTP_TIMEOUT = 60.0


async def _read_local(source: LocalSource, chunk_size: int) -> AsyncIterator[bytes]:
    try:
        f = open(source.path, "rb")
    except OSError as e:
        raise AcquisitionError(source.describe(), str(e)) from e

    with f:
        while True:
            try:
                chunk = await asyncio.to_thread(f.read, chunk_size)
            except OSError as e:
                raise AcquisitionError(source.describe(), str(e)) from e
            if not chunk:
                return
            yield chunk


async def _fetch_remote(
    source: RemoteSource,
    chunk_size: int,
    http_client: Optional[httpx.AsyncClient],
    timeout: float,
) -> AsyncIterator[bytes]:
    client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        async with client.stream("GET", source.url) as response:
            if response.is_error:
                raise AcquisitionError(
                    source.describe(),
                    f"HTTP {response.status_code} {response.reason_phrase}",
                )
            async for chunk in response.aiter_bytes(chunk_size):
                yield chunk
    except httpx.HTTPError as e:
        raise AcquisitionError(source.describe(), str(e)) from e
    finally:
        if http_client is None:
            await client.aclose()


def acquire(
    source: RestoreSource,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> AsyncIterator[bytes]:
    """Raw archive bytes from a local path or an HTTP(S) URL"""
    if isinstance(source, LocalSource):
        return _read_local(source, chunk_size)
    if isinstance(source, RemoteSource):
        return _fetch_remote(source, chunk_size, http_client, timeout)
    raise TypeError(f"unsupported restore source: {source!r}")


async def ingest(version: SupportedVersion, conn_string: str, source: AsyncIterator[bytes]) -> None:
    """Feed ``source`` to psql's stdin.

    psql's own stdout and stderr are inherited so the operator sees them.
    If ``source`` fails, psql is killed before it can act on the partial
    input and the source's error is re-raised.
    """
    try:
        process = await start_process(
            version.interactive_tool,
            conn_string,
            stdin=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise RestoreFailedError(version.label, detail=str(e)) from e

    try:
        stdin_broken = False
        try:
            async for chunk in source:
                process.stdin.write(chunk)
                await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            stdin_broken = True
            logger.warning(f"psql v{version.label} stopped reading its input")

        process.stdin.close()
        returncode = await process.wait()
        if returncode != 0:
            raise RestoreFailedError(version.label, returncode)
        if stdin_broken:
            raise RestoreFailedError(version.label, returncode, detail="psql exited before reading the whole dump")
    finally:
        await reap_process(process)
        # Only after psql is gone, so it never sees EOF on a partial dump
        if not process.stdin.is_closing():
            process.stdin.close()


async def restore(
    version: SupportedVersion,
    conn_string: str,
    source: RestoreSource,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    channel_depth: int = DEFAULT_CHANNEL_DEPTH,
    http_client: Optional[httpx.AsyncClient] = None,
    http_timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> RestoreResult:
    """Replay an archive produced by ``dump_zip`` into ``conn_string``.

    Returns only after all three stages have terminated. Raises the
    earliest failure in the chain: AcquisitionError, ExtractionError or
    RestoreFailedError.
    """
    pipeline = Pipeline(
        f"restore v{version.label}",
        [
            Stage("acquisition", lambda _: acquire(source, chunk_size, http_client, http_timeout)),
            Stage("extraction", lambda upstream: extract_entry(upstream, DUMP_ENTRY_NAME, chunk_size)),
            Stage("ingestion", lambda upstream: ingest(version, conn_string, upstream), terminal=True),
        ],
        channel_depth=channel_depth,
    )

    with OperationLogger(logger, f"restore v{version.label} from {source.describe()}") as operation:
        stages = await pipeline.run()

    return RestoreResult(
        version=version.label,
        source=source.describe(),
        stages=stages,
        duration=operation.elapsed,
    )
