"""
pg_dump as a lazily consumed byte stream
"""

import asyncio
from typing import AsyncIterator, List, Optional

from .errors import DumpFailedError
from .models import DumpOptions
from .process import reap_process, start_process
from .stream import DEFAULT_CHUNK_SIZE
from .versions import SupportedVersion
from ..utils.logger import get_logger

logger = get_logger(__name__)

# DumpOptions field -> pg_dump flag, in the order flags are emitted
DUMP_FLAGS = (
    ("data_only", "--data-only"),
    ("schema_only", "--schema-only"),
    ("drop_before_create", "--clean"),
    ("drop_if_exists", "--if-exists"),
    ("create_target_database", "--create"),
    ("omit_comments", "--no-comments"),
)


def build_dump_args(options: Optional[DumpOptions] = None) -> List[str]:
    """pg_dump flags for the options that are switched on; false flags are omitted"""
    options = options or DumpOptions()
    return [flag for field, flag in DUMP_FLAGS if getattr(options, field)]


async def dump(
    version: SupportedVersion,
    conn_string: str,
    options: Optional[DumpOptions] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Stream a plain SQL dump of ``conn_string``.

    Exactly one pg_dump process is started, on first iteration. Its stdout
    is yielded chunk by chunk while stderr is collected separately. If
    pg_dump exits non-zero the stream raises DumpFailedError after the
    bytes already delivered; those bytes are not a complete dump. Closing
    the stream early (``aclose()``) kills and reaps pg_dump.
    """
    flags = build_dump_args(options)
    logger.info(f"Starting pg_dump v{version.label} {' '.join(flags)}".rstrip())

    try:
        process = await start_process(
            version.dump_tool,
            conn_string,
            *flags,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise DumpFailedError(version.label, str(e)) from e

    # Drained concurrently so a chatty pg_dump never blocks on a full stderr pipe
    stderr_task = asyncio.ensure_future(process.stderr.read())
    total = 0
    try:
        while True:
            chunk = await process.stdout.read(chunk_size)
            if not chunk:
                break
            total += len(chunk)
            yield chunk

        returncode = await process.wait()
        stderr = await stderr_task
        if returncode != 0:
            raise DumpFailedError(version.label, stderr.decode(errors="replace"), returncode)
        logger.info(f"pg_dump v{version.label} finished, {total} bytes")
    finally:
        await reap_process(process)
        if not stderr_task.done():
            stderr_task.cancel()
        await asyncio.gather(stderr_task, return_exceptions=True)
