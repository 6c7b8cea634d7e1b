"""
Subprocess helpers shared by the probe, dump and restore stages
"""

import asyncio
from typing import Any

from ..utils.logger import get_logger

logger = get_logger(__name__)


async def start_process(*args: Any, **kwargs: Any) -> asyncio.subprocess.Process:
    """Launch a tool without a shell; argv[1] is a connection string and is never logged"""
    logger.debug(f"Launching {args[0]} ({len(args) - 1} arguments)")
    return await asyncio.create_subprocess_exec(*[str(arg) for arg in args], **kwargs)


async def reap_process(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` if it is still running, then wait so no zombie is left"""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        logger.debug(f"Killed process {process.pid}")
    await process.wait()
