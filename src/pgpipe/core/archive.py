"""
Streaming ZIP packaging and extraction of SQL dumps

Archives hold a single entry, ``dump.sql``. Both directions work on
streams without seeking: packaging writes local headers with data
descriptors (sizes and CRC follow the entry data), and extraction walks
the local headers in order instead of reading the central directory.
"""

import asyncio
import struct
import time
import zipfile
import zlib
from typing import AsyncIterator, NamedTuple

from .errors import ExtractionError, PackagingError, PgPipeError, PipelineCancelledError
from .stream import DEFAULT_CHANNEL_DEPTH, DEFAULT_CHUNK_SIZE, Channel, close_stream
from ..utils.logger import get_logger

logger = get_logger(__name__)

DUMP_ENTRY_NAME = "dump.sql"

_FLAG_ENCRYPTED = 0x01
_FLAG_DATA_DESCRIPTOR = 0x08
_FLAG_UTF8 = 0x800
_ZIP64_EXTRA_ID = 0x0001
_ZIP64_MARKER = 0xFFFFFFFF
_DESCRIPTOR_SIGNATURE = b"PK\x07\x08"


class _ArchiveBuffer:
    """Write-only, non-seekable file object collecting what zipfile emits"""

    def __init__(self):
        self._data = bytearray()

    def write(self, data) -> int:
        self._data += data
        return len(data)

    def flush(self):
        pass

    def take(self) -> bytes:
        data = bytes(self._data)
        self._data.clear()
        return data


async def _flush(buffer: _ArchiveBuffer, channel: Channel) -> None:
    data = buffer.take()
    if data:
        await channel.write(data)


def _packaging_error(exc: Exception) -> PackagingError:
    version = exc.version if isinstance(exc, PgPipeError) else None
    error = PackagingError("error writing to zip file", version=version, detail=str(exc))
    error.__cause__ = exc
    return error


async def _write_archive(source, channel: Channel, entry_name: str) -> None:
    buffer = _ArchiveBuffer()
    try:
        try:
            archive = zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED)
            info = zipfile.ZipInfo(entry_name, date_time=time.localtime()[:6])
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            entry = archive.open(info, mode="w", force_zip64=True)
        except (OSError, ValueError, RuntimeError) as e:
            raise PackagingError("error creating zip file", detail=str(e)) from e

        with archive:
            with entry:
                async for chunk in source:
                    entry.write(chunk)
                    await _flush(buffer, channel)
        # Data descriptor and central directory are written on close
        await _flush(buffer, channel)
        channel.close()
    except asyncio.CancelledError:
        channel.close(PipelineCancelledError("archive packaging cancelled"))
        raise
    except PackagingError as e:
        channel.close(e)
    except Exception as e:
        if isinstance(e, BrokenPipeError) and channel.reader_closed:
            logger.debug("Archive reader closed the stream before the end")
        else:
            channel.close(_packaging_error(e))
    finally:
        await close_stream(source)


def package_as_archive(
    source: AsyncIterator[bytes],
    entry_name: str = DUMP_ENTRY_NAME,
    depth: int = DEFAULT_CHANNEL_DEPTH,
) -> Channel:
    """Wrap ``source`` in a single-entry ZIP archive, produced incrementally.

    A background task reads ``source`` and writes compressed bytes into the
    returned channel as they become available, so archive bytes can be
    consumed before the dump finishes. If reading the source or writing
    the archive fails, the channel is closed with PackagingError (the
    original error is its ``__cause__``) instead of ending early. Must be
    called from a running event loop.
    """
    channel = Channel(f"zip:{entry_name}", depth)
    task = asyncio.get_running_loop().create_task(_write_archive(source, channel, entry_name))
    channel.attach_producer(task)
    return channel


class _ByteReader:
    """Sequential reader over an async byte stream with push-back"""

    def __init__(self, source):
        self._iterator = source.__aiter__()
        self._buffer = bytearray()
        self._eof = False

    async def _fill(self) -> bool:
        if self._eof:
            return False
        try:
            chunk = await self._iterator.__anext__()
        except StopAsyncIteration:
            self._eof = True
            return False
        self._buffer += chunk
        return True

    async def at_eof(self) -> bool:
        while not self._buffer:
            if not await self._fill():
                return True
        return False

    async def read_exactly(self, size: int) -> bytes:
        while len(self._buffer) < size:
            if not await self._fill():
                raise ExtractionError("archive is truncated")
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def read_some(self, limit: int) -> bytes:
        """Up to ``limit`` bytes; ``b""`` only at end of stream"""
        if not self._buffer and not await self._fill():
            return b""
        data = bytes(self._buffer[:limit])
        del self._buffer[:limit]
        return data

    def unread(self, data: bytes) -> None:
        self._buffer[:0] = data

    async def drain(self) -> None:
        self._buffer.clear()
        while await self._fill():
            self._buffer.clear()


class _LocalEntry(NamedTuple):
    name: str
    flags: int
    method: int
    crc: int
    compress_size: int
    file_size: int
    zip64: bool

    @property
    def has_descriptor(self) -> bool:
        return bool(self.flags & _FLAG_DATA_DESCRIPTOR)


async def _read_local_header(reader: _ByteReader, signature: bytes) -> _LocalEntry:
    header = signature + await reader.read_exactly(zipfile.sizeFileHeader - len(signature))
    (
        _, _, _, flags, method, _, _, crc, compress_size, file_size, name_length, extra_length,
    ) = struct.unpack(zipfile.structFileHeader, header)

    raw_name = await reader.read_exactly(name_length)
    extra = await reader.read_exactly(extra_length)
    try:
        name = raw_name.decode("utf-8" if flags & _FLAG_UTF8 else "cp437")
    except UnicodeDecodeError as e:
        raise ExtractionError("corrupt entry name", detail=str(e)) from e

    zip64 = False
    while len(extra) >= 4:
        field_id, field_size = struct.unpack("<HH", extra[:4])
        data = extra[4:4 + field_size]
        extra = extra[4 + field_size:]
        if field_id != _ZIP64_EXTRA_ID:
            continue
        zip64 = True
        # Only the fields saturated in the fixed header are present, in this order
        if file_size == _ZIP64_MARKER and len(data) >= 8:
            file_size = struct.unpack("<Q", data[:8])[0]
            data = data[8:]
        if compress_size == _ZIP64_MARKER and len(data) >= 8:
            compress_size = struct.unpack("<Q", data[:8])[0]

    return _LocalEntry(name, flags, method, crc, compress_size, file_size, zip64)


async def _read_descriptor(reader: _ByteReader, entry: _LocalEntry, compressed: int, size: int):
    first = await reader.read_exactly(4)
    if first == _DESCRIPTOR_SIGNATURE:
        first = await reader.read_exactly(4)
    crc = struct.unpack("<L", first)[0]
    if entry.zip64 or compressed > _ZIP64_MARKER or size > _ZIP64_MARKER:
        compress_size, file_size = struct.unpack("<QQ", await reader.read_exactly(16))
    else:
        compress_size, file_size = struct.unpack("<LL", await reader.read_exactly(8))
    return crc, compress_size, file_size


async def _entry_data(reader: _ByteReader, entry: _LocalEntry, chunk_size: int) -> AsyncIterator[bytes]:
    """Uncompressed content of the entry the reader is positioned at, CRC checked"""
    if entry.flags & _FLAG_ENCRYPTED:
        raise ExtractionError(f"entry {entry.name} is encrypted")

    crc = 0
    compressed = 0
    size = 0
    if entry.method == zipfile.ZIP_DEFLATED:
        decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        while not decompressor.eof:
            chunk = await reader.read_some(chunk_size)
            if not chunk:
                raise ExtractionError(f"entry {entry.name} is truncated")
            try:
                data = decompressor.decompress(chunk)
            except zlib.error as e:
                raise ExtractionError(f"entry {entry.name} is corrupt", detail=str(e)) from e
            unused = decompressor.unused_data
            if unused:
                reader.unread(unused)
            compressed += len(chunk) - len(unused)
            if data:
                crc = zlib.crc32(data, crc)
                size += len(data)
                yield data
    elif entry.method == zipfile.ZIP_STORED:
        if entry.has_descriptor and entry.compress_size == 0:
            raise ExtractionError(f"entry {entry.name} is stored without sizes and cannot be streamed")
        remaining = entry.compress_size
        while remaining:
            data = await reader.read_some(min(chunk_size, remaining))
            if not data:
                raise ExtractionError(f"entry {entry.name} is truncated")
            remaining -= len(data)
            crc = zlib.crc32(data, crc)
            size += len(data)
            compressed += len(data)
            yield data
    else:
        raise ExtractionError(f"entry {entry.name} uses unsupported compression method {entry.method}")

    if entry.has_descriptor:
        expected_crc, _, expected_size = await _read_descriptor(reader, entry, compressed, size)
    else:
        expected_crc, expected_size = entry.crc, entry.file_size
    if crc != expected_crc or size != expected_size:
        raise ExtractionError(f"entry {entry.name} failed its CRC check")


async def _skip_entry(reader: _ByteReader, entry: _LocalEntry, chunk_size: int) -> None:
    if entry.has_descriptor:
        # Size unknown until the data ends, so the entry has to be decoded
        async for _ in _entry_data(reader, entry, chunk_size):
            pass
        return
    remaining = entry.compress_size
    while remaining:
        data = await reader.read_some(min(chunk_size, remaining))
        if not data:
            raise ExtractionError(f"entry {entry.name} is truncated")
        remaining -= len(data)


async def extract_entry(
    source: AsyncIterator[bytes],
    name: str = DUMP_ENTRY_NAME,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """Yield the uncompressed bytes of entry ``name`` from a ZIP stream.

    Other entries are skipped. The rest of the source is consumed after the
    entry so the stage feeding it can finish normally. Raises
    ExtractionError if the archive is malformed or has no such entry;
    errors raised by ``source`` itself propagate unchanged.
    """
    reader = _ByteReader(source)
    while not await reader.at_eof():
        signature = await reader.read_exactly(4)
        if signature in (zipfile.stringCentralDir, zipfile.stringEndArchive):
            break
        if signature != zipfile.stringFileHeader:
            raise ExtractionError("not a zip archive or corrupt local header")

        entry = await _read_local_header(reader, signature)
        if entry.name == name:
            logger.debug(f"Extracting {name} from archive")
            async for data in _entry_data(reader, entry, chunk_size):
                yield data
            await reader.drain()
            return
        logger.debug(f"Skipping archive entry {entry.name}")
        await _skip_entry(reader, entry, chunk_size)

    raise ExtractionError(f"archive has no {name} entry")
