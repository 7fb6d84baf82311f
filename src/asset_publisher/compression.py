#!/usr/bin/env python3
"""
Compression Utilities for Published Resources

Gzips text-like resources on their way to a target so they can be served
with ``Content-Encoding: gzip``. Source content is streamed in fixed-size
chunks into a spooled temporary buffer, so memory stays bounded no matter
how large the resource is.
"""

import asyncio
import gzip
import logging
import tempfile
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import IO, Any

from .constants import DEFAULT_GZIP_COMPRESSION_LEVEL, SPOOL_MAX_MEMORY_SIZE, STREAM_CHUNK_SIZE
from .models import ContentStream

logger = logging.getLogger(__name__)


class CompressionError(Exception):
    """Raised when compression operations fail."""

    pass


def is_compressible(media_type: str, media_types: Iterable[str]) -> bool:
    """Exact membership test of a media type in the compressible set."""
    return media_type in media_types


def validate_compression_level(level: int) -> int:
    """Check a gzip level (0 = store only ... 9 = maximum compression)."""
    if not isinstance(level, int) or isinstance(level, bool) or not 0 <= level <= 9:
        raise ValueError(f"Invalid gzip compression level {level!r} (expected 0-9)")
    return level


class SpooledGzip:
    """Context manager that gzips a content stream into a spooled buffer.

    Entering reads the whole source stream and returns the rewound buffer
    holding the compressed bytes. The source stream is closed after reading
    and the buffer (with any temporary file behind it) on exit, on every
    path. Only a failure of gzip itself raises CompressionError; errors
    reading the source are raised as they are.

    Example:
        async with SpooledGzip(stream, compression_level=9) as payload:
            await store.put_object(container, key, payload, media_type, content_encoding="gzip")
    """

    def __init__(
        self,
        source: ContentStream,
        compression_level: int = DEFAULT_GZIP_COMPRESSION_LEVEL,
        chunk_size: int = STREAM_CHUNK_SIZE,
        max_memory_size: int = SPOOL_MAX_MEMORY_SIZE,
    ):
        self.source = source
        self.compression_level = validate_compression_level(compression_level)
        self.chunk_size = chunk_size
        self.max_memory_size = max_memory_size
        self.buffer: IO[bytes] | None = None
        self.original_size = 0
        self.compressed_size = 0

    async def __aenter__(self) -> IO[bytes]:
        self.buffer = tempfile.SpooledTemporaryFile(max_size=self.max_memory_size, mode="w+b")
        try:
            await self._compress()
        except BaseException:
            self.buffer.close()
            self.buffer = None
            raise
        return self.buffer

    async def _compress(self) -> None:
        assert self.buffer is not None
        loop = asyncio.get_running_loop()
        try:
            with gzip.GzipFile(fileobj=self.buffer, mode="wb", compresslevel=self.compression_level) as gz:
                # Failed source reads propagate unchanged
                while chunk := await self.source.read(self.chunk_size):
                    self.original_size += len(chunk)
                    try:
                        await loop.run_in_executor(None, gz.write, chunk)
                    except Exception as e:
                        raise CompressionError(f"Failed to compress stream: {e}") from e
        finally:
            await self.source.close()

        self.compressed_size = self.buffer.tell()
        self.buffer.seek(0)

        ratio = (1 - self.compressed_size / self.original_size) * 100 if self.original_size > 0 else 0
        logger.debug(
            f"Compression completed ({self.original_size:,} bytes -> {self.compressed_size:,} bytes, "
            f"{ratio:.1f}% reduction, level {self.compression_level})"
        )

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.buffer is not None:
            self.buffer.close()
            self.buffer = None


@asynccontextmanager
async def spool_stream(
    source: ContentStream, chunk_size: int = STREAM_CHUNK_SIZE, max_memory_size: int = SPOOL_MAX_MEMORY_SIZE
) -> AsyncIterator[IO[bytes]]:
    """Copy a content stream unchanged into a spooled buffer.

    Used for uploads that need a seekable payload. Source and buffer are
    closed when the context exits.
    """
    buffer = tempfile.SpooledTemporaryFile(max_size=max_memory_size, mode="w+b")
    try:
        try:
            while chunk := await source.read(chunk_size):
                buffer.write(chunk)
        finally:
            await source.close()
        buffer.seek(0)
        yield buffer
    finally:
        buffer.close()
