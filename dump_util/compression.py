"""
Output streams for the dump writer.

Both streams can take a checkpoint after a unit has been committed and roll
back to it, so a failed write never leaves a partial unit behind. The gzip
stream drives zlib directly because gzip.GzipFile cannot restore its
compressor state.
"""

import errno
import struct
import zlib
from typing import BinaryIO

GZIP_MAGIC = b'\x1f\x8b'
GZIP_METHOD_DEFLATE = 8
GZIP_OS_UNKNOWN = 255


def write_all(raw: BinaryIO, data: bytes) -> None:
    """Write every byte of ``data``; unbuffered files may accept only part of it."""
    while data:
        written = raw.write(data)
        if not written:
            raise OSError(errno.EIO, "write accepted no data")
        data = data[written:]


class PlainStream:
    """Uncompressed passthrough to the underlying file."""

    def __init__(self, raw: BinaryIO):
        self.raw = raw
        self._checkpoint_offset = raw.tell()

    def write(self, data: bytes) -> None:
        if data:
            write_all(self.raw, data)

    def flush(self) -> None:
        self.raw.flush()

    def checkpoint(self) -> None:
        """Mark the current position as safely written."""
        self._checkpoint_offset = self.raw.tell()

    def rollback(self) -> None:
        """Discard everything written since the last checkpoint."""
        self.raw.seek(self._checkpoint_offset)
        self.raw.truncate()

    def finish(self) -> None:
        self.raw.flush()


class GzipStream(PlainStream):
    """Streaming gzip compressor with restorable checkpoints."""

    def __init__(self, raw: BinaryIO, level: int = 6):
        self.level = level
        # Fixed mtime and no file name so output is reproducible
        write_all(raw, GZIP_MAGIC + struct.pack('<BBIBB', GZIP_METHOD_DEFLATE, 0, 0, 0, GZIP_OS_UNKNOWN))
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
        self._crc = 0
        self._size = 0
        self._finished = False
        super().__init__(raw)
        self._saved = (self._compressor.copy(), self._crc, self._size)

    def write(self, data: bytes) -> None:
        if not data:
            return
        self._crc = zlib.crc32(data, self._crc)
        self._size += len(data)
        write_all(self.raw, self._compressor.compress(data))

    def flush(self) -> None:
        write_all(self.raw, self._compressor.flush(zlib.Z_SYNC_FLUSH))
        self.raw.flush()

    def checkpoint(self) -> None:
        super().checkpoint()
        self._saved = (self._compressor.copy(), self._crc, self._size)

    def rollback(self) -> None:
        super().rollback()
        compressor, self._crc, self._size = self._saved
        self._compressor = compressor.copy()

    def finish(self) -> None:
        """Write the deflate tail and the gzip trailer. Only the first call has effect."""
        if self._finished:
            return
        self._finished = True
        write_all(self.raw, self._compressor.flush(zlib.Z_FINISH))
        write_all(self.raw, struct.pack('<II', self._crc & 0xffffffff, self._size & 0xffffffff))
        self.raw.flush()


def open_stream(raw: BinaryIO, compress: bool) -> PlainStream:
    """Wrap a binary file in the stream matching the compress option."""
    return GzipStream(raw) if compress else PlainStream(raw)
