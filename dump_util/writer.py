"""
Output writer for database dumps.

One writer instance owns the output file for a whole run. Workers stage a
unit's fragments in a private spool; the unit only reaches the output file
when it is committed, so a unit that fails halfway leaves nothing behind.
"""

import logging
import shutil
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from .compression import PlainStream, open_stream
from .errors import FragmentOrderError, WriteError
from .models import SerializedFragment


@dataclass
class _StagedUnit:
    """Fragments of one unit waiting to be committed."""
    spool: tempfile.SpooledTemporaryFile
    next_index: int = 0


class OutputWriter:
    """Single sink for all serialized units of a run."""

    DEFAULT_SPOOL_LIMIT = 8 * 1024 * 1024
    COPY_CHUNK_SIZE = 1024 * 1024

    def __init__(
        self,
        output_path: str | Path,
        compress: bool = False,
        spool_limit: int = DEFAULT_SPOOL_LIMIT
    ):
        self.output_path = Path(output_path)
        self.compress = compress
        self.spool_limit = spool_limit
        self.units_written: list[str] = []
        self._lock = threading.Lock()
        self._staged: dict[str, _StagedUnit] = {}
        self._file: Optional[BinaryIO] = None
        self._stream: Optional[PlainStream] = None
        self._closed = False
        self._error: Optional[BaseException] = None
        self._bytes_written = 0

    def __enter__(self) -> "OutputWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            self.close()
        except WriteError as e:
            if exc_type is None:
                raise
            logging.error(f"Failed to finalize output file: {e}")

    @property
    def failed(self) -> bool:
        return self._error is not None

    @property
    def bytes_written(self) -> int:
        """Bytes of the output file that are safely written."""
        return self._bytes_written

    def open(self) -> None:
        """Create the output file."""
        try:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._open_sink()
            self._stream = open_stream(self._file, self.compress)
            self._stream.checkpoint()
        except OSError as e:
            raise WriteError(f"Cannot open output file '{self.output_path}': {e}") from e
        self._bytes_written = self._file.tell()
        logging.debug(f"Opened output file {self.output_path} (compress={self.compress})")

    def _open_sink(self) -> BinaryIO:
        # Unbuffered, so a failed write leaves nothing pending that would block rollback
        return open(self.output_path, 'wb', buffering=0)

    def write_preamble(self, data: bytes) -> None:
        """Write bytes that precede every unit."""
        with self._lock:
            self._check_writable()
            self._commit_bytes(lambda: self._stream.write(data), "preamble")

    def begin_unit(self, unit_name: str, header: bytes = b'') -> None:
        """Start staging a unit, beginning with its open marker."""
        spool = tempfile.SpooledTemporaryFile(
            max_size=self.spool_limit, dir=self.output_path.parent
        )
        with self._lock:
            if unit_name in self._staged:
                spool.close()
                raise ValueError(f"Unit '{unit_name}' is already being written")
            self._staged[unit_name] = _StagedUnit(spool=spool)
        self._spool_write(unit_name, spool, header)

    def write_fragment(self, fragment: SerializedFragment) -> None:
        """Stage one fragment. Fragments of a unit must arrive in sequence."""
        staged = self._get_staged(fragment.unit_name)
        if fragment.sequence_index != staged.next_index:
            raise FragmentOrderError(
                fragment.unit_name,
                f"expected fragment {staged.next_index}, got {fragment.sequence_index}"
            )
        self._spool_write(fragment.unit_name, staged.spool, fragment.payload)
        staged.next_index += 1

    def commit_unit(self, unit_name: str, footer: bytes = b'') -> None:
        """Append the staged unit to the output file as one piece."""
        staged = self._get_staged(unit_name)
        self._spool_write(unit_name, staged.spool, footer)

        with self._lock:
            self._staged.pop(unit_name, None)
            try:
                self._check_writable()
                staged.spool.seek(0)
                self._commit_bytes(
                    lambda: shutil.copyfileobj(staged.spool, self._stream, self.COPY_CHUNK_SIZE),
                    unit_name
                )
            finally:
                staged.spool.close()
            self.units_written.append(unit_name)

        logging.debug(f"Committed '{unit_name}' ({staged.next_index} fragments)")

    def discard_unit(self, unit_name: str) -> None:
        """Drop everything staged for a unit. Safe to call more than once."""
        with self._lock:
            staged = self._staged.pop(unit_name, None)
        if staged is not None:
            staged.spool.close()
            logging.debug(f"Discarded staged data for '{unit_name}'")

    def close(self) -> None:
        """Finalize the output file. Only the first call has effect."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

            for staged in self._staged.values():
                staged.spool.close()
            self._staged.clear()

            if self._file is None:
                return
            error: Optional[OSError] = None
            try:
                self._stream.finish()
                self._bytes_written = self._file.tell()
            except OSError as e:
                error = e
            try:
                self._file.close()
            except OSError as e:
                error = error or e
            if error is not None:
                raise WriteError(f"Failed to finalize '{self.output_path}': {error}") from error

        logging.debug(f"Closed output file {self.output_path} ({self._bytes_written} bytes)")

    def _commit_bytes(self, write, label: str) -> None:
        """Run a write under the lock, rolling back to the last checkpoint on failure."""
        try:
            write()
            self._stream.flush()
            self._stream.checkpoint()
            self._bytes_written = self._file.tell()
        except OSError as e:
            self._error = e
            try:
                self._stream.rollback()
            except OSError as rollback_error:
                logging.error(f"Could not roll back partial write of '{label}': {rollback_error}")
            raise WriteError(f"Failed writing '{label}' to '{self.output_path}': {e}") from e

    def _spool_write(self, unit_name: str, spool, data: bytes) -> None:
        if not data:
            return
        try:
            spool.write(data)
        except OSError as e:
            raise WriteError(f"Failed staging '{unit_name}': {e}") from e

    def _get_staged(self, unit_name: str) -> _StagedUnit:
        with self._lock:
            staged = self._staged.get(unit_name)
        if staged is None:
            raise ValueError(f"Unit '{unit_name}' was not started")
        return staged

    def _check_writable(self) -> None:
        if self._closed:
            raise WriteError("Output writer is closed")
        if self._error is not None:
            raise WriteError(f"Output writer failed earlier: {self._error}")
        if self._stream is None:
            raise WriteError("Output writer is not open")
