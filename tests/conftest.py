"""
Shared fixtures: an in-memory source adapter and output helpers.
"""

import errno
import re
import threading
import time

import pytest

from dump_util.errors import DatabaseConnectionError, DiscoveryError, ReadError, UnitOpenError
from dump_util.models import ColumnInfo, DbType, DumpableUnit, TableStructure, UnitKind
from dump_util.source import SourceAdapter, UnitCursor, filter_excluded


def make_rows(count, prefix="row"):
    """Rows with an integer id and a text name."""
    return [{"id": i, "name": f"{prefix} {i}"} for i in range(count)]


class MemoryAdapter(SourceAdapter):
    """Source adapter over dicts of rows, with failure injection."""

    db_type = DbType.POSTGRES

    def __init__(
        self,
        tables,
        open_errors=(),
        read_errors=None,
        fail_connect=False,
        fail_discovery=False,
        fetch_delay=0.0
    ):
        self.tables = tables
        self.open_errors = set(open_errors)
        self.read_errors = read_errors or {}
        self.fail_connect = fail_connect
        self.fail_discovery = fail_discovery
        self.fetch_delay = fetch_delay
        self.connected = False
        self.close_calls = 0
        self.opened = []
        self.open_cursors = 0
        self.max_open_cursors = 0
        self._lock = threading.Lock()

    def connect(self):
        if self.fail_connect:
            raise DatabaseConnectionError("authentication failed")
        self.connected = True

    def list_units(self, exclude=()):
        if self.fail_discovery:
            raise DiscoveryError("permission denied for pg_class")
        structure = TableStructure(
            columns=[
                ColumnInfo("id", "integer", "NO", "PRI", None, ""),
                ColumnInfo("name", "text", "YES", "", None, ""),
            ],
            primary_key=["id"],
        )
        return [
            DumpableUnit(name=name, kind=UnitKind.TABLE, structure=structure)
            for name in filter_excluded(list(self.tables), exclude)
        ]

    def open_unit_cursor(self, unit):
        if unit.name in self.open_errors:
            raise UnitOpenError(unit.name, "permission denied")
        with self._lock:
            self.opened.append(unit.name)
            self.open_cursors += 1
            self.max_open_cursors = max(self.max_open_cursors, self.open_cursors)
        return UnitCursor(unit, handle={"position": 0, "batches": 0})

    def fetch_next_batch(self, cursor, batch_size):
        if self.fetch_delay:
            time.sleep(self.fetch_delay)
        state = cursor.handle
        fail_after = self.read_errors.get(cursor.unit.name)
        if fail_after is not None and state["batches"] >= fail_after:
            raise ReadError(cursor.unit.name, "connection reset by peer")
        rows = self.tables[cursor.unit.name][state["position"]:state["position"] + batch_size]
        if not rows:
            cursor.exhausted = True
            return None
        state["position"] += len(rows)
        state["batches"] += 1
        return rows

    def close_unit_cursor(self, cursor):
        if cursor.closed:
            return
        cursor.closed = True
        with self._lock:
            self.open_cursors -= 1

    def close(self):
        self.close_calls += 1
        self.connected = False


class FailingFile:
    """File wrapper whose first write containing ``trigger`` is cut short."""

    def __init__(self, raw, trigger):
        self.raw = raw
        self.trigger = trigger
        self.failed = False

    def write(self, data):
        if not self.failed and self.trigger in data:
            self.failed = True
            self.raw.write(data[:len(data) // 2])
            raise OSError(28, "No space left on device")
        return self.raw.write(data)

    def __getattr__(self, name):
        return getattr(self.raw, name)


class DiskFullFile:
    """File wrapper for a disk that fills up at ``capacity`` bytes and stays full.

    Writes that cross the limit are cut short, like a real unbuffered file;
    once the disk is full every later write fails.
    """

    def __init__(self, raw, capacity=None):
        self.raw = raw
        self.capacity = capacity
        self.full = False

    def write(self, data):
        if self.capacity is None:
            return self.raw.write(data)
        room = self.capacity - self.raw.tell()
        if self.full or room <= 0:
            self.full = True
            raise OSError(errno.ENOSPC, "No space left on device")
        return self.raw.write(data[:room])

    def __getattr__(self, name):
        return getattr(self.raw, name)


def table_sections(text):
    """Map table name to the list of ids written for it, in file order."""
    sections = {}
    for match in re.finditer(r'-- Table: (\S+)\n(.*?)-- End of table: \1 \((\d+) rows\)', text, re.S):
        ids = [int(i) for i in re.findall(r'^  \((\d+), ', match.group(2), re.M)]
        sections[match.group(1)] = ids
    return sections


@pytest.fixture
def memory_adapter():
    """Factory for MemoryAdapter instances."""
    return MemoryAdapter
