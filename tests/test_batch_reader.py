"""
Unit tests for batch_reader.py
"""

import pytest

from conftest import MemoryAdapter, make_rows
from dump_util.batch_reader import BatchReader
from dump_util.errors import ReadError, UnitOpenError
from dump_util.models import DumpableUnit, UnitKind


def unit(name):
    return DumpableUnit(name, UnitKind.TABLE)


class TestBatchReader:
    """Tests for BatchReader."""

    @pytest.mark.parametrize("rows,batch_size,expected", [
        (10, 4, [4, 4, 2]),
        (8, 4, [4, 4]),
        (1, 5000, [1]),
        (0, 3, []),
    ])
    def test_batch_sizes(self, rows, batch_size, expected):
        """Test rows split into ceil(rows / batch_size) batches."""
        adapter = MemoryAdapter({"t": make_rows(rows)})
        batches = list(BatchReader(adapter, batch_size).read(unit("t")))

        assert [len(b) for b in batches] == expected
        assert [b.sequence_index for b in batches] == list(range(len(expected)))
        assert adapter.open_cursors == 0

    def test_rows_in_cursor_order(self):
        """Test rows come back in the order the cursor returns them."""
        adapter = MemoryAdapter({"t": make_rows(7)})
        batches = BatchReader(adapter, 3).read(unit("t"))
        ids = [row["id"] for batch in batches for row in batch.rows]
        assert ids == list(range(7))

    def test_open_error_propagates(self):
        """Test UnitOpenError surfaces on first iteration."""
        adapter = MemoryAdapter({"t": make_rows(3)}, open_errors={"t"})
        with pytest.raises(UnitOpenError):
            list(BatchReader(adapter, 2).read(unit("t")))

    def test_cursor_closed_on_read_error(self):
        """Test the cursor is released when reading fails mid-stream."""
        adapter = MemoryAdapter({"t": make_rows(10)}, read_errors={"t": 2})
        seen = []
        with pytest.raises(ReadError):
            for batch in BatchReader(adapter, 3).read(unit("t")):
                seen.append(batch.sequence_index)

        assert seen == [0, 1]
        assert adapter.open_cursors == 0

    def test_cursor_closed_on_early_stop(self):
        """Test closing the generator early releases the cursor."""
        adapter = MemoryAdapter({"t": make_rows(10)})
        batches = BatchReader(adapter, 3).read(unit("t"))
        next(batches)
        assert adapter.open_cursors == 1
        batches.close()
        assert adapter.open_cursors == 0

    def test_invalid_batch_size(self):
        """Test batch size must be positive."""
        with pytest.raises(ValueError):
            BatchReader(MemoryAdapter({}), 0)
