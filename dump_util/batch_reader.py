"""
Batch reading of a single unit.
"""

import logging
from typing import Iterator

from .models import Batch, DumpableUnit
from .source import SourceAdapter


class BatchReader:
    """Drives one unit's cursor to completion in fixed-size batches."""

    def __init__(self, adapter: SourceAdapter, batch_size: int):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.adapter = adapter
        self.batch_size = batch_size

    def read(self, unit: DumpableUnit) -> Iterator[Batch]:
        """Yield the unit's batches numbered from 0.

        The cursor is opened on first iteration and always closed, also when
        reading fails or the consumer stops early. UnitOpenError and
        ReadError propagate unchanged.
        """
        cursor = self.adapter.open_unit_cursor(unit)
        try:
            sequence_index = 0
            while True:
                rows = self.adapter.fetch_next_batch(cursor, self.batch_size)
                if not rows:
                    break
                yield Batch(unit=unit, rows=rows, sequence_index=sequence_index)
                sequence_index += 1
            logging.debug(f"Read {sequence_index} batch(es) from '{unit.name}'")
        finally:
            self.adapter.close_unit_cursor(cursor)
