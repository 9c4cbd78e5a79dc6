"""
Worker pool that dumps units concurrently.

Each unit is owned by exactly one worker from cursor open to commit, so a
unit's batches keep their order without any cross-worker coordination.
Workers report back with UnitOutcome messages; nothing else is shared
between them except the output writer.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import closing
from typing import Callable, Iterable, Iterator, Optional

from .batch_reader import BatchReader
from .errors import UnitCancelledError, UnitError, WriteError
from .models import DumpableUnit, UnitOutcome, UnitStatus
from .serializer import Serializer
from .writer import OutputWriter


def dump_unit(
    unit: DumpableUnit,
    reader: BatchReader,
    serializer: Serializer,
    writer: OutputWriter,
    stop_event: Optional[threading.Event] = None
) -> UnitOutcome:
    """Read, serialize and commit one unit.

    Unit-scoped failures are returned as a failed outcome after the unit's
    staged output is discarded. WriteError is fatal and propagates.
    """
    rows = 0
    batches = 0
    try:
        writer.begin_unit(unit.name, serializer.open_unit(unit))
        with closing(reader.read(unit)) as unit_batches:
            for batch in unit_batches:
                if stop_event is not None and stop_event.is_set():
                    raise UnitCancelledError(unit.name, "dump stopped")
                writer.write_fragment(serializer.serialize(batch))
                rows += len(batch)
                batches += 1
        if stop_event is not None and stop_event.is_set():
            raise UnitCancelledError(unit.name, "dump stopped")
        writer.commit_unit(unit.name, serializer.close_unit(unit, rows))
    except UnitCancelledError as e:
        writer.discard_unit(unit.name)
        logging.warning(f"  - {unit.name}: cancelled after {batches} batch(es)")
        return UnitOutcome(unit.name, UnitStatus.CANCELLED, rows, batches, e.reason)
    except UnitError as e:
        writer.discard_unit(unit.name)
        logging.error(f"  ✗ {unit.name}: {e.reason}")
        return UnitOutcome(unit.name, UnitStatus.FAILED, rows, batches, e.reason)
    except WriteError:
        writer.discard_unit(unit.name)
        raise
    except Exception as e:
        writer.discard_unit(unit.name)
        logging.error(f"  ✗ {unit.name}: unexpected error: {e}")
        return UnitOutcome(unit.name, UnitStatus.FAILED, rows, batches, str(e))

    logging.info(f"  ✓ {unit.name}: {rows} rows")
    return UnitOutcome(unit.name, UnitStatus.DONE, rows, batches)


class WorkerPool:
    """Fixed-size pool of threads consuming a shared queue of units."""

    def __init__(self, max_workers: int):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.max_workers = max_workers

    def run(
        self,
        units: Iterable[DumpableUnit],
        task: Callable[[DumpableUnit], UnitOutcome],
        stop_event: Optional[threading.Event] = None
    ) -> Iterator[UnitOutcome]:
        """Run ``task`` once per unit and yield outcomes as units finish.

        Setting ``stop_event`` keeps units that have not started from
        starting. A task that raises is fatal: the stop event is set, the
        pool drains, and the first such error is re-raised.
        """
        stop_event = stop_event or threading.Event()
        fatal: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='dump-worker') as executor:
            futures = {
                executor.submit(self._run_one, task, unit, stop_event): unit
                for unit in units
            }
            for future in as_completed(futures):
                try:
                    outcome = future.result()
                except Exception as e:
                    if fatal is None:
                        fatal = e
                        stop_event.set()
                        logging.error(f"Stopping dump: {e}")
                    continue
                yield outcome

        if fatal is not None:
            raise fatal

    @staticmethod
    def _run_one(
        task: Callable[[DumpableUnit], UnitOutcome],
        unit: DumpableUnit,
        stop_event: threading.Event
    ) -> UnitOutcome:
        if stop_event.is_set():
            return UnitOutcome(unit.name, UnitStatus.CANCELLED, error="not started")
        return task(unit)
