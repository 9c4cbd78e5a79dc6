"""
Dump orchestration: one source database into one output file.
"""

import logging
import threading
import time
from functools import partial
from pathlib import Path
from typing import Optional

from .batch_reader import BatchReader
from .errors import ConfigurationError, DumpError
from .models import BackupOptions, DbType, DumpableUnit, DumpResult, RunState, UnitOutcome, UnitStatus
from .pool import WorkerPool, dump_unit
from .serializer import Serializer, create_serializer
from .source import SourceAdapter, create_adapter
from .writer import OutputWriter


class DatabaseDumper:
    """Runs a single dump.

    States go idle -> connected -> discovering -> dumping -> finalizing and
    end in done or failed. Failed units do not fail the run; connection,
    discovery and write errors do, and are raised to the caller.
    """

    writer_class = OutputWriter

    def __init__(
        self,
        adapter: SourceAdapter,
        serializer: Serializer,
        output_path: str | Path,
        options: BackupOptions,
        cancel_event: Optional[threading.Event] = None
    ):
        self.adapter = adapter
        self.serializer = serializer
        self.output_path = Path(output_path)
        self.options = options
        self.state = RunState.IDLE
        self.units: list[DumpableUnit] = []
        self.outcomes: dict[str, UnitOutcome] = {}
        self._stop_event = cancel_event or threading.Event()
        self._writer: Optional[OutputWriter] = None
        self._started_at = 0.0

    def cancel(self) -> None:
        """Stop starting new units; units not yet committed are dropped."""
        logging.warning("Cancellation requested")
        self._stop_event.set()

    def run(self) -> DumpResult:
        """Run the dump and return its result."""
        if self.state is not RunState.IDLE:
            raise RuntimeError("A DatabaseDumper can only run once")
        self._started_at = time.monotonic()

        try:
            self.adapter.connect()
            self.state = RunState.CONNECTED

            self.state = RunState.DISCOVERING
            self.units = self.adapter.list_units(self.options.exclude)
            logging.info(
                f"Dumping {len(self.units)} unit(s) to '{self.output_path}' "
                f"with {self.options.max_workers} worker(s), batch size {self.options.batch_size}"
            )

            self._writer = self.writer_class(self.output_path, compress=self.options.compress)
            with self._writer as writer:
                writer.write_preamble(self.serializer.preamble())
                self.state = RunState.DUMPING
                self._dump_units(writer)
                self.state = RunState.FINALIZING
            self.state = RunState.DONE

        except DumpError as e:
            self.state = RunState.FAILED
            e.result = self._build_result()
            logging.error(f"Dump failed: {e}")
            raise
        except Exception:
            self.state = RunState.FAILED
            raise
        finally:
            self.adapter.close()

        result = self._build_result()
        self._log_summary(result)
        return result

    def _dump_units(self, writer: OutputWriter) -> None:
        """Schedule every unit on the pool and collect the outcomes."""
        reader = BatchReader(self.adapter, self.options.batch_size)
        task = partial(
            dump_unit,
            reader=reader,
            serializer=self.serializer,
            writer=writer,
            stop_event=self._stop_event
        )
        pool = WorkerPool(self.options.max_workers)
        for outcome in pool.run(self.units, task, self._stop_event):
            self.outcomes[outcome.unit_name] = outcome

    def _build_result(self) -> DumpResult:
        failed = {name: o.error or "" for name, o in self.outcomes.items() if o.status is UnitStatus.FAILED}
        cancelled = frozenset(name for name, o in self.outcomes.items() if o.status is UnitStatus.CANCELLED)
        done = [o for o in self.outcomes.values() if o.success]
        return DumpResult(
            units_processed=len(done),
            units_failed=frozenset(failed),
            bytes_written=self._writer.bytes_written if self._writer else 0,
            duration=time.monotonic() - self._started_at,
            rows_written=sum(o.rows for o in done),
            errors=failed,
            units_cancelled=cancelled,
            cancelled=bool(cancelled) and self.state is not RunState.FAILED,
        )

    def _log_summary(self, result: DumpResult) -> None:
        logging.info(
            f"Dumped {result.units_processed} unit(s), {result.rows_written} rows, "
            f"{result.bytes_written} bytes in {result.duration:.1f}s"
        )
        if result.units_failed:
            logging.warning(f"{len(result.units_failed)} unit(s) failed: {', '.join(sorted(result.units_failed))}")
        if result.cancelled:
            logging.warning(f"Dump cancelled; {len(result.units_cancelled)} unit(s) not written")


def dump_database(
    db_type: DbType | str,
    connection_string: str,
    output_path: str | Path,
    options: Optional[BackupOptions] = None,
    cancel_event: Optional[threading.Event] = None
) -> DumpResult:
    """Dump a database into a single file.

    Args:
        db_type: One of postgres, mysql, mongodb.
        connection_string: Backend connection string or URI.
        output_path: Path of the dump file to create.
        options: Batch size, worker count, compression and exclusions.
        cancel_event: Set it to stop the dump early.

    Returns:
        DumpResult listing any units that failed.

    Raises:
        ConfigurationError: Unknown database type or bad options.
        DatabaseConnectionError, DiscoveryError, WriteError: The run failed.
    """
    db_type = DbType.parse(db_type)
    if not str(output_path).strip():
        raise ConfigurationError("output file path cannot be empty")
    options = options or BackupOptions()

    logging.info(f"Starting database dump for {db_type.value}...")
    adapter = create_adapter(db_type, connection_string, max_connections=options.max_workers)
    dumper = DatabaseDumper(adapter, create_serializer(db_type), output_path, options, cancel_event)
    return dumper.run()
