"""
Exception hierarchy for the dump engine.

Fatal errors abort the whole run. Unit errors only abort the unit they were
raised for; the worker pool records them and moves on.
"""


class DumpError(Exception):
    """Base class for all dump errors."""


class ConfigurationError(DumpError, ValueError):
    """Invalid options or unknown database type."""


class DatabaseConnectionError(DumpError):
    """Could not connect or authenticate to the source database."""


class DiscoveryError(DumpError):
    """Could not enumerate tables or collections."""


class WriteError(DumpError):
    """The output file could not be written."""


class UnitError(DumpError):
    """Base class for errors scoped to a single table or collection."""

    def __init__(self, unit: str, message: str):
        super().__init__(f"{unit}: {message}")
        self.unit = unit
        self.reason = message


class UnitOpenError(UnitError):
    """A cursor could not be opened for a unit."""


class ReadError(UnitError):
    """Reading a unit failed mid-stream."""


class SerializationError(UnitError):
    """A value cannot be represented in the dump format."""


class FragmentOrderError(UnitError):
    """A fragment arrived out of sequence."""


class UnitCancelledError(UnitError):
    """The run was cancelled while the unit was in flight."""
