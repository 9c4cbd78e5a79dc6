"""
Serialization of batches into dump file syntax.

Relational units become SQL statements, document units become one canonical
Extended JSON document per line. Output carries no timestamps so that the
same data always serializes to the same bytes.
"""

import json
import math
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from ipaddress import IPv4Address, IPv4Interface, IPv4Network, IPv6Address, IPv6Interface, IPv6Network
from typing import Any, Callable, Optional

from bson import json_util

from .errors import SerializationError
from .models import (
    Batch, CollectionStructure, ColumnInfo, DbType, DumpableUnit, SerializedFragment, TableStructure
)
from .version import __version__

_IP_TYPES = (IPv4Address, IPv6Address, IPv4Interface, IPv6Interface, IPv4Network, IPv6Network)


class UnsupportedValue(Exception):
    """Raised by dialect formatters for values they cannot render."""


class SQLDialect:
    """Value and identifier rendering rules shared by SQL backends."""

    name = "SQL"
    preamble_lines: tuple[str, ...] = ()

    def __init__(self):
        # Pre-build type formatters for faster dispatch
        self._type_formatters: dict[type, Callable[[Any], str]] = {
            type(None): lambda v: 'NULL',
            bool: self.format_bool,
            int: str,
            float: self.format_float,
            Decimal: self.format_decimal,
            str: self.quote_string,
            bytes: self.format_bytes,
            bytearray: self.format_bytes,
            memoryview: lambda v: self.format_bytes(v.tobytes()),
            datetime: lambda v: self.quote_string(v.isoformat(sep=' ')),
            date: lambda v: self.quote_string(v.isoformat()),
            time: lambda v: self.quote_string(v.isoformat()),
            timedelta: self.format_timedelta,
            uuid.UUID: lambda v: self.quote_string(str(v)),
            dict: self.format_json,
        }

    def quote_identifier(self, name: str) -> str:
        raise NotImplementedError

    def quote_string(self, value: str) -> str:
        raise NotImplementedError

    def format_bool(self, value: bool) -> str:
        return 'TRUE' if value else 'FALSE'

    def format_float(self, value: float) -> str:
        if not math.isfinite(value):
            raise UnsupportedValue(f"non-finite float {value!r}")
        return repr(value)

    def format_decimal(self, value: Decimal) -> str:
        if not value.is_finite():
            raise UnsupportedValue(f"non-finite decimal {value}")
        return str(value)

    def format_bytes(self, value: bytes) -> str:
        raise NotImplementedError

    def format_timedelta(self, value: timedelta) -> str:
        raise NotImplementedError

    def format_json(self, value: Any) -> str:
        try:
            text = json.dumps(value, ensure_ascii=False, allow_nan=False, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise UnsupportedValue(f"value is not JSON serializable: {e}") from e
        return self.quote_string(text)

    def format_list(self, value: list, column_type: Optional[str]) -> str:
        return self.format_json(value)

    def format_value(self, value: Any, column_type: Optional[str] = None) -> str:
        """Format a value for an INSERT statement.

        Uses type-based dispatch for common types to avoid isinstance() overhead.
        """
        formatter = self._type_formatters.get(type(value))
        if formatter:
            return formatter(value)

        if isinstance(value, (list, tuple)):
            return self.format_list(list(value), column_type)
        if isinstance(value, _IP_TYPES):
            return self.quote_string(str(value))
        # Subclasses of the dispatch types (enums over str, IntFlag, ...)
        for base in (bool, int, float, Decimal, str, bytes, datetime, date, time, timedelta, dict):
            if isinstance(value, base):
                return self._type_formatters[base](base(value) if base in (int, float) else value)
        raise UnsupportedValue(f"unsupported type {type(value).__name__}")

    def insert_clause(self, structure: TableStructure) -> str:
        """Extra keywords between the column list and VALUES."""
        return ''

    def column_definition(self, col: ColumnInfo) -> str:
        line = f"{self.quote_identifier(col.name)} {col.type}"
        if col.default is not None:
            line += f" DEFAULT {col.default}"
        if col.nullable == 'NO':
            line += " NOT NULL"
        return line

    def create_table(self, table: str, structure: TableStructure) -> str:
        columns = [f"  {self.column_definition(col)}" for col in structure.columns]
        if structure.primary_key:
            keys = ', '.join(self.quote_identifier(k) for k in structure.primary_key)
            columns.append(f"  PRIMARY KEY ({keys})")
        return f"CREATE TABLE {self.quote_identifier(table)} (\n" + ',\n'.join(columns) + "\n)"


class MySQLDialect(SQLDialect):
    """MySQL rendering, compatible with mysqldump output."""

    name = "MySQL"
    preamble_lines = (
        "SET NAMES utf8mb4;",
        "SET FOREIGN_KEY_CHECKS=0;",
        "SET SQL_MODE='NO_AUTO_VALUE_ON_ZERO';",
    )

    _ESCAPES = str.maketrans({
        '\\': '\\\\',
        "'": "\\'",
        '"': '\\"',
        '\n': '\\n',
        '\r': '\\r',
        '\0': '\\0',
        '\x1a': '\\Z',
    })

    def __init__(self):
        super().__init__()
        self._type_formatters[set] = self.format_set

    def quote_identifier(self, name: str) -> str:
        return '`' + name.replace('`', '``') + '`'

    def quote_string(self, value: str) -> str:
        return "'" + value.translate(self._ESCAPES) + "'"

    def format_bool(self, value: bool) -> str:
        return '1' if value else '0'

    def format_bytes(self, value: bytes) -> str:
        return f"X'{bytes(value).hex()}'"

    def format_timedelta(self, value: timedelta) -> str:
        # TIME columns come back as timedelta and may be negative or exceed 24h
        sign = '-' if value < timedelta(0) else ''
        value = abs(value)
        total = value.days * 86400 + value.seconds
        hours, rest = divmod(total, 3600)
        minutes, seconds = divmod(rest, 60)
        text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
        if value.microseconds:
            text += f".{value.microseconds:06d}"
        return f"'{text}'"

    def format_set(self, value: set) -> str:
        return self.quote_string(','.join(sorted(str(v) for v in value)))


class PostgresDialect(SQLDialect):
    """PostgreSQL rendering, assuming standard_conforming_strings."""

    name = "PostgreSQL"
    JSON_TYPES = ('json', 'jsonb')
    preamble_lines = (
        "SET client_encoding = 'UTF8';",
        "SET standard_conforming_strings = on;",
    )

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def quote_string(self, value: str) -> str:
        if '\0' in value:
            raise UnsupportedValue("text contains a NUL character")
        return "'" + value.replace("'", "''") + "'"

    def format_float(self, value: float) -> str:
        if math.isnan(value):
            return "'NaN'::float8"
        if math.isinf(value):
            return "'Infinity'::float8" if value > 0 else "'-Infinity'::float8"
        return repr(value)

    def format_decimal(self, value: Decimal) -> str:
        if value.is_nan():
            return "'NaN'::numeric"
        if value.is_infinite():
            return "'Infinity'::numeric" if value > 0 else "'-Infinity'::numeric"
        return str(value)

    def format_bytes(self, value: bytes) -> str:
        return f"'\\x{bytes(value).hex()}'::bytea"

    def format_timedelta(self, value: timedelta) -> str:
        return f"'{value.days} days {value.seconds} seconds {value.microseconds} microseconds'::interval"

    def format_value(self, value: Any, column_type: Optional[str] = None) -> str:
        if column_type in self.JSON_TYPES and value is not None:
            if isinstance(value, str):
                # Loaded as text, so already a JSON document
                return self.quote_string(value)
            return self.format_json(value)
        return super().format_value(value, column_type)

    def column_definition(self, col: ColumnInfo) -> str:
        line = super().column_definition(col)
        if col.extra:
            line += f" {col.extra}"
        return line

    def insert_clause(self, structure: TableStructure) -> str:
        if any(col.extra == 'GENERATED ALWAYS AS IDENTITY' for col in structure.columns):
            return " OVERRIDING SYSTEM VALUE"
        return ''

    def format_list(self, value: list, column_type: Optional[str]) -> str:
        if column_type and column_type.endswith('[]'):
            element_type = column_type[:-2]
            items = ', '.join(self._format_array_item(v, element_type) for v in value)
            return f"ARRAY[{items}]::{column_type}"
        return self.format_json(value)

    def _format_array_item(self, value: Any, element_type: str) -> str:
        if isinstance(value, list):
            # Multidimensional arrays nest without their own cast
            return 'ARRAY[' + ', '.join(self._format_array_item(v, element_type) for v in value) + ']'
        return self.format_value(value, element_type)


class Serializer:
    """Turns batches of one backend into dump file bytes."""

    encoding = 'utf-8'

    def preamble(self) -> bytes:
        return b''

    def open_unit(self, unit: DumpableUnit) -> bytes:
        raise NotImplementedError

    def serialize(self, batch: Batch) -> SerializedFragment:
        raise NotImplementedError

    def close_unit(self, unit: DumpableUnit, rows: int) -> bytes:
        raise NotImplementedError


def _comment_safe(name: str) -> str:
    return name.replace('\r', ' ').replace('\n', ' ')


class SQLSerializer(Serializer):
    """Statement-based serializer for relational units."""

    def __init__(self, dialect: SQLDialect):
        self.dialect = dialect

    def preamble(self) -> bytes:
        lines = [
            f"-- {self.dialect.name} dump generated by dump_util {__version__}",
            "-- -------------------------------------------------",
            "",
            *self.dialect.preamble_lines,
            "",
            "",
        ]
        return '\n'.join(lines).encode(self.encoding)

    def open_unit(self, unit: DumpableUnit) -> bytes:
        structure = unit.structure or TableStructure()
        table = self.dialect.quote_identifier(unit.name)
        create_statement = structure.create_statement
        if not create_statement and structure.columns:
            create_statement = self.dialect.create_table(unit.name, structure)

        parts = [
            "--\n",
            f"-- Table: {_comment_safe(unit.name)}\n",
            "--\n\n",
            f"DROP TABLE IF EXISTS {table};\n",
        ]
        if create_statement:
            parts.append(f"{create_statement};\n")
        parts.append("\n")
        return ''.join(parts).encode(self.encoding)

    def serialize(self, batch: Batch) -> SerializedFragment:
        """Render a batch as one multi-row INSERT statement."""
        unit = batch.unit
        if not batch.rows:
            return SerializedFragment(unit.name, batch.sequence_index, b'')

        structure = unit.structure or TableStructure()
        table = self.dialect.quote_identifier(unit.name)
        columns = structure.insert_columns if structure.columns else list(batch.rows[0].keys())
        column_types = [structure.column_type(col) for col in columns]
        quoted_columns = ', '.join(self.dialect.quote_identifier(col) for col in columns)
        clause = self.dialect.insert_clause(structure)

        value_lines = []
        for row in batch.rows:
            values = []
            for col, col_type in zip(columns, column_types):
                try:
                    values.append(self.dialect.format_value(row.get(col), col_type))
                except UnsupportedValue as e:
                    raise SerializationError(unit.name, f"column '{col}': {e}") from e
            value_lines.append(f"  ({', '.join(values)})")

        text = (
            f"INSERT INTO {table} ({quoted_columns}){clause} VALUES\n"
            + ',\n'.join(value_lines)
            + ';\n\n'
        )
        return SerializedFragment(unit.name, batch.sequence_index, text.encode(self.encoding))

    def close_unit(self, unit: DumpableUnit, rows: int) -> bytes:
        return f"-- End of table: {_comment_safe(unit.name)} ({rows} rows)\n\n".encode(self.encoding)


class DocumentSerializer(Serializer):
    """Extended JSON lines for document collections.

    Lines starting with '#' are markers; every other non-empty line is one
    document in canonical Extended JSON, which round-trips every BSON type.
    """

    json_options = json_util.CANONICAL_JSON_OPTIONS

    def preamble(self) -> bytes:
        return f"# MongoDB dump generated by dump_util {__version__}\n\n".encode(self.encoding)

    def open_unit(self, unit: DumpableUnit) -> bytes:
        structure = unit.structure or CollectionStructure()
        lines = [
            f"# collection: {json.dumps(unit.name)}",
            f"# indexes: {self._dumps(unit.name, structure.indexes)}",
            f"# options: {self._dumps(unit.name, structure.options)}",
        ]
        return ('\n'.join(lines) + '\n').encode(self.encoding)

    def serialize(self, batch: Batch) -> SerializedFragment:
        """Render each document of a batch on its own line."""
        lines = [self._dumps(batch.unit.name, doc) + '\n' for doc in batch.rows]
        return SerializedFragment(
            batch.unit.name, batch.sequence_index, ''.join(lines).encode(self.encoding)
        )

    def close_unit(self, unit: DumpableUnit, rows: int) -> bytes:
        return f"# end collection: {json.dumps(unit.name)} ({rows} documents)\n\n".encode(self.encoding)

    def _dumps(self, unit_name: str, value: Any) -> str:
        try:
            return json_util.dumps(value, json_options=self.json_options)
        except (TypeError, ValueError) as e:
            raise SerializationError(unit_name, f"cannot encode document: {e}") from e


def create_serializer(db_type: DbType | str) -> Serializer:
    """Return the serializer for a database type."""
    db_type = DbType.parse(db_type)
    if not db_type.is_relational:
        return DocumentSerializer()
    return SQLSerializer(MySQLDialect() if db_type is DbType.MYSQL else PostgresDialect())
