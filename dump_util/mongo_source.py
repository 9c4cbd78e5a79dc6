"""
MongoDB source adapter.
"""

import logging
from itertools import islice
from typing import Any, Iterable, Optional

import pymongo
from pymongo import uri_parser
from pymongo.errors import ConfigurationError as MongoConfigurationError
from pymongo.errors import InvalidURI, PyMongoError

from .errors import DatabaseConnectionError, DiscoveryError, ReadError, UnitOpenError
from .models import CollectionStructure, DbType, DumpableUnit, Record, UnitKind
from .source import SourceAdapter, UnitCursor, filter_excluded


class MongoUnitCursor(UnitCursor):
    """Cursor that holds documents read ahead of the current batch."""

    def __init__(self, unit: DumpableUnit, handle: Any = None):
        super().__init__(unit, handle=handle)
        self.lookahead: list[dict[str, Any]] = []


class MongoAdapter(SourceAdapter):
    """Reads the collections of the database named in the connection URI."""

    db_type = DbType.MONGODB
    SERVER_SELECTION_TIMEOUT_MS = 30_000

    def __init__(self, connection_string: str, max_connections: int = 1):
        self.connection_string = connection_string
        self.max_connections = max_connections
        self.client: Optional[pymongo.MongoClient] = None
        self.db = None

    def connect(self) -> None:
        """Validate the URI and ping the server."""
        try:
            parsed = uri_parser.parse_uri(self.connection_string)
        except (InvalidURI, MongoConfigurationError, ValueError) as e:
            raise DatabaseConnectionError(f"Invalid MongoDB connection string: {e}") from e
        database = parsed.get('database')
        if not database:
            raise DatabaseConnectionError("MongoDB connection string must name a database")

        # The driver pools connections itself; cap it at the worker count
        self.client = pymongo.MongoClient(
            self.connection_string,
            maxPoolSize=self.max_connections,
            serverSelectionTimeoutMS=self.SERVER_SELECTION_TIMEOUT_MS,
        )
        try:
            self.client.admin.command('ping')
        except PyMongoError as e:
            self.close()
            logging.error(f"Failed to connect to database: {e}")
            raise DatabaseConnectionError(f"Failed to connect to MongoDB: {e}") from e
        self.db = self.client[database]
        logging.info(f"Connected to MongoDB database '{database}'")

    def list_units(self, exclude: Iterable[str] = ()) -> list[DumpableUnit]:
        """List regular collections, skipping system collections and views."""
        if self.db is None:
            raise DiscoveryError("adapter is not connected")
        try:
            names = sorted(
                name for name in self.db.list_collection_names(filter={'type': 'collection'})
                if not name.startswith('system.')
            )
            return [
                DumpableUnit(name=name, kind=UnitKind.COLLECTION, structure=self.get_collection_structure(name))
                for name in filter_excluded(names, exclude)
            ]
        except PyMongoError as e:
            raise DiscoveryError(f"Failed to list MongoDB collections: {e}") from e

    def get_collection_structure(self, name: str) -> CollectionStructure:
        collection = self.db[name]
        return CollectionStructure(
            indexes=[dict(index) for index in collection.list_indexes()],
            options=dict(collection.options()),
        )

    def open_unit_cursor(self, unit: DumpableUnit) -> UnitCursor:
        """Open a cursor in _id order and fetch its first document.

        The first fetch is done here so permission problems surface as
        UnitOpenError rather than mid-stream.
        """
        if self.db is None:
            raise UnitOpenError(unit.name, "adapter is not connected")
        try:
            handle = self.db[unit.name].find({}, sort=[('_id', pymongo.ASCENDING)])
            first = next(handle, None)
        except PyMongoError as e:
            raise UnitOpenError(unit.name, str(e)) from e
        cursor = MongoUnitCursor(unit, handle=handle)
        cursor.lookahead = [] if first is None else [first]
        cursor.exhausted = first is None
        logging.debug(f"Opened cursor for collection '{unit.name}'")
        return cursor

    def fetch_next_batch(self, cursor: MongoUnitCursor, batch_size: int) -> Optional[list[Record]]:
        if cursor.exhausted and not cursor.lookahead:
            return None
        docs: list[dict[str, Any]] = cursor.lookahead
        cursor.lookahead = []
        try:
            docs.extend(islice(cursor.handle, batch_size - len(docs)))
        except PyMongoError as e:
            raise ReadError(cursor.unit.name, str(e)) from e
        if len(docs) < batch_size:
            cursor.exhausted = True
        return docs or None

    def close_unit_cursor(self, cursor: UnitCursor) -> None:
        if cursor.closed:
            return
        cursor.closed = True
        try:
            cursor.handle.close()
        except PyMongoError as e:
            logging.debug(f"Error closing cursor for '{cursor.unit.name}': {e}")

    def close(self) -> None:
        """Close the client. Safe to call more than once."""
        if self.client is not None:
            self.client.close()
            self.client = None
            self.db = None
            logging.debug("Database connections closed")
