"""
Version Manager for Database Migrations

Keeps the record of applied migration versions inside the target database.
The table lives in its own schema (``semigrate.migrations`` by default); on
SQLite, which has no schemas, it is created as ``semigrate_migrations``.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, MetaData, String, Table, delete, insert, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.schema import CreateSchema, CreateTable

from .versioning import latest_version, parse_version
from ...error_handling import ConflictError, StatementError, StorageError

logger = logging.getLogger(__name__)

SCHEMALESS_DIALECTS = ("sqlite",)


class BookkeepingStore:
    """
    Reads and writes applied migration versions through a session

    Every operation runs inside the caller's transaction; nothing is
    committed here.
    """

    def __init__(self, schema: Optional[str] = "semigrate", table: str = "migrations"):
        """
        Args:
            schema: Schema holding the bookkeeping table
            table: Bookkeeping table name
        """
        self.schema = schema
        self.table_name = table
        self._tables: Dict[str, Table] = {}

    def table_for(self, dialect_name: str) -> Table:
        """Bookkeeping table definition for a dialect"""
        if dialect_name not in self._tables:
            if dialect_name in SCHEMALESS_DIALECTS or not self.schema:
                name = f"{self.schema}_{self.table_name}" if self.schema else self.table_name
                schema = None
            else:
                name, schema = self.table_name, self.schema
            self._tables[dialect_name] = Table(
                name,
                MetaData(),
                Column("version", String(32), primary_key=True),
                Column("date", DateTime(timezone=True), key="applied_at",
                       server_default=text("CURRENT_TIMESTAMP")),
                schema=schema,
            )
        return self._tables[dialect_name]

    def _table(self, session) -> Table:
        return self.table_for(session.dialect_name)

    def ensure_schema(self, session):
        """
        Create the bookkeeping schema and table if they do not exist

        Raises:
            StorageError: creation failed (permissions, connectivity)
        """
        table = self._table(session)
        try:
            if table.schema:
                session.execute(CreateSchema(table.schema, if_not_exists=True),
                                name=f"CREATE SCHEMA {table.schema}")
            session.execute(CreateTable(table, if_not_exists=True),
                            name=f"CREATE TABLE {table.fullname}")
        except StatementError as e:
            logger.error(f"Failed to ensure bookkeeping table {table.fullname}: {e}")
            raise StorageError(f"Cannot create bookkeeping table {table.fullname}: {e.cause or e}",
                               operation="ensure_schema") from e
        logger.info(f"Bookkeeping table {table.fullname} ensured")

    def versions(self, session) -> List[str]:
        """All recorded versions, unordered"""
        table = self._table(session)
        rows = session.execute(select(table.c.version), name=f"SELECT version FROM {table.fullname}")
        return [row[0] for row in rows]

    def current_version(self, session) -> Optional[str]:
        """
        Highest recorded version

        Returns:
            Version string, or None if nothing has been recorded
        """
        return latest_version(self.versions(session))

    def applied(self, session) -> List[Dict]:
        """Recorded migrations sorted by version"""
        table = self._table(session)
        rows = session.execute(select(table.c.version, table.c.applied_at),
                               name=f"SELECT * FROM {table.fullname}")
        records = [{"version": row[0], "applied_at": row[1]} for row in rows]

        def sort_key(record):
            try:
                return (0, parse_version(record["version"]))
            except ValueError:
                return (1, record["version"])

        return sorted(records, key=sort_key)

    def record_applied(self, session, version: str):
        """
        Record ``version`` as applied

        Raises:
            ConflictError: the version is already recorded
        """
        table = self._table(session)
        try:
            session.execute(insert(table).values(version=version),
                            name=f"INSERT INTO {table.fullname} ({version})")
        except StatementError as e:
            if isinstance(e.cause, IntegrityError):
                raise ConflictError(f"Version {version} is already recorded as applied", version) from e
            raise
        logger.info(f"Recorded migration {version}")

    def clear(self, session):
        """Delete every record"""
        table = self._table(session)
        session.execute(delete(table), name=f"DELETE FROM {table.fullname}")
        logger.info(f"Cleared bookkeeping table {table.fullname}")
