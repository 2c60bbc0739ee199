"""
Transactional Session for migration runs

A session owns one connection and exactly one open transaction. It is
terminated by a single commit or rollback and then released.
"""

import logging
import sqlite3
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy import text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import ClauseElement

from .config import create_engine_for
from ..error_handling import DatabaseConnectionError, SessionStateError, StatementError

logger = logging.getLogger(__name__)

ACTIVE = "active"
COMMITTED = "committed"
ROLLED_BACK = "rolled_back"


def split_sqlite_script(script: str) -> List[str]:
    """
    Split a script into statements SQLite accepts one at a time

    Semicolons inside string literals, comments and trigger bodies do not
    end a statement.
    """
    statements = []
    buffer = ""
    pieces = script.split(";")
    for piece in pieces[:-1]:
        buffer += piece + ";"
        if sqlite3.complete_statement(buffer):
            if buffer.strip(" \t\r\n;"):
                statements.append(buffer.strip())
            buffer = ""
    buffer += pieces[-1]
    if buffer.strip(" \t\r\n;"):
        statements.append(buffer.strip())
    return statements


class TransactionalSession:
    """
    One connection with one open transaction

    The owner must call exactly one of ``commit`` or ``rollback`` and then
    ``release``. Any other use of a terminated session raises
    SessionStateError.
    """

    def __init__(self, connection, engine: Optional[Engine] = None, owns_engine: bool = False):
        self.connection = connection
        self.engine = engine
        self._owns_engine = owns_engine
        self._transaction = connection.begin()
        self.state = ACTIVE
        self.released = False

    @classmethod
    def connect(cls, target: Union[str, Engine], **engine_options) -> "TransactionalSession":
        """
        Connect to ``target`` and open a transaction

        Args:
            target: Database URL or SQLAlchemy engine
            engine_options: Extra engine keyword arguments (URL targets only)

        Returns:
            Active session

        Raises:
            DatabaseConnectionError: connection or BEGIN failed
        """
        owns_engine = not isinstance(target, Engine)
        try:
            engine = create_engine_for(target, **engine_options)
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseConnectionError(f"Invalid database target: {e}", target=str(target)) from e

        masked = engine.url.render_as_string(hide_password=True)
        logger.info(f"Connecting to database {masked}")

        connection = None
        try:
            connection = engine.connect()
            return cls(connection, engine=engine, owns_engine=owns_engine)
        except SQLAlchemyError as e:
            if connection is not None:
                connection.close()
            if owns_engine:
                engine.dispose()
            raise DatabaseConnectionError(f"Could not connect to {masked}: {e}", target=masked) from e

    @property
    def dialect_name(self) -> str:
        return self.connection.dialect.name

    @property
    def active(self) -> bool:
        return self.state == ACTIVE and not self.released

    def _check_active(self, operation: str):
        if self.released:
            raise SessionStateError(f"Cannot {operation}: session already released")
        if self.state != ACTIVE:
            raise SessionStateError(f"Cannot {operation}: transaction already {self.state.replace('_', ' ')}")

    def execute(self, statement: Union[str, ClauseElement], parameters: Optional[Mapping[str, Any]] = None,
                name: Optional[str] = None) -> List[Row]:
        """
        Execute a single statement inside the transaction

        Args:
            statement: SQL text (bound with ``text()``) or a Core construct
            parameters: Bind parameters
            name: Identity reported when the statement fails

        Returns:
            Result rows (empty for statements that return none)
        """
        self._check_active("execute")
        if name:
            identity = name
        else:
            lines = str(statement).strip().splitlines()
            identity = lines[0][:100] if lines else ""
        if isinstance(statement, str):
            statement = text(statement)

        logger.debug(f"Executing {identity}")
        try:
            if parameters:
                result = self.connection.execute(statement, parameters)
            else:
                result = self.connection.execute(statement)
            return result.fetchall() if result.returns_rows else []
        except SQLAlchemyError as e:
            logger.debug(f"Statement failed ({identity}): {e}")
            raise StatementError(f"{identity}: {e}", statement=identity, cause=e) from e

    def execute_script(self, script: str, name: Optional[str] = None) -> List[Row]:
        """
        Execute a raw script that may contain several statements

        The content is passed to the driver untouched. SQLite only accepts
        one statement per call, so its scripts are split first.

        Returns:
            Rows of the last statement
        """
        self._check_active("execute script")
        identity = name or "<script>"
        logger.debug(f"Executing script {identity}")

        if self.dialect_name == "sqlite":
            statements = split_sqlite_script(script)
        else:
            statements = [script] if script.strip() else []

        rows: List[Row] = []
        for statement in statements:
            try:
                # no parameter collection, so format-style drivers leave "%" alone
                result = self.connection.exec_driver_sql(statement, execution_options={"no_parameters": True})
                rows = result.fetchall() if result.returns_rows else []
            except SQLAlchemyError as e:
                logger.debug(f"Script {identity} failed: {e}")
                raise StatementError(f"{identity}: {e}", statement=identity, cause=e) from e
        return rows

    def commit(self):
        """Commit the transaction. Terminal."""
        self._check_active("commit")
        try:
            self._transaction.commit()
        except SQLAlchemyError as e:
            self.state = ROLLED_BACK
            raise StatementError(f"COMMIT: {e}", statement="COMMIT", cause=e) from e
        self.state = COMMITTED
        logger.info("Transaction committed")

    def rollback(self):
        """Roll the transaction back. Terminal."""
        self._check_active("rollback")
        self.state = ROLLED_BACK
        try:
            self._transaction.rollback()
        except SQLAlchemyError as e:
            raise StatementError(f"ROLLBACK: {e}", statement="ROLLBACK", cause=e) from e
        logger.info("Transaction rolled back")

    def restart(self):
        """Roll back and immediately open a new transaction on the same connection"""
        self._check_active("restart")
        try:
            self._transaction.rollback()
            self._transaction = self.connection.begin()
        except SQLAlchemyError as e:
            self.state = ROLLED_BACK
            raise StatementError(f"RESTART: {e}", statement="ROLLBACK/BEGIN", cause=e) from e
        logger.info("Transaction restarted")

    def release(self):
        """Return the connection to the pool. Safe to call more than once."""
        if self.released:
            return
        self.released = True
        try:
            if self.state == ACTIVE:
                self.state = ROLLED_BACK
                self._transaction.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback on release failed: {e}")
        finally:
            self.connection.close()
            if self._owns_engine and self.engine is not None:
                self.engine.dispose()
        logger.debug("Session released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
