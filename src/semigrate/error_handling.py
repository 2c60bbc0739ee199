"""
Error Handling and Logging for semigrate

Provides the exception taxonomy raised by the migration engine and the
centralized logging configuration used by the command line tool.

Execution errors (connection, storage, statement, conflict) abort a run
before the transaction is committed. Verification errors are raised after
the transaction has been finalized and never undo committed work.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional


class MigrationError(Exception):
    """Base exception for semigrate errors"""

    def __init__(self, message: str, operation: str = "Unknown"):
        super().__init__(message)
        self.operation = operation
        self.timestamp = datetime.now(timezone.utc)


class DatabaseConnectionError(MigrationError):
    """The database could not be reached or a transaction could not be opened"""

    def __init__(self, message: str, target: str = "Unknown"):
        super().__init__(message, operation="connect")
        self.target = target


class StorageError(MigrationError):
    """The bookkeeping schema could not be ensured"""


class StatementError(MigrationError):
    """A statement, script or procedure failed to execute"""

    def __init__(self, message: str, statement: str = "Unknown", cause: Optional[BaseException] = None):
        super().__init__(message, operation="execute")
        self.statement = statement
        self.cause = cause


class ConflictError(MigrationError):
    """A version is recorded twice; the bookkeeping invariant is broken"""

    def __init__(self, message: str, version: Optional[str] = None):
        super().__init__(message, operation="record")
        self.version = version


class DuplicateVersionError(ConflictError):
    """Two migration units on disk resolve to the same version"""

    def __init__(self, message: str, version: str, paths: tuple = ()):
        super().__init__(message, version)
        self.paths = paths


class CatalogError(MigrationError):
    """The migration directory could not be read"""

    def __init__(self, message: str, directory: str = "Unknown"):
        super().__init__(message, operation="list")
        self.directory = directory


class VerificationError(MigrationError):
    """The final database version does not match the migration catalog"""

    def __init__(self, message: str, version: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message, operation="verify")
        self.version = version
        self.target = target


class OutOfDateError(VerificationError):
    """The database is older than the newest migration on disk"""


class IncompatibleVersionError(VerificationError):
    """The database is newer than the code and not caret-compatible with it"""


class SessionStateError(RuntimeError):
    """A session was used after it had been committed, rolled back or released"""


class LoggingManager:
    """
    Centralized logging configuration and management
    """

    FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @staticmethod
    def setup_logging(log_level: str = "WARNING", log_file: Optional[str] = None):
        """
        Setup logging configuration

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
        """
        formatter = logging.Formatter(LoggingManager.FORMAT)

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper()))

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        # File handler (if specified)
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        logging.getLogger('semigrate').setLevel(getattr(logging, log_level.upper()))

