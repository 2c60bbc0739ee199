"""
semigrate - semantically versioned database migrations

Applies the ``<semver>-<title>`` migration units of a directory in version
order inside a single transaction, records applied versions in the target
database and verifies the reached version against the newest migration.
"""

from .database.config import MigrationConfig
from .database.orchestrator import Orchestrator, RunState, semigrate
from .error_handling import (
    CatalogError,
    ConflictError,
    DatabaseConnectionError,
    DuplicateVersionError,
    IncompatibleVersionError,
    MigrationError,
    OutOfDateError,
    SessionStateError,
    StatementError,
    StorageError,
    VerificationError,
)

__version__ = "1.0.0"

__all__ = [
    'MigrationConfig', 'Orchestrator', 'RunState', 'semigrate',
    'MigrationError', 'DatabaseConnectionError', 'StorageError', 'StatementError',
    'ConflictError', 'DuplicateVersionError', 'CatalogError', 'VerificationError',
    'OutOfDateError', 'IncompatibleVersionError', 'SessionStateError',
]
