"""Database access for semigrate: configuration, sessions and orchestration"""

from .config import DatabaseConfig, MigrationConfig
from .session import TransactionalSession

__all__ = ['DatabaseConfig', 'MigrationConfig', 'TransactionalSession']
