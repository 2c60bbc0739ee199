"""
Database Migration System for semigrate

Key Features:
- Directory catalog of ``<semver>-<title>`` migration units
- Grouped migrations made of ordered SQL and Python steps
- Bookkeeping of applied versions inside the target database
"""

from .catalog import MigrationUnit, VersionCatalog
from .migration_runner import MigrationRunner
from .steps import ProcedureRegistry, ProcedureStep, ScriptStep
from .version_manager import BookkeepingStore

__all__ = [
    'MigrationUnit', 'VersionCatalog', 'MigrationRunner', 'BookkeepingStore',
    'ScriptStep', 'ProcedureStep', 'ProcedureRegistry',
]
