"""
Database Configuration for semigrate

Collects the options of a migration run from the environment (``.env``
files included), YAML files and plain mappings, and builds the SQLAlchemy
engine the run connects through.
"""

import os
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import yaml
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY = "migrations/"
DEFAULT_SCHEMA = "semigrate"
DEFAULT_TABLE = "migrations"
DEFAULT_EXTENSIONS = (".sql", ".py")

_TRUE_VALUES = ("1", "true", "yes", "on")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


def _as_list(value: Union[None, str, Sequence[str]]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


@dataclass
class MigrationConfig:
    """Options recognized by a migration run"""

    database: Optional[str] = None
    directory: str = DEFAULT_DIRECTORY
    reset: bool = False
    migrate: bool = True
    dry_run: bool = False
    load: List[str] = field(default_factory=list)
    quiet: bool = False
    colors: bool = True
    schema: str = DEFAULT_SCHEMA
    table: str = DEFAULT_TABLE
    extensions: Sequence[str] = DEFAULT_EXTENSIONS

    def __post_init__(self):
        self.load = _as_list(self.load)
        self.extensions = tuple(
            ext if ext.startswith(".") else f".{ext}" for ext in _as_list(self.extensions)
        )
        for name in ("reset", "migrate", "dry_run", "quiet", "colors"):
            setattr(self, name, _as_bool(getattr(self, name)))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "MigrationConfig":
        """
        Build a configuration from a mapping of option names

        Dashed names (``dry-run``) are accepted alongside their underscored
        form. Unknown keys are ignored.

        Args:
            mapping: Option names and values

        Returns:
            MigrationConfig instance
        """
        known = {f.name for f in fields(cls)}
        options = {}
        for key, value in mapping.items():
            name = key.replace("-", "_")
            if name in known and value is not None:
                options[name] = value
        return cls(**options)

    @classmethod
    def from_env(cls, prefix: str = "SEMIGRATE_", dotenv: bool = True) -> "MigrationConfig":
        """
        Build a configuration from environment variables

        ``SEMIGRATE_DATABASE`` falls back to ``DATABASE_URL``. ``SEMIGRATE_LOAD``
        and ``SEMIGRATE_EXTENSIONS`` are comma separated lists.

        Args:
            prefix: Environment variable prefix
            dotenv: Whether to read a ``.env`` file first

        Returns:
            MigrationConfig instance
        """
        if dotenv:
            load_dotenv()

        options: Dict[str, Any] = {}
        for f in fields(cls):
            value = os.getenv(f"{prefix}{f.name.upper()}")
            if value is None:
                continue
            if f.name in ("load", "extensions"):
                value = [item.strip() for item in value.split(",") if item.strip()]
            options[f.name] = value

        if "database" not in options and os.getenv("DATABASE_URL"):
            options["database"] = os.getenv("DATABASE_URL")

        return cls.from_mapping(options)

    @classmethod
    def from_yaml(cls, path: str) -> "MigrationConfig":
        """Build a configuration from a YAML mapping stored in ``path``"""
        return cls.from_mapping(load_yaml_options(path))

    def merged(self, overrides: Mapping[str, Any]) -> "MigrationConfig":
        """Return a copy with every non-None override applied"""
        options = {f.name: getattr(self, f.name) for f in fields(self)}
        options.update(
            {key.replace("-", "_"): value for key, value in overrides.items() if value is not None}
        )
        return MigrationConfig.from_mapping(options)


class DatabaseConfig:
    """Engine factory for migration targets"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.getenv("DATABASE_URL")

    def create_engine(self, **kwargs) -> Engine:
        """Create SQLAlchemy engine with appropriate configuration"""
        if not self.database_url:
            raise ValueError("No database URL configured")

        engine_config = {}
        engine_config["echo"] = os.getenv("DB_ECHO", "false").lower() == "true"
        engine_config["pool_pre_ping"] = True
        engine_config.update(kwargs)

        engine = create_engine(self.database_url, **engine_config)
        if engine.dialect.name == "sqlite":
            _enable_sqlite_transactional_ddl(engine)

        logger.debug(f"Created engine for {self.get_connection_info()['database_url']}")
        return engine

    def get_connection_info(self) -> Dict:
        """Get connection information for debugging"""
        url = self.database_url or ""
        return {
            "database_url": url.replace(
                url.split("@")[0].split("://")[-1] + "@", "***:***@"
            )
            if "@" in url
            else url,
        }


def _enable_sqlite_transactional_ddl(engine: Engine):
    # pysqlite only opens transactions before DML; take over BEGIN so that
    # CREATE/DROP statements are rolled back together with everything else.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_for(target: Union[str, Engine], **kwargs) -> Engine:
    """Return ``target`` if it is already an engine, otherwise build one"""
    if isinstance(target, Engine):
        return target
    return DatabaseConfig(target).create_engine(**kwargs)


def load_yaml_options(path: str) -> Dict[str, Any]:
    """Read a YAML mapping of run options"""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Configuration file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data
