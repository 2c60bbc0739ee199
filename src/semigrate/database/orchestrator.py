"""
Migration Orchestrator

Drives one migration run through its states:

    CONNECTING -> INITIALIZING -> (RESETTING) -> DETECTING -> (MIGRATING)
        -> LOADING -> FINALIZING -> VERIFYING -> DONE

Any failure before VERIFYING rolls the transaction back and ends in FAILED.
Verification failures happen after the transaction has been finalized and
do not undo committed work.
"""

import enum
import logging
import time
from typing import Callable, Dict, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DatabaseConfig, MigrationConfig, create_engine_for
from .migrations.catalog import VersionCatalog
from .migrations.migration_runner import MigrationRunner
from .migrations.version_manager import BookkeepingStore
from .migrations.versioning import compare_versions, is_compatible, latest_version, pending
from .session import TransactionalSession
from ..error_handling import (
    CatalogError,
    DatabaseConnectionError,
    IncompatibleVersionError,
    MigrationError,
    OutOfDateError,
    StatementError,
)
from ..reporting import Reporter, reporter_for

logger = logging.getLogger(__name__)

Callback = Callable[[Optional[BaseException], Optional[TransactionalSession]], None]


class RunState(enum.Enum):
    CONNECTING = "connecting"
    INITIALIZING = "initializing"
    RESETTING = "resetting"
    DETECTING = "detecting"
    MIGRATING = "migrating"
    LOADING = "loading"
    FINALIZING = "finalizing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


class Orchestrator:
    """
    Runs the migrations of a directory against one database

    Features:
    - Idempotent reruns: only versions newer than the recorded one are applied
    - Single transaction per run, rolled back on any failure or in dry-run mode
    - Tolerates a missing bookkeeping table while detecting the version
    - Verifies the reached version against the newest migration on disk
    """

    def __init__(self, config: MigrationConfig, reporter: Optional[Reporter] = None,
                 catalog: Optional[VersionCatalog] = None, store: Optional[BookkeepingStore] = None,
                 runner: Optional[MigrationRunner] = None, engine: Optional[Engine] = None):
        """
        Initialize orchestrator

        Args:
            config: Run options
            reporter: Progress reporter (derived from quiet/colors when omitted)
            catalog: Migration catalog (built from config.extensions when omitted)
            store: Bookkeeping store (built from config.schema/table when omitted)
            runner: Migration runner
            engine: Engine to use instead of one built from config.database
        """
        self.config = config
        self.reporter = reporter or reporter_for(quiet=config.quiet, colors=config.colors)
        self._catalog = catalog
        self.store = store or BookkeepingStore(config.schema, config.table)
        self.runner = runner or MigrationRunner(self.store, self.reporter)
        self._engine = engine
        self.state: Optional[RunState] = None
        self.states: List[RunState] = []

    def _enter(self, state: RunState):
        self.state = state
        self.states.append(state)
        logger.info(f"Migration run {state.value}")

    def _get_engine(self) -> Engine:
        if self._engine is None:
            if not self.config.database:
                raise DatabaseConnectionError("No database configured", target="")
            try:
                self._engine = create_engine_for(self.config.database)
            except (SQLAlchemyError, ValueError) as e:
                raise DatabaseConnectionError(f"Invalid database target: {e}", target=self.config.database) from e
        return self._engine

    def _get_catalog(self) -> VersionCatalog:
        if self._catalog is None:
            try:
                self._catalog = VersionCatalog.for_extensions(self.config.extensions)
            except ValueError as e:
                raise CatalogError(str(e), directory=str(self.config.directory)) from e
        return self._catalog

    def _connect(self) -> TransactionalSession:
        return TransactionalSession.connect(self._get_engine())

    def _target_label(self) -> str:
        if self._engine is not None:
            return self._engine.url.render_as_string(hide_password=True)
        return DatabaseConfig(self.config.database or "").get_connection_info()["database_url"]

    def _detect(self, session: TransactionalSession, quiet: bool = False) -> Optional[str]:
        version = self.store.current_version(session)
        if version is not None and not quiet:
            self.reporter.current_version(version)
        return version

    def _detect_or_recover(self, session: TransactionalSession) -> Optional[str]:
        try:
            return self._detect(session)
        except StatementError as e:
            logger.info(f"Version detection failed, assuming an empty history: {e}")
            session.restart()
            return None

    def _load(self, session: TransactionalSession) -> List[str]:
        loaded = []
        for path in self.config.load:
            self.reporter.load(path)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    script = f.read()
            except OSError as e:
                raise StatementError(f"{path}: {e}", statement=path, cause=e) from e
            session.execute_script(script, name=path)
            self.reporter.load_done(path)
            loaded.append(path)
        return loaded

    def read_version(self) -> Optional[str]:
        """
        Current recorded version, read in a separate read-only transaction

        A missing bookkeeping table (e.g. after a dry run on an empty
        database) reads as no version.
        """
        with TransactionalSession.connect(self._get_engine()) as session:
            try:
                return self._detect(session, quiet=True)
            except StatementError as e:
                logger.info(f"Cannot read bookkeeping table: {e}")
                return None
            finally:
                session.rollback()

    def verify(self, target: Optional[str]) -> Dict:
        """
        Compare the database version with ``target``

        Returns:
            Verification result

        Raises:
            OutOfDateError: the database is older than ``target``
            IncompatibleVersionError: the database is newer and not compatible
        """
        if target is None:
            logger.info("No migrations on disk, skipping verification")
            return {"version": None, "target": None, "compatible": True}

        version = self.read_version()
        if version is None or compare_versions(target, version) > 0:
            raise OutOfDateError("Database is out-of-date.", version, target)
        if compare_versions(target, version) == 0:
            self.reporter.up_to_date(version)
            return {"version": version, "target": target, "compatible": True}
        if is_compatible(version, target):
            logger.warning(f"Database version {version} is newer than {target} but compatible")
            self.reporter.compatible(version, target)
            return {"version": version, "target": target, "compatible": True, "newer": True}
        raise IncompatibleVersionError(
            f"Database version {version} is incompatible with the current code ({target}).", version, target
        )

    def run(self, callback: Optional[Callback] = None) -> Dict:
        """
        Execute a full migration run

        Args:
            callback: Called exactly once with ``(error or None, session)``
                after the session has been released

        Returns:
            Run results

        Raises:
            MigrationError: the run failed; the transaction was not committed
                unless the error is a VerificationError
        """
        start_time = time.time()
        self.states = []
        session: Optional[TransactionalSession] = None
        error: Optional[BaseException] = None
        owns_engine = self._engine is None
        result: Dict = {"applied": [], "loaded": [], "dry_run": self.config.dry_run}

        try:
            units = self._get_catalog().list(self.config.directory)
            target = latest_version(unit.version for unit in units)
            result["target"] = target

            self._enter(RunState.CONNECTING)
            self.reporter.connecting(self._target_label())
            session = self._connect()

            self._enter(RunState.INITIALIZING)
            self.reporter.stage("Initializing migration schema...")
            self.store.ensure_schema(session)
            self.reporter.stage_done()

            if self.config.reset:
                self._enter(RunState.RESETTING)
                self.reporter.stage("Resetting database...")
                self.store.clear(session)
                self.reporter.stage_done()

            self._enter(RunState.DETECTING)
            version = self._detect_or_recover(session)
            result["previous_version"] = version

            if self.config.migrate:
                self._enter(RunState.MIGRATING)
                queue = pending(units, version)
                self.reporter.migrating(len(queue))
                for unit in queue:
                    result["applied"].append(self.runner.run(unit, session))

            self._enter(RunState.LOADING)
            result["loaded"] = self._load(session)

            self._enter(RunState.FINALIZING)
            if self.config.dry_run:
                self.reporter.reverting()
                session.rollback()
            else:
                session.commit()
            session.release()

            self._enter(RunState.VERIFYING)
            result.update(self.verify(target))

            self._enter(RunState.DONE)
        except Exception as e:
            error = e
            self._enter(RunState.FAILED)
            logger.error(f"Migration run failed: {e}")
            self.reporter.failure(e)
        finally:
            if session is not None:
                session.release()
            if owns_engine and self._engine is not None:
                self._engine.dispose()
                self._engine = None

        result["total_time_ms"] = int((time.time() - start_time) * 1000)
        if callback is not None:
            callback(error, session)
        if error is not None:
            raise error
        return result

    def status(self) -> Dict:
        """
        Read-only migration status

        Returns:
            Current version, target version, pending and applied migrations
        """
        owns_engine = self._engine is None
        units = self._get_catalog().list(self.config.directory)
        try:
            with self._connect() as session:
                try:
                    applied = self.store.applied(session)
                except StatementError:
                    applied = []
                session.rollback()
        finally:
            if owns_engine and self._engine is not None:
                self._engine.dispose()
                self._engine = None

        version = latest_version(record["version"] for record in applied)
        return {
            "current_version": version,
            "target_version": latest_version(unit.version for unit in units),
            "pending_migrations": [
                {"version": unit.version, "title": unit.title, "path": str(unit.source_path)}
                for unit in pending(units, version)
            ],
            "applied_migrations": applied,
            "migrations_path": str(self.config.directory),
        }


def semigrate(config: Union[MigrationConfig, Dict, None] = None, callback: Optional[Callback] = None,
              **options) -> Optional[MigrationError]:
    """
    Run the migrations described by ``config``

    Args:
        config: MigrationConfig or mapping of options
        callback: Called exactly once with ``(error or None, session)``
        options: Orchestrator keyword arguments (reporter, catalog, store, engine)

    Returns:
        None on success, otherwise the MigrationError that ended the run
    """
    if config is None:
        config = MigrationConfig()
    elif not isinstance(config, MigrationConfig):
        config = MigrationConfig.from_mapping(config)

    try:
        Orchestrator(config, **options).run(callback)
    except MigrationError as e:
        return e
    return None
