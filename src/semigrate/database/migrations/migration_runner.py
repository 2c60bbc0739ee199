"""
Migration Runner

Executes one migration unit against a borrowed session and records it as
applied. Durability is decided by whoever owns the session: the runner never
commits, rolls back or releases.
"""

import logging
import time
from typing import Dict, Optional

from .catalog import MigrationUnit
from .version_manager import BookkeepingStore
from ...reporting import Reporter

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Runs migration units step by step

    Steps of a group run strictly in catalog order; the first failing step
    aborts the unit and nothing is recorded for it.
    """

    def __init__(self, store: BookkeepingStore, reporter: Optional[Reporter] = None):
        self.store = store
        self.reporter = reporter or Reporter()

    def run(self, unit: MigrationUnit, session) -> Dict:
        """
        Apply a single migration unit

        Args:
            unit: Migration unit to apply
            session: Active session owned by the caller

        Returns:
            Migration result with metadata
        """
        start_time = time.time()
        logger.info(f"Applying migration {unit.version}: {unit.label}")
        self.reporter.migration(unit)

        if unit.is_group:
            for step in unit.steps:
                self.reporter.step(step)
                logger.debug(f"Running {step.kind} step {step.path}")
                step.run(session)
                self.reporter.step_done(step)
        else:
            for step in unit.steps:
                logger.debug(f"Running {step.kind} step {step.path}")
                step.run(session)

        self.store.record_applied(session, unit.version)
        self.reporter.migration_done(unit)

        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Migration {unit.version} applied in {execution_time_ms}ms")

        return {
            "version": unit.version,
            "title": unit.title,
            "status": "applied",
            "steps": len(unit.steps),
            "execution_time_ms": execution_time_ms,
        }
