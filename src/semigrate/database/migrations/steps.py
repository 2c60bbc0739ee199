"""
Step executors for migration units

A step is either a declarative script, sent to the database as-is, or a
procedure: a Python callable receiving the session.
"""

import hashlib
import importlib.util
import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from ...error_handling import MigrationError, StatementError

logger = logging.getLogger(__name__)

Procedure = Callable[..., object]


class Step:
    """One executable sub-unit of a migration"""

    kind = "step"

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return self.path.name

    def run(self, session):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {self.path}>"


class ScriptStep(Step):
    """Runs the raw content of a SQL file"""

    kind = "script"

    def read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StatementError(f"{self.path}: {e}", statement=str(self.path), cause=e) from e

    def run(self, session):
        session.execute_script(self.read(), name=str(self.path))


class ProcedureStep(Step):
    """
    Calls a Python function with the session

    When no function is given, the file at ``path`` is imported and its
    ``upgrade(session)`` function is used.
    """

    kind = "procedure"

    def __init__(self, path: Path, function: Optional[Procedure] = None):
        super().__init__(path)
        self.function = function

    def resolve(self) -> Procedure:
        if self.function is None:
            self.function = load_procedure(self.path)
        return self.function

    def run(self, session):
        function = self.resolve()
        try:
            function(session)
        except MigrationError:
            raise
        except Exception as e:
            logger.debug(f"Procedure {self.path} failed: {e}")
            raise StatementError(f"{self.path}: {e}", statement=str(self.path), cause=e) from e


def load_procedure(path: Path) -> Procedure:
    """
    Import a procedural migration file and return its ``upgrade`` function

    Raises:
        StatementError: the file cannot be imported or has no ``upgrade``
    """
    path = Path(path)
    module_name = "semigrate_procedure_" + hashlib.sha1(str(path.resolve()).encode()).hexdigest()[:12]
    try:
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except Exception as e:
        raise StatementError(f"{path}: {e}", statement=str(path), cause=e) from e

    function = getattr(module, "upgrade", None)
    if not callable(function):
        raise StatementError(f"{path}: procedure has no upgrade() function", statement=str(path))
    return function


class ProcedureRegistry:
    """
    Static registration table for procedural migrations

    Procedures are registered under a file name (``02-seed.py`` or ``02-seed``).
    Use ``step_factory`` as the ``.py`` entry of a catalog's step types:

        registry = ProcedureRegistry()

        @registry.register("02-seed")
        def seed(session):
            ...

        catalog = VersionCatalog(step_types={".sql": ScriptStep, ".py": registry.step_factory})
    """

    def __init__(self, dynamic_fallback: bool = True):
        self._procedures: Dict[str, Procedure] = {}
        self.dynamic_fallback = dynamic_fallback

    def register(self, name: str, function: Optional[Procedure] = None):
        if function is None:
            def decorator(func: Procedure) -> Procedure:
                self._procedures[name] = func
                return func
            return decorator
        self._procedures[name] = function
        return function

    def lookup(self, path: Path) -> Optional[Procedure]:
        path = Path(path)
        return self._procedures.get(path.name) or self._procedures.get(path.stem)

    def step_factory(self, path: Path) -> ProcedureStep:
        function = self.lookup(path)
        if function is None and not self.dynamic_fallback:
            raise StatementError(f"{path}: no registered procedure", statement=str(path))
        return ProcedureStep(path, function)

    def __contains__(self, name: str) -> bool:
        return name in self._procedures

    def __len__(self):
        return len(self._procedures)


DEFAULT_STEP_TYPES = {
    ".sql": ScriptStep,
    ".py": ProcedureStep,
}
