"""
Version Catalog for migration directories

A migration directory holds entries named ``<semver>-<title>``:

    migrations/
        0.0.1-initial/          grouped migration
            01-tables.sql
            02-seed.py
        0.0.2-views.sql         single migration
        README.md               ignored, no version prefix

Entries whose prefix is not a semantic version or whose extension is not a
known script type are skipped silently.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from .steps import DEFAULT_STEP_TYPES, Step
from .versioning import canonical_version, parse_version
from ...error_handling import CatalogError, DuplicateVersionError

logger = logging.getLogger(__name__)

StepFactory = Callable[[Path], Step]


@dataclass
class MigrationUnit:
    """One version-tagged change: a single script or an ordered group"""

    version: str
    title: str
    is_group: bool
    source_path: Path
    steps: List[Step] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.title + ("/" if self.is_group else "")


def split_entry_name(name: str):
    """Split ``<version>-<title>`` at the first dash; None when there is no dash"""
    version, sep, title = name.partition("-")
    if not sep:
        return None
    return version, title


class VersionCatalog:
    """
    Lists the migration units of a directory in semantic version order

    Args:
        step_types: Script extension to step factory mapping
        sort_steps: Sort the scripts of a group by file name instead of
            trusting the directory listing order
    """

    def __init__(self, step_types: Optional[Mapping[str, StepFactory]] = None, sort_steps: bool = True):
        self.step_types: Dict[str, StepFactory] = dict(step_types or DEFAULT_STEP_TYPES)
        self.sort_steps = sort_steps

    @classmethod
    def for_extensions(cls, extensions, **kwargs) -> "VersionCatalog":
        """Catalog restricted to ``extensions`` among the default step types"""
        step_types = {ext: DEFAULT_STEP_TYPES[ext] for ext in extensions if ext in DEFAULT_STEP_TYPES}
        unknown = [ext for ext in extensions if ext not in DEFAULT_STEP_TYPES]
        if unknown:
            raise ValueError(f"No step executor for extensions: {', '.join(unknown)}")
        return cls(step_types, **kwargs)

    def is_script(self, path: Path) -> bool:
        return path.suffix in self.step_types

    def _make_step(self, path: Path) -> Step:
        return self.step_types[path.suffix](path)

    def _listdir(self, directory: Path) -> List[str]:
        names = os.listdir(directory)
        return sorted(names) if self.sort_steps else names

    def parse(self, path: Path) -> Optional[MigrationUnit]:
        """
        Parse one directory entry into a migration unit

        Returns:
            MigrationUnit, or None when the entry is not a migration
        """
        path = Path(path)
        parts = split_entry_name(path.name)
        if parts is None:
            return None

        version = canonical_version(parts[0])
        if version is None:
            return None

        if path.is_dir():
            scripts = [path / name for name in self._listdir(path)]
            steps = [self._make_step(p) for p in scripts if p.is_file() and self.is_script(p)]
            return MigrationUnit(version, parts[1], True, path, steps)

        if not self.is_script(path):
            return None

        title = parts[1][: -len(path.suffix)] if parts[1].endswith(path.suffix) else parts[1]
        return MigrationUnit(version, title, False, path, [self._make_step(path)])

    def list(self, directory="migrations/") -> List[MigrationUnit]:
        """
        List the migration units of ``directory`` sorted by version

        Raises:
            CatalogError: the directory cannot be read
            DuplicateVersionError: two entries share a version
        """
        directory = Path(directory or ".")
        try:
            names = os.listdir(directory)
        except OSError as e:
            raise CatalogError(f"Cannot read migration directory {directory}: {e}", str(directory)) from e

        units = []
        seen: Dict[str, MigrationUnit] = {}
        for name in names:
            unit = self.parse(directory / name)
            if unit is None:
                logger.debug(f"Skipping {name}: not a migration")
                continue
            if unit.version in seen:
                other = seen[unit.version]
                raise DuplicateVersionError(
                    f"Version {unit.version} is defined by both {other.source_path.name} and {name}",
                    unit.version,
                    (other.source_path, unit.source_path),
                )
            seen[unit.version] = unit
            units.append(unit)

        units.sort(key=lambda unit: parse_version(unit.version))
        logger.info(f"Found {len(units)} migrations in {directory}")
        return units
