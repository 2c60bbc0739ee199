"""
Progress reporting for migration runs

The orchestrator talks to a Reporter instance it is given; there is no
process-wide output state. The base class is silent.
"""

import logging
import sys
from typing import Optional, TextIO

from colorama import Fore, Style


class Reporter:
    """Silent reporter; subclasses override what they want to show"""

    def connecting(self, target: str):
        pass

    def stage(self, message: str):
        pass

    def stage_done(self, result: str = "done"):
        pass

    def current_version(self, version: str):
        pass

    def migrating(self, count: int):
        pass

    def migration(self, unit):
        pass

    def migration_done(self, unit):
        pass

    def step(self, step):
        pass

    def step_done(self, step):
        pass

    def load(self, path: str):
        pass

    def load_done(self, path: str):
        pass

    def reverting(self):
        pass

    def up_to_date(self, version: str):
        pass

    def compatible(self, version: str, target: str):
        pass

    def failure(self, error: BaseException):
        pass


SilentReporter = Reporter


class ConsoleReporter(Reporter):
    """
    Coloured terminal output

    Single migrations and group steps are printed as dotted lines closed by
    a ``[done]`` marker once they succeed.
    """

    MIGRATION_WIDTH = 100
    STEP_WIDTH = 72

    def __init__(self, stream: Optional[TextIO] = None, colors: bool = True):
        self.stream = stream or sys.stdout
        self.colors = colors

    def _c(self, text: str, *codes: str) -> str:
        if not self.colors or not codes:
            return text
        return "".join(codes) + text + Style.RESET_ALL

    def _write(self, text: str):
        self.stream.write(text)
        self.stream.flush()

    def _dotted(self, plain: str, styled: str, width: int) -> str:
        dots = "." * max(0, width - len(plain))
        return styled + self._c(dots, Style.DIM, Fore.WHITE)

    def connecting(self, target):
        self._write(self._c("Connecting to database ", Style.DIM) + self._c(target, Style.DIM) +
                    self._c("...", Style.DIM) + "\n")

    def stage(self, message):
        self._write(self._c(message, Fore.BLUE))

    def stage_done(self, result="done"):
        self._write(self._c(result, Style.BRIGHT, Fore.BLUE) + "\n")

    def current_version(self, version):
        self.stage("Current version...")
        self.stage_done(version)

    def migrating(self, count):
        if count:
            self._write(self._c("Migrating database...", Fore.BLUE) + "\n")

    def migration(self, unit):
        head = f"   {unit.version:>4}: "
        plain = f"{head}{unit.label} "
        styled = "   " + self._c(f"{unit.version:>4}", Style.BRIGHT, Fore.WHITE) + self._c(": ", Style.DIM) + \
            self._c(unit.label, Style.BRIGHT, Fore.BLUE) + " "
        if unit.is_group:
            self._write(styled + "\n")
        else:
            self._write(self._dotted(plain, styled, self.MIGRATION_WIDTH))

    def migration_done(self, unit):
        if not unit.is_group:
            self._done()

    def step(self, step):
        plain = f"          {step.name} "
        styled = "          " + self._c(step.name, Fore.MAGENTA) + " "
        self._write(self._dotted(plain, styled, self.STEP_WIDTH))

    def step_done(self, step):
        self._done()

    def load(self, path):
        self._write(self._c(f"Loading {path} ", Fore.BLUE))

    def load_done(self, path):
        self._done()

    def reverting(self):
        self._write(self._c("Reverting...", Style.BRIGHT, Fore.RED) + "\n")

    def up_to_date(self, version):
        self._write("\n" + self._c("Database is up-to-date.", Style.BRIGHT, Fore.GREEN) + "\n")

    def compatible(self, version, target):
        self._write("\n" + self._c("WARNING: Database is newer than the code, but it is a compatible version.",
                                   Style.BRIGHT, Fore.YELLOW) + "\n")

    def failure(self, error):
        self._write("\n")

    def _done(self):
        self._write(self._c("[", Style.DIM) + self._c("done", Style.BRIGHT, Fore.GREEN) +
                    self._c("]", Style.DIM) + "\n")


class LogReporter(Reporter):
    """Structured progress records sent to a logger"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("semigrate.report")

    def connecting(self, target):
        self.logger.info("connecting", extra={"target": target})

    def stage(self, message):
        self.logger.info(message.rstrip(". "))

    def current_version(self, version):
        self.logger.info(f"current version {version}", extra={"version": version})

    def migrating(self, count):
        self.logger.info(f"{count} pending migrations", extra={"pending": count})

    def migration(self, unit):
        self.logger.info(f"applying {unit.version} {unit.label}", extra={"version": unit.version})

    def migration_done(self, unit):
        self.logger.info(f"applied {unit.version}", extra={"version": unit.version})

    def step(self, step):
        self.logger.debug(f"step {step.name}", extra={"step": step.name, "kind": step.kind})

    def load(self, path):
        self.logger.info(f"loading {path}", extra={"script": path})

    def reverting(self):
        self.logger.warning("dry run: reverting all changes")

    def up_to_date(self, version):
        self.logger.info(f"database is up-to-date at {version}", extra={"version": version})

    def compatible(self, version, target):
        self.logger.warning(f"database {version} is newer than code {target} but compatible",
                            extra={"version": version, "target": target})

    def failure(self, error):
        self.logger.error(f"migration run failed: {error}")


def reporter_for(quiet: bool = False, colors: bool = True, stream: Optional[TextIO] = None) -> Reporter:
    """Reporter matching the ``quiet``/``colors`` options"""
    if quiet:
        return SilentReporter()
    return ConsoleReporter(stream=stream, colors=colors)
