from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence, Tuple


class ErrorKind(Enum):
    USAGE = "usage"
    CONFIG = "config"
    STATE = "state"
    PREFLIGHT = "preflight"
    TASK = "task"
    INTERRUPTED = "interrupted"


# Only main.py translates these into process exit statuses.
EXIT_CODES = {
    ErrorKind.TASK: 1,
    ErrorKind.USAGE: 2,
    ErrorKind.PREFLIGHT: 3,
    ErrorKind.CONFIG: 4,
    ErrorKind.STATE: 4,
    ErrorKind.INTERRUPTED: 130,
}


class InstallerError(Exception):
    kind: ErrorKind = ErrorKind.TASK

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]


class UsageError(InstallerError):
    kind = ErrorKind.USAGE


class ConfigError(InstallerError):
    kind = ErrorKind.CONFIG


class StateStoreError(InstallerError):
    kind = ErrorKind.STATE


class PreflightFailure(InstallerError):
    """One or more preflight checks failed or were declined."""

    kind = ErrorKind.PREFLIGHT

    def __init__(self, failures: Sequence[Tuple[str, str]]):
        self.failures: List[Tuple[str, str]] = list(failures)
        super().__init__(f"{len(self.failures)} pre-flight check(s) failed")


class TaskFailure(InstallerError):
    kind = ErrorKind.TASK

    def __init__(self, task_id: str, cause: Optional[BaseException] = None):
        self.task_id = task_id
        self.cause = cause
        msg = f"Phase {task_id} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class InstallInterrupted(InstallerError):
    kind = ErrorKind.INTERRUPTED

    def __init__(self, task_id: Optional[str] = None):
        self.task_id = task_id
        where = f" during phase {task_id}" if task_id else ""
        super().__init__(f"Installation interrupted by user{where}")


class CommandError(RuntimeError):
    """An external command exited non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}\n{stderr}".rstrip())
