from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Set

from .errors import StateStoreError
from .lib.env import PATHS

logger = logging.getLogger(__name__)


class StateStore:
    """Completion record: one finished task id per line, append-only.

    Line order is irrelevant and duplicate lines count once.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def in_dir(cls, state_dir: str) -> "StateStore":
        return cls(Path(state_dir) / PATHS.completion_file)

    def completed(self) -> Set[str]:
        if not self.path.exists():
            return set()
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateStoreError(f"Cannot read completion record {self.path}: {e}") from e
        return {line.strip() for line in text.splitlines() if line.strip()}

    def is_completed(self, task_id: str) -> bool:
        return task_id in self.completed()

    def mark_completed(self, task_id: str) -> None:
        if self.is_completed(task_id):
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a+", encoding="utf-8") as f:
                # a hand-edited or truncated record may lack its final newline
                f.seek(0)
                text = f.read()
                if text and not text.endswith("\n"):
                    f.write("\n")
                f.write(task_id + "\n")
        except OSError as e:
            raise StateStoreError(f"Cannot update completion record {self.path}: {e}") from e
        logger.info("Phase %s marked as completed", task_id)

    def reset(self, confirm: Callable[[str], bool]) -> bool:
        """Remove the record after a typed confirmation; return True if removed."""

        logger.warning("This will reset all phase completion state.")
        if not confirm("Are you sure?"):
            logger.info("Reset cancelled")
            return False
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StateStoreError(f"Cannot remove completion record {self.path}: {e}") from e
        logger.info("Installation state has been reset")
        return True
