from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

from .config import InstallConfig
from .errors import CommandError, InstallInterrupted, TaskFailure, UsageError
from .state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepContext:
    """Everything a phase body may consult; built once per invocation."""

    config: InstallConfig
    confirm: Callable[[str], bool] = field(default=lambda question: False)

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run


class Step(Protocol):
    """A single phase. Failure is a raised exception or a False return."""

    step_id: str

    def run(self, ctx: StepContext) -> Optional[bool]:
        ...


class TaskState(Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskRegistry:
    """Ordered, immutable set of phases keyed by step_id."""

    def __init__(self, steps: Sequence[Step]):
        self._steps: Tuple[Step, ...] = tuple(steps)
        self._by_id: Dict[str, Step] = {}
        for step in self._steps:
            if step.step_id in self._by_id:
                raise ValueError(f"Duplicate phase id: {step.step_id}")
            self._by_id[step.step_id] = step

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_id

    @property
    def ids(self) -> List[str]:
        return [s.step_id for s in self._steps]

    def get(self, task_id: str) -> Step:
        try:
            return self._by_id[task_id]
        except KeyError:
            raise UsageError(f"Unknown phase: {task_id}") from None


@dataclass(frozen=True)
class PipelineResult:
    ran_steps: List[str]
    skipped_steps: List[str]


class Orchestrator:
    """Run phases in order with resume/idempotency semantics."""

    def __init__(self, registry: TaskRegistry, store: StateStore, ctx: StepContext):
        self.registry = registry
        self.store = store
        self.ctx = ctx
        self.states: Dict[str, TaskState] = {task_id: TaskState.PENDING for task_id in registry.ids}

    def run_task(self, task_id: str) -> TaskState:
        step = self.registry.get(task_id)

        if self.store.is_completed(task_id):
            logger.info("Phase %s already completed, skipping", task_id)
            self.states[task_id] = TaskState.SKIPPED
            return TaskState.SKIPPED

        logger.info("==========================================")
        logger.info("Starting phase: %s", task_id)
        logger.info("==========================================")
        self.states[task_id] = TaskState.RUNNING

        try:
            ok = step.run(self.ctx)
        except KeyboardInterrupt:
            self.states[task_id] = TaskState.FAILED
            logger.warning("Installation interrupted by user")
            logger.info("You can resume by running the installer again")
            logger.info("Completed phases will be skipped automatically")
            raise InstallInterrupted(task_id) from None
        except Exception as e:
            self.states[task_id] = TaskState.FAILED
            if isinstance(e, CommandError):
                logger.error("Phase %s failed running: %s", task_id, " ".join(e.argv))
            else:
                logger.error("Phase %s failed: %s", task_id, e)
            raise TaskFailure(task_id, e) from e

        if ok is False:
            self.states[task_id] = TaskState.FAILED
            logger.error("Phase %s failed!", task_id)
            raise TaskFailure(task_id)

        self.store.mark_completed(task_id)
        self.states[task_id] = TaskState.COMPLETED
        logger.info("Phase %s completed successfully", task_id)
        return TaskState.COMPLETED

    def run_all(self) -> PipelineResult:
        ran: List[str] = []
        skipped: List[str] = []

        for task_id in self.registry.ids:
            try:
                state = self.run_task(task_id)
            except TaskFailure:
                logger.error("Installation halted due to phase failure")
                raise
            (ran if state is TaskState.COMPLETED else skipped).append(task_id)

        logger.info("==========================================")
        logger.info("All phases completed successfully!")
        logger.info("==========================================")
        return PipelineResult(ran_steps=ran, skipped_steps=skipped)

    def run_single(self, task_id: str) -> TaskState:
        if task_id not in self.registry:
            raise UsageError(f"Unknown phase: {task_id}")
        return self.run_task(task_id)

    def list_status(self) -> List[Tuple[str, TaskState]]:
        done = self.store.completed()
        return [
            (task_id, TaskState.COMPLETED if task_id in done else TaskState.PENDING)
            for task_id in self.registry.ids
        ]

    def reset(self, confirm: Callable[[str], bool]) -> bool:
        return self.store.reset(confirm)
