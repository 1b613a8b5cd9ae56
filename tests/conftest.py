"""
Shared fixtures for installer tests
===================================
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import pytest

from gentoo_installer.config import InstallConfig
from gentoo_installer.pipeline import StepContext


class FakeStep:
    """Phase body that records invocations and fails on demand."""

    def __init__(self, step_id: str, result: Optional[bool] = True, exc: Optional[BaseException] = None):
        self.step_id = step_id
        self.result = result
        self.exc = exc
        self.calls = 0

    def run(self, ctx: StepContext) -> Optional[bool]:
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.result


def scripted_input(replies: Iterable[str]):
    """input() replacement answering from a list; EOF once exhausted."""

    it = iter(replies)
    prompts: List[str] = []

    def _input(prompt: str) -> str:
        prompts.append(prompt)
        try:
            return next(it)
        except StopIteration:
            raise EOFError from None

    _input.prompts = prompts
    return _input


@pytest.fixture
def config(tmp_path) -> InstallConfig:
    return InstallConfig(
        disk="/dev/vda",
        state_dir=str(tmp_path / "state"),
        config_dir=str(tmp_path / "config"),
        mount_root=str(tmp_path / "mnt"),
        dry_run=True,
    )


@pytest.fixture
def ctx(config) -> StepContext:
    return StepContext(config=config)
