"""Interactive operator prompts.

Every prompt takes an ``input_fn`` so callers (and tests) can substitute the
terminal read. EOF on stdin is treated as the default answer.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from .errors import UsageError
from .lib.block import DiskInfo

logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]
Confirm = Callable[[str], bool]


def _read(input_fn: InputFn, prompt: str) -> str:
    try:
        return input_fn(prompt).strip()
    except EOFError:
        return ""


def confirm(question: str = "Are you sure?", *, default: bool = False, input_fn: InputFn = input) -> bool:
    suffix = " [Y/n]: " if default else " [y/N]: "
    reply = _read(input_fn, question + suffix).lower()
    if not reply:
        return default
    return reply.startswith("y")


def confirm_typed(question: str, *, word: str = "yes", input_fn: InputFn = input) -> bool:
    """Require the operator to type ``word`` exactly."""

    return _read(input_fn, f"{question} ({word}/no): ") == word


def make_confirm(input_fn: InputFn = input, *, assume_yes: bool = False) -> Confirm:
    if assume_yes:
        return lambda question: True
    return lambda question: confirm(question, input_fn=input_fn)


def select_disk(
    disks: Sequence[DiskInfo],
    *,
    input_fn: InputFn = input,
    out: Callable[[str], None] = print,
) -> str:
    """Ask the operator which disk to erase; raise UsageError on cancel."""

    if not disks:
        raise UsageError("No disks detected!")

    for i, d in enumerate(disks, start=1):
        out(f"  [{i}] {d.path}" + (f" - {d.size}" if d.size else ""))
    out("")

    if len(disks) == 1:
        disk = disks[0].path
        out(f"Only one disk detected: {disk}")
        reply = _read(input_fn, f"Use {disk}? (yes/no) [yes]: ") or "yes"
        if reply.lower() not in {"yes", "y"}:
            raise UsageError("Installation cancelled")
        return disk

    out("WARNING: The selected disk will be COMPLETELY ERASED!")
    choice: Optional[int]
    try:
        choice = int(_read(input_fn, "Select disk number [1]: ") or "1")
    except ValueError:
        choice = None
    if choice is None or not 1 <= choice <= len(disks):
        raise UsageError("Invalid disk selection")

    disk = disks[choice - 1].path
    out(f"Selected: {disk}")
    if not confirm_typed(f"Are you SURE you want to erase {disk}?", input_fn=input_fn):
        raise UsageError("Installation cancelled")
    return disk
