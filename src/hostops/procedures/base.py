"""Procedure definition and the shared helpers procedures are built from."""

from __future__ import annotations

import getpass
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from hostops.preconditions import Requirements
from hostops.steps import Outcome, Skipped, Step, StepContext, Success
from hostops.timeouts import SUBPROCESS_LONG_TIMEOUT_S

__all__ = [
    "Procedure",
    "ensure_directory",
    "prune_older_than",
    "existing_relative",
    "as_user",
]

StepBuilder = Callable[[StepContext], List[Step]]


@dataclass(frozen=True)
class Procedure:
    """
    A named, ordered recipe of steps.

    Attributes:
        name: CLI name, e.g. ``backup-system``
        description: One line for ``hostops list``
        requirements: Checked before any step runs
        build: Produces the step list for a given run context
        lock: Resource name held for the whole run, if any
    """

    name: str
    description: str
    requirements: Requirements
    build: StepBuilder
    lock: Optional[str] = None


def ensure_directory(context: StepContext, path: Path, mode: str = "700") -> Outcome:
    """Create ``path`` (and parents) with ``mode`` via ``install -d``."""
    existed = path.is_dir()
    context.run("install", ["-d", "-m", mode, str(path)]).check(
        f"Creating directory {path}"
    )
    if existed:
        return Success(f"directory exists: {path}")
    return Success(f"directory created: {path}")


def prune_older_than(
    context: StepContext,
    directory: Path,
    patterns: Sequence[str],
    days: int,
    remove_empty_dirs: bool = False,
) -> Outcome:
    """Delete files matching ``patterns`` older than ``days`` under ``directory``."""
    if not directory.is_dir() and not context.dry_run:
        return Skipped(f"{directory} does not exist")

    name_args: List[str] = []
    for pattern in patterns:
        if name_args:
            name_args.append("-o")
        name_args.extend(["-name", pattern])

    result = context.run(
        "find",
        [str(directory), "-type", "f", "(", *name_args, ")",
         "-mtime", f"+{days}", "-print", "-delete"],
        timeout=SUBPROCESS_LONG_TIMEOUT_S,
    )
    result.check(f"Pruning {directory}")
    removed = result.lines()

    if remove_empty_dirs:
        context.run(
            "find", [str(directory), "-mindepth", "1", "-type", "d", "-empty", "-delete"]
        ).check(f"Removing empty directories under {directory}")

    return Success(f"removed {len(removed)} file(s) older than {days} day(s)")


def existing_relative(paths: Sequence[str], root: Path = Path("/")) -> List[str]:
    """Keep paths that exist, relative to ``root`` (for ``tar -C /``)."""
    kept = []
    for raw in paths:
        path = Path(raw)
        if path.exists():
            try:
                kept.append(str(path.relative_to(root)))
            except ValueError:
                kept.append(str(path))
    return kept


def as_user(user: str, program: str, args: Sequence[str]) -> List[str]:
    """
    Argument vector that runs ``program`` as ``user``.

    Returns ``[program, *args]`` unchanged when already running as that user.
    """
    if getpass.getuser() == user:
        return [program, *args]
    return ["sudo", "-u", user, program, *args]
