"""
Command execution for hostops steps.

Every external tool a procedure touches (``tar``, ``systemctl``,
``mysqldump``, ``mail``, ...) is invoked through ``CommandExecutor``:

- one process per call, awaited to completion or timeout
- stdout/stderr captured as text
- on timeout the child's whole process group is killed and reaped
- exit codes are returned, never interpreted

Usage::

    from hostops.executor import CommandExecutor

    executor = CommandExecutor(default_timeout=30)
    result = executor.execute("systemctl", ["is-active", "sshd"])
    if not result.ok:
        ...
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from hostops.errors import ExecutionError, ExecutionErrorKind, StepFailure
from hostops.timeouts import KILL_REAP_TIMEOUT_S

__all__ = ["CommandResult", "CommandExecutor", "DryRunExecutor", "which"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Captured result of one finished command."""

    argv: Tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def command(self) -> str:
        return " ".join(self.argv)

    def lines(self) -> List[str]:
        """Non-empty stdout lines, stripped."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    def check(self, context: str = "") -> "CommandResult":
        """
        Return self when the exit code is zero.

        Raises:
            StepFailure: With the command, exit code and stderr folded in
        """
        if self.ok:
            return self
        parts = []
        if context:
            parts.append(context)
        parts.append(f"Command: {self.command}")
        parts.append(f"Exit code: {self.exit_code}")
        detail = self.stderr.strip() or self.stdout.strip()
        raise StepFailure("\n".join(parts), detail=detail)


def which(name: str, path: Optional[str] = None) -> Optional[str]:
    """Locate a binary on PATH, like ``command -v``."""
    return shutil.which(name, path=path)


def _process_group_kwargs() -> Dict[str, object]:
    """Popen kwargs that put the child in its own process group."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Kill the child and everything it spawned."""
    if sys.platform == "win32":
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Already gone
        pass
    except PermissionError:
        proc.kill()


class CommandExecutor:
    """Runs external programs and captures their output."""

    def __init__(self, default_timeout: Optional[float] = None):
        """
        Args:
            default_timeout: Seconds applied when ``execute`` gets no
                timeout. ``None`` waits indefinitely.
        """
        self.default_timeout = default_timeout

    def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        """
        Run ``program`` with ``args`` and wait for it.

        Args:
            program: Binary name (looked up on PATH) or path
            args: Arguments, passed without a shell
            env: Extra environment variables layered over the parent's
            timeout: Seconds before the process group is killed
            input_text: Text written to stdin
            cwd: Working directory for the child

        Returns:
            CommandResult, whatever the exit code

        Raises:
            ExecutionError: NOT_FOUND, PERMISSION_DENIED, SPAWN_FAILED or TIMEOUT
        """
        argv = [program, *args]
        if timeout is None:
            timeout = self.default_timeout
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        logger.debug("exec: %s (timeout=%s)", " ".join(argv), timeout)
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=full_env,
                cwd=cwd,
                **_process_group_kwargs(),
            )
        except FileNotFoundError as e:
            raise ExecutionError(ExecutionErrorKind.NOT_FOUND, argv, str(e)) from e
        except PermissionError as e:
            raise ExecutionError(ExecutionErrorKind.PERMISSION_DENIED, argv, str(e)) from e
        except OSError as e:
            raise ExecutionError(ExecutionErrorKind.SPAWN_FAILED, argv, str(e)) from e

        try:
            stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process_group(proc)
            self._reap(proc)
            logger.warning("killed after %ss: %s", timeout, " ".join(argv))
            raise ExecutionError(ExecutionErrorKind.TIMEOUT, argv, timeout=timeout)
        except KeyboardInterrupt:
            # Forward the interrupt to the child before unwinding
            _kill_process_group(proc)
            self._reap(proc)
            raise

        return CommandResult(
            argv=tuple(argv),
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_s=time.monotonic() - started,
        )

    @staticmethod
    def _reap(proc: subprocess.Popen) -> None:
        try:
            proc.communicate(timeout=KILL_REAP_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()


class DryRunExecutor(CommandExecutor):
    """
    Executor that records commands instead of running them.

    Every call reports success with empty output, so procedures run
    their full step list without touching the host.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        super().__init__(default_timeout)
        self.commands: List[Tuple[str, ...]] = []

    def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> CommandResult:
        argv = (program, *args)
        self.commands.append(argv)
        logger.info("[dry-run] %s", " ".join(argv))
        return CommandResult(argv=argv, exit_code=0)
