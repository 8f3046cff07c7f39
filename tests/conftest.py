"""
Pytest configuration and fixtures for hostops tests.
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass, replace
from typing import Dict, Generator, List, Mapping, Optional, Sequence, Tuple, Union

import pytest

from hostops.config import HostOpsConfig, reset_config
from hostops.executor import CommandExecutor, CommandResult
from hostops.inputs import StaticInputProvider
from hostops.platform import (
    FirewallBackend,
    HostPlatform,
    OSFamily,
    PackageManager,
    ServiceManager,
)
from hostops.procedures import PROCEDURES
from hostops.steps import StepContext


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_hostops_env(monkeypatch) -> Generator[None, None, None]:
    """Keep HOSTOPS_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("HOSTOPS_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path) -> HostOpsConfig:
    """Configuration rooted entirely under tmp_path."""
    return HostOpsConfig(
        log_dir=str(tmp_path / "logs"),
        state_dir=str(tmp_path / "state"),
        backup_dir=str(tmp_path / "backups" / "system"),
        db_backup_dir=str(tmp_path / "backups" / "databases"),
        services=["sshd", "nginx"],
    )


# ============================================================================
# Executor Fixtures
# ============================================================================


@dataclass
class Call:
    argv: Tuple[str, ...]
    env: Optional[Mapping[str, str]]
    timeout: Optional[float]
    input_text: Optional[str]


Response = Union[CommandResult, BaseException]


class FakeExecutor(CommandExecutor):
    """
    Executor that answers from scripted responses.

    Responses are keyed by argv prefix; the longest matching prefix wins,
    and a list of responses for one prefix is consumed in order (the last
    one repeats). Unmatched commands succeed with empty output.
    """

    def __init__(self):
        super().__init__()
        self.calls: List[Call] = []
        self._responses: Dict[Tuple[str, ...], List[Response]] = {}

    def on(
        self,
        *prefix: str,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        raises: Optional[BaseException] = None,
    ) -> "FakeExecutor":
        response: Response = raises or CommandResult(
            argv=tuple(prefix), exit_code=exit_code, stdout=stdout, stderr=stderr
        )
        self._responses.setdefault(tuple(prefix), []).append(response)
        return self

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
        self.calls.append(Call(argv, env, timeout, input_text))
        best = None
        for prefix in self._responses:
            if argv[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(argv=argv, exit_code=0)
        queue = self._responses[best]
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return CommandResult(
            argv=argv,
            exit_code=response.exit_code,
            stdout=response.stdout,
            stderr=response.stderr,
        )

    def commands(self) -> List[str]:
        return [" ".join(call.argv) for call in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(call.argv[: len(prefix)] == prefix for call in self.calls)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


# ============================================================================
# Context Fixtures
# ============================================================================


@pytest.fixture
def linux_platform() -> HostPlatform:
    return HostPlatform(
        os_family=OSFamily.LINUX,
        privileged=True,
        package_manager=PackageManager.APT,
        service_manager=ServiceManager.SYSTEMD,
        firewall=FirewallBackend.UFW,
        tools=frozenset(
            tool
            for procedure in PROCEDURES.values()
            for tool in procedure.requirements.optional_binaries
        ),
    )


@pytest.fixture
def run_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def make_context(config, fake_executor, linux_platform, run_output):
    """Factory for StepContext objects wired to the fake executor."""

    def _make(**overrides) -> StepContext:
        run_logger = logging.getLogger("hostops.test-run")
        run_logger.handlers.clear()
        run_logger.addHandler(logging.StreamHandler(run_output))
        run_logger.setLevel(logging.INFO)
        run_logger.propagate = False
        values = dict(
            procedure="test-procedure",
            run_id="test-run",
            timestamp="20260101_120000",
            config=config,
            executor=fake_executor,
            platform=linux_platform,
            inputs=StaticInputProvider(),
            logger=run_logger,
        )
        values.update(overrides)
        return StepContext(**values)

    return _make


@pytest.fixture
def context(make_context) -> StepContext:
    return make_context()


@pytest.fixture
def bare_context(make_context, linux_platform) -> StepContext:
    """Context on a host where none of the optional tools are installed."""
    return make_context(platform=replace(linux_platform, tools=frozenset()))
