"""
hostops CLI - run host maintenance procedures.

Commands:
    hostops list                 List built-in procedures
    hostops check <procedure>    Evaluate a procedure's preconditions
    hostops run <procedure>      Run a procedure

Exit codes:
    0  completed (non-critical failures allowed)
    1  aborted by a critical step failure or cancellation
    2  preconditions not met
    3  resource lock held by another run
    4  bad command line, configuration or input values
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Tuple

import click

from hostops import __version__
from hostops.config import HostOpsConfig, load_config, parse_overrides
from hostops.errors import ConfigError, ResourceBusyError
from hostops.inputs import PromptInputProvider, StaticInputProvider
from hostops.orchestrator import EXIT_BUSY, EXIT_PRECONDITION, EXIT_USAGE, Orchestrator
from hostops.preconditions import PreconditionChecker
from hostops.procedures import get_procedure, list_procedures


def _load(config_file: Optional[Path], set_pairs: Tuple[str, ...], **extra) -> HostOpsConfig:
    try:
        overrides = parse_overrides(list(set_pairs))
        overrides.update({k: v for k, v in extra.items() if v is not None})
        return load_config(config_file, overrides)
    except ConfigError as e:
        raise click.BadParameter(str(e), param_hint="--config/--set")


def _resolve_procedure(name: str):
    try:
        return get_procedure(name)
    except KeyError:
        names = ", ".join(p.name for p in list_procedures())
        raise click.BadParameter(f"unknown procedure {name!r} (choose from: {names})",
                                 param_hint="PROCEDURE")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _install_cancel_handler(cancel: threading.Event) -> None:
    """First SIGTERM asks the run to stop after the current step."""

    def _handler(signum, frame):
        click.echo("Cancellation requested; stopping after the current step.", err=True)
        cancel.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, _handler)


class HostOpsGroup(click.Group):
    """Command group whose usage errors exit with EXIT_USAGE instead of 2."""

    def make_context(self, info_name, args, parent=None, **extra):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as e:
            e.exit_code = EXIT_USAGE
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            e.exit_code = EXIT_USAGE
            raise


@click.group(cls=HostOpsGroup)
@click.version_option(__version__)
def main():
    """hostops - host backup, maintenance and monitoring procedures."""
    pass


@main.command("list")
def list_command():
    """List built-in procedures."""
    for procedure in list_procedures():
        flags = []
        if procedure.requirements.privileged:
            flags.append("root")
        if procedure.lock:
            flags.append(f"lock:{procedure.lock}")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{procedure.name:<22} {procedure.description}{suffix}")


@main.command("check")
@click.argument("procedure_name", metavar="PROCEDURE")
def check_command(procedure_name: str):
    """Evaluate PROCEDURE's preconditions without running it."""
    procedure = _resolve_procedure(procedure_name)
    result = PreconditionChecker().evaluate(procedure.requirements)
    if result.passed:
        click.echo(click.style(f"{procedure.name}: all preconditions met", fg="green"))
        return
    for violation in result.violations:
        click.echo(click.style(f"[{violation.check_type}] {violation.message}", fg="red"))
    sys.exit(EXIT_PRECONDITION)


@main.command("run")
@click.argument("procedure_name", metavar="PROCEDURE")
@click.option("--config", "config_file", type=click.Path(dir_okay=False, path_type=Path),
              help="YAML file with setting overrides")
@click.option("--set", "set_pairs", multiple=True, metavar="KEY=VALUE",
              help="Override a setting (repeatable)")
@click.option("--input", "input_pairs", multiple=True, metavar="KEY=VALUE",
              help="Pre-answer an operator prompt (repeatable)")
@click.option("--log-dir", type=click.Path(file_okay=False), help="Directory for the run log")
@click.option("--dry-run", is_flag=True, help="Print commands instead of running them")
@click.option("--interactive/--unattended", default=False,
              help="Prompt for missing values instead of failing the step")
@click.option("--report-json", type=click.Path(dir_okay=False, path_type=Path),
              help="Also write the run report as JSON")
def run_command(
    procedure_name: str,
    config_file: Optional[Path],
    set_pairs: Tuple[str, ...],
    input_pairs: Tuple[str, ...],
    log_dir: Optional[str],
    dry_run: bool,
    interactive: bool,
    report_json: Optional[Path],
):
    """Run PROCEDURE against this host."""
    procedure = _resolve_procedure(procedure_name)
    config = _load(config_file, set_pairs, log_dir=log_dir)
    _configure_logging(config.log_level)

    try:
        answers = parse_overrides(list(input_pairs))
    except ConfigError as e:
        raise click.BadParameter(str(e), param_hint="--input")
    inputs = PromptInputProvider(answers) if interactive else StaticInputProvider(answers)

    cancel = threading.Event()
    _install_cancel_handler(cancel)

    orchestrator = Orchestrator(config, inputs=inputs, dry_run=dry_run)
    try:
        result = orchestrator.run(procedure, cancel=cancel, report_json=report_json)
    except ResourceBusyError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(EXIT_BUSY)
    except ConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(EXIT_USAGE)

    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
