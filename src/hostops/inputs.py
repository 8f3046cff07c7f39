"""
Pluggable input for steps that need operator-supplied values.

Steps never prompt directly. They ask the run's ``InputProvider``, which
is either:

- ``StaticInputProvider``: unattended; answers from pre-supplied values
  (``--input KEY=VALUE``) or the caller's default, and fails otherwise
- ``PromptInputProvider``: interactive; answers from pre-supplied values
  first, then prompts on the terminal via click
"""

from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional, Protocol, runtime_checkable

import click

from hostops.errors import MissingInputError

__all__ = ["InputProvider", "StaticInputProvider", "PromptInputProvider"]

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


@runtime_checkable
class InputProvider(Protocol):
    """Source of operator answers for a run."""

    def ask(
        self,
        key: str,
        prompt: str,
        secret: bool = False,
        default: Optional[str] = None,
    ) -> str:
        ...

    def confirm(self, key: str, prompt: str, default: bool = False) -> bool:
        ...


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{key}: expected yes/no, got {value!r}")


class StaticInputProvider:
    """Answers from a fixed mapping; never blocks on a terminal."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def ask(
        self,
        key: str,
        prompt: str,
        secret: bool = False,
        default: Optional[str] = None,
    ) -> str:
        if key in self._values:
            return self._values[key]
        if default is not None:
            return default
        raise MissingInputError(key)

    def confirm(self, key: str, prompt: str, default: bool = False) -> bool:
        if key in self._values:
            return _parse_bool(key, self._values[key])
        return default


class PromptInputProvider:
    """Prompts the operator for anything not supplied up front."""

    def __init__(
        self,
        values: Optional[Mapping[str, str]] = None,
        prompt_fn: Callable[..., str] = click.prompt,
        confirm_fn: Callable[..., bool] = click.confirm,
    ):
        self._values: Dict[str, str] = dict(values or {})
        self._prompt = prompt_fn
        self._confirm = confirm_fn

    def ask(
        self,
        key: str,
        prompt: str,
        secret: bool = False,
        default: Optional[str] = None,
    ) -> str:
        if key in self._values:
            return self._values[key]
        return self._prompt(
            prompt,
            hide_input=secret,
            default=default,
            show_default=not secret,
        )

    def confirm(self, key: str, prompt: str, default: bool = False) -> bool:
        if key in self._values:
            return _parse_bool(key, self._values[key])
        return self._confirm(prompt, default=default)
