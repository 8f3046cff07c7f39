"""Tests for hostops.inputs."""

from __future__ import annotations

import pytest

from hostops.errors import MissingInputError
from hostops.inputs import InputProvider, PromptInputProvider, StaticInputProvider


class TestStaticInputProvider:

    def test_supplied_value(self):
        provider = StaticInputProvider({"mysql_password": "s3cret"})
        assert provider.ask("mysql_password", "Password", secret=True) == "s3cret"

    def test_default_when_missing(self):
        assert StaticInputProvider().ask("x", "X?", default="fallback") == "fallback"

    def test_missing_without_default_raises(self):
        with pytest.raises(MissingInputError) as exc_info:
            StaticInputProvider().ask("admin_user", "Admin user")
        assert exc_info.value.key == "admin_user"
        assert "--interactive" in exc_info.value.detail

    @pytest.mark.parametrize("value,expected", [("yes", True), ("Y", True), ("0", False), ("off", False)])
    def test_confirm_parses_bool(self, value, expected):
        assert StaticInputProvider({"go": value}).confirm("go", "Go?") is expected

    def test_confirm_default(self):
        assert StaticInputProvider().confirm("go", "Go?", default=True) is True

    def test_confirm_rejects_garbage(self):
        with pytest.raises(ValueError):
            StaticInputProvider({"go": "maybe"}).confirm("go", "Go?")

    def test_satisfies_protocol(self):
        assert isinstance(StaticInputProvider(), InputProvider)


class TestPromptInputProvider:

    def test_supplied_value_skips_prompt(self):
        def never(*args, **kwargs):
            raise AssertionError("should not prompt")

        provider = PromptInputProvider({"k": "v"}, prompt_fn=never, confirm_fn=never)
        assert provider.ask("k", "K?") == "v"
        assert PromptInputProvider({"go": "no"}, confirm_fn=never).confirm("go", "Go?") is False

    def test_prompts_with_hidden_input_for_secrets(self):
        calls = []

        def prompt(text, **kwargs):
            calls.append((text, kwargs))
            return "typed"

        provider = PromptInputProvider(prompt_fn=prompt)
        assert provider.ask("mysql_password", "MySQL password", secret=True, default="") == "typed"
        assert calls == [
            ("MySQL password", {"hide_input": True, "default": "", "show_default": False})
        ]

    def test_confirm_prompts(self):
        provider = PromptInputProvider(confirm_fn=lambda text, default: not default)
        assert provider.confirm("go", "Go?", default=False) is True

    def test_satisfies_protocol(self):
        assert isinstance(PromptInputProvider(), InputProvider)
