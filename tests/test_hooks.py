"""
tests/test_hooks.py
-------------------
Unit tests for core/hooks.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import pytest

from core.hooks import HookRegistry, HookType


@pytest.fixture
def hooks() -> HookRegistry:
    return HookRegistry()


class TestHookRegistry:
    def test_runs_in_registration_order(self, hooks: HookRegistry) -> None:
        calls: list[str] = []
        hooks.register("User", "before_create", lambda _: calls.append("first"))
        hooks.register("User", HookType.BEFORE_CREATE, lambda _: calls.append("second"))
        hooks.run("User", HookType.BEFORE_CREATE, object())
        assert calls == ["first", "second"]

    def test_hooks_are_per_model(self, hooks: HookRegistry) -> None:
        calls: list[str] = []
        hooks.register("User", "after_delete", lambda _: calls.append("user"))
        hooks.run("Post", "after_delete", object())
        assert calls == []

    def test_instance_is_passed(self, hooks: HookRegistry) -> None:
        seen = []
        hooks.register("User", "before_update", seen.append)
        marker = object()
        hooks.run("User", "before_update", marker)
        assert seen == [marker]

    def test_failure_stops_the_chain(self, hooks: HookRegistry) -> None:
        calls: list[str] = []

        def failing(_):
            raise RuntimeError("nope")

        hooks.register("User", "before_create", failing)
        hooks.register("User", "before_create", lambda _: calls.append("later"))
        with pytest.raises(RuntimeError):
            hooks.run("User", "before_create", object())
        assert calls == []

    def test_unknown_hook_type(self, hooks: HookRegistry) -> None:
        with pytest.raises(ValueError):
            hooks.register("User", "before_save", lambda _: None)

    def test_clear(self, hooks: HookRegistry) -> None:
        hooks.register("User", "after_create", lambda _: None)
        hooks.clear("User")
        assert hooks.get("User", "after_create") == []
