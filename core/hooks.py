"""
core/hooks.py
-------------
Lifecycle hooks for the data mapper.

Six hook points (``before``/``after`` × ``create``/``update``/``delete``)
are registered per model name and run sequentially in registration order.

Design Decisions:
    * A ``HookRegistry`` instance is injected through ``Model.configure`` like
      the metadata registry; there is no global store.
    * A hook that raises stops the chain and the exception propagates
      unchanged. Before-hooks therefore abort before any SQL runs;
      after-hooks fail after the statement has already executed.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable

from logger import get_logger

log = get_logger(__name__)

HookFunction = Callable[[Any], None]


class HookType(str, Enum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"


class HookRegistry:
    """
    Per-model hook lists.

    Example::

        hooks = HookRegistry()
        hooks.register("User", "before_create", lambda user: user.set("status", "new"))
        hooks.run("User", HookType.BEFORE_CREATE, user)
    """

    def __init__(self) -> None:
        self._hooks: dict[str, dict[HookType, list[HookFunction]]] = {}

    def register(self, model_name: str, hook_type: HookType | str, fn: HookFunction) -> None:
        hook_type = HookType(hook_type)
        self._hooks.setdefault(model_name, {}).setdefault(hook_type, []).append(fn)
        log.debug("Registered %s hook for %s", hook_type.value, model_name)

    def get(self, model_name: str, hook_type: HookType | str) -> list[HookFunction]:
        return list(self._hooks.get(model_name, {}).get(HookType(hook_type), []))

    def run(self, model_name: str, hook_type: HookType | str, instance: Any) -> None:
        """Invoke every hook of *hook_type* for *model_name* with *instance*."""
        for fn in self.get(model_name, hook_type):
            fn(instance)

    def clear(self, model_name: str | None = None) -> None:
        if model_name is None:
            self._hooks.clear()
        else:
            self._hooks.pop(model_name, None)
