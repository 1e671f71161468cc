"""
Best-effort follow-up work that runs after the primary write has committed.

A failing action is logged and skipped; it never changes the response of the
operation that scheduled it, and never stops the remaining actions.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PostActions:
    def __init__(self, operation: str):
        self.operation = operation
        self._actions: list[tuple[str, Callable[[], None]]] = []
        self.failed: list[str] = []

    def add(self, name: str, fn: Callable[[], None]) -> None:
        self._actions.append((name, fn))

    def run(self) -> list[str]:
        """Run every scheduled action. Returns the names of the ones that failed."""
        for name, fn in self._actions:
            try:
                fn()
            except Exception:
                logger.exception("Post-commit action failed: operation=%s action=%s", self.operation, name)
                self.failed.append(name)
        self._actions.clear()
        return self.failed
