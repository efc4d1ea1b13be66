"""Abstract Collector: a read-only evidence gatherer for one category of system state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Collector(ABC):
    """Contract every evidence collector satisfies.

    `step` is `{"action": str, "config": dict}`. Implementations only query
    the system; they never change it. Callers still isolate every call, so
    an exception here degrades evidence instead of aborting a turn.
    """

    name: str = "collector"

    @abstractmethod
    async def investigate(self, step: dict[str, Any], options: dict[str, Any] | None = None) -> dict[str, Any]:
        ...


class NotImplementedCollector(Collector):
    """Stand-in returned for actions nobody registered a collector for."""

    def __init__(self, action: str):
        self.name = f"unimplemented:{action}"
        self._action = action

    async def investigate(self, step: dict[str, Any], options: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "findings": [f'Investigation for "{self._action}" is not yet implemented'],
            "recommendations": [],
        }
