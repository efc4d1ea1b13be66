"""Collectors that return fixture data for demo/dev/testing."""

from __future__ import annotations

import copy
import json
import os
from typing import Any

from pchealth.collectors.base import Collector

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")

# Collector category -> fixture file describing a healthy machine
DEFAULT_FIXTURES = {
    "event_log": "event_log_mock.json",
    "disk": "disk_mock.json",
    "driver": "driver_mock.json",
    "system_resource": "system_resource_mock.json",
    "network": "network_mock.json",
}


def _load_fixture(name: str) -> dict:
    path = os.path.join(FIXTURES_DIR, name)
    with open(path, "r") as f:
        return json.load(f)


class StaticCollector(Collector):
    """Returns a fixed result (or a fixture file's content) on every call.

    Records the steps it was asked to run so tests can assert on dispatch.
    """

    def __init__(self, name: str, result: dict | None = None, fixture: str | None = None):
        self.name = name
        if result is None and fixture is not None:
            result = _load_fixture(fixture)
        self._result = result or {}
        self.calls: list[dict[str, Any]] = []

    async def investigate(self, step: dict[str, Any], options: dict[str, Any] | None = None) -> dict[str, Any]:
        self.calls.append(step)
        return copy.deepcopy(self._result)


def mock_collectors() -> dict[str, Collector]:
    """One fixture-backed collector per category."""
    return {name: StaticCollector(name, fixture=fixture) for name, fixture in DEFAULT_FIXTURES.items()}
