"""
Test configuration and fixtures.
"""

import asyncio
from types import SimpleNamespace
from typing import Any, List

import pytest
from unittest.mock import AsyncMock, MagicMock

from drivers.targets import reset_target_registry


OPEN_RULES = {"rules": {".read": True, ".write": True}}

CLOSED_RULES = {"rules": {".read": False, ".write": False}}

ALICE_READS_RULES = {
    "rules": {
        ".read": {"==": [{"var": "auth.uid"}, "alice"]},
    }
}

PEOPLE_RULES = {
    "rules": {
        "people": {
            ".read": {"!=": [{"var": "auth"}, None]},
            "$uid": {
                ".write": {"==": [{"var": "auth.uid"}, {"var": "$uid"}]},
                ".validate": {"!=": [{"var": "newData.sv"}, None]},
            },
        },
    }
}


@pytest.fixture(autouse=True)
def reset_targets():
    """Isolate the process-wide rule-deployment cache and locks."""
    reset_target_registry()
    yield
    reset_target_registry()


class FakeDriver:
    """Driver recording its calls."""

    id = "fake"

    def __init__(self, result: Any = None, error: Exception = None):
        self.result = result
        self.error = error
        self.initialized: List[Any] = []
        self.executed: List[Any] = []

    def initialize(self, context):
        self.initialized.append(context)

    def execute(self, context):
        self.executed.append(context)
        if self.error is not None:
            raise self.error
        return self.result


class AsyncFakeDriver(FakeDriver):
    """Driver whose execution suspends before completing."""

    async def execute(self, context):
        self.executed.append(context)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def fake_driver():
    return FakeDriver(result="done")


@pytest.fixture
def mock_rest_client():
    """Create a mock REST client recording the order of its calls."""
    client = MagicMock()
    client.project_id = "test-project"
    client.calls = []

    def recorder(name):
        async def call(**kwargs):
            client.calls.append((name, kwargs))
            await asyncio.sleep(0)
        return call

    for name in ("rules", "get", "set", "update", "push", "remove"):
        setattr(client, name, AsyncMock(side_effect=recorder(name)))

    return client


@pytest.fixture
def mock_token_generator():
    """Create a token generator returning readable tokens."""
    generator = MagicMock()
    generator.create_token = MagicMock(
        side_effect=lambda data, options: f"token:{data['uid']}:{sorted(options.items())}"
    )
    return generator


def simulation_result(allowed: bool, database: Any = None, info: str = "info") -> SimpleNamespace:
    return SimpleNamespace(allowed=allowed, info=info, database=database, new_database=None)
