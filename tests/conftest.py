"""Pytest configuration and fixtures for the admin panel tests."""

import json
import os

import httpx
import pytest

from provisioner.compose import ComposeCommand
from provisioner.runner import StepResult
from provisioner.sink import CollectingSink
from provisioner.store import ConfigStore, ProjectLayout
from provisioner.workflows import WorkflowEngine


class FakeRunner:
    """
    Scripted stand-in for ProcessRunner.

    Every invocation is recorded as (command, args). The result is picked
    by the first scripted marker that appears as an argument; anything
    unscripted succeeds with empty output.
    """

    def __init__(self):
        self.calls: list[tuple[str, list[str]]] = []
        self._scripted: list[tuple[str, StepResult]] = []

    def script(self, marker: str, code: int = 0, stdout: str = "", stderr: str = "") -> None:
        self._scripted.append((marker, StepResult(code, stdout, stderr)))

    def _result_for(self, args: list[str]) -> StepResult:
        for marker, result in self._scripted:
            if marker in args:
                return result
        return StepResult(code=0)

    def subcommands(self) -> list[str]:
        """First argument after the compose prefix, e.g. 'pull' or 'run'."""
        names = []
        for _, args in self.calls:
            for candidate in ("pull", "up", "restart", "stop", "ps", "logs", "plugins", "channels", "doctor", "pairing", "czf"):
                if candidate in args:
                    names.append(candidate)
                    break
        return names

    async def run_step(self, sink, command, args):
        self.calls.append((command, list(args)))
        result = self._result_for(args)
        if result.stdout:
            await sink.stdout(result.stdout)
        if result.stderr:
            await sink.stderr(result.stderr)
        return result

    async def stream(self, sink, command, args):
        result = await self.run_step(sink, command, args)
        await sink.exit(result.code)
        return result.code


def mock_health(status: int = 200) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status))


def write_env(layout: ProjectLayout, content: str) -> None:
    with open(layout.env_file, "w", encoding="utf-8") as f:
        f.write(content)


def write_json(path: str, data) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)


def read_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def layout(tmp_path):
    return ProjectLayout(str(tmp_path))


@pytest.fixture
def store(layout):
    return ConfigStore(layout)


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def make_engine(store, runner):
    """Engine factory with a fake runner and an instant health poll."""

    def _make(health_status: int = 200, attempts: int = 3) -> WorkflowEngine:
        return WorkflowEngine(
            store=store,
            compose=ComposeCommand(store.layout),
            runner=runner,
            health_attempts=attempts,
            health_interval=0,
            health_transport=mock_health(health_status),
            clock=lambda: 1_700_000_000_000,
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
