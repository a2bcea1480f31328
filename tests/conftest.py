"""Shared fakes: a scripted command runner and a virtual clock."""

import json
import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

import pytest

from cloudprovision.orchestrator import ProvisioningOrchestrator
from cloudprovision.runner import CommandResult
from cloudprovision.settings import ProvisionSettings

Scripted = Union[Tuple[int, str, str], Exception]

OK: Tuple[int, str, str] = (0, "", "")


def pytest_configure(config):
    logging.basicConfig(level=logging.WARNING, force=True)


class FakeRunner:
    """
    Returns scripted results for commands containing all of the given tokens.

    Results for a script are consumed in order; the last one repeats. Commands
    with no matching script succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[Tuple[str, ...], Optional[str], dict]] = []
        self._scripts: List[Tuple[Tuple[str, ...], List[Scripted]]] = []

    def script(self, tokens: Sequence[str], *results: Scripted) -> None:
        self._scripts.insert(0, (tuple(tokens), list(results)))

    async def run(self, command, *, cwd=None, env=None, timeout=None) -> CommandResult:
        argv = tuple(command)
        self.calls.append((argv, cwd, dict(env or {})))
        for tokens, results in self._scripts:
            if all(t in argv for t in tokens):
                outcome = results.pop(0) if len(results) > 1 else results[0]
                if isinstance(outcome, Exception):
                    raise outcome
                code, stdout, stderr = outcome
                return CommandResult(command=argv, exit_code=code, stdout=stdout, stderr=stderr)
        return CommandResult(command=argv, exit_code=0)

    def commands(self, *tokens: str) -> List[Tuple[str, ...]]:
        return [argv for argv, _, _ in self.calls if all(t in argv for t in tokens)]

    def env_of(self, *tokens: str) -> dict:
        for argv, _, env in self.calls:
            if all(t in argv for t in tokens):
                return env
        raise AssertionError(f"no call with {tokens}")


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    """Records requested delays and advances the clock instead of waiting."""

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.now += seconds


def tf_output(**values: Any) -> str:
    """`terraform output -json` shaped text."""
    return json.dumps({k: {"sensitive": False, "type": "string", "value": v} for k, v in values.items()})


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock) -> FakeSleep:
    return FakeSleep(clock)


@pytest.fixture
def settings(tmp_path) -> ProvisionSettings:
    return ProvisionSettings(terraform_root=tmp_path / "terraform", propagation_wait_seconds=120)


@pytest.fixture
def orchestrator(settings, runner, sleep, clock) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator(settings, runner=runner, sleep=sleep, clock=clock)
