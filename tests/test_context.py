import pytest

from cloudprovision.context import ContextSwitcher
from cloudprovision.errors import ContextSwitchError
from cloudprovision.tools import GCloudTool

from .conftest import OK


@pytest.mark.asyncio
async def test_switch_sets_active_project(runner, sleep):
    switcher = ContextSwitcher(GCloudTool(runner), sleep=sleep)

    await switcher.switch("proj-1")

    assert switcher.active_project == "proj-1"
    assert runner.commands("config", "set") == [("gcloud", "config", "set", "project", "proj-1", "--quiet")]
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried(runner, sleep):
    runner.script(["config", "set"], (1, "", "ERROR: gcloud crashed"), OK)
    switcher = ContextSwitcher(GCloudTool(runner), sleep=sleep)

    await switcher.switch("proj-1")

    assert len(runner.commands("config", "set")) == 2
    assert len(sleep.calls) == 1


@pytest.mark.asyncio
async def test_gives_up_after_configured_attempts(runner, sleep):
    runner.script(["config", "set"], (1, "", "ERROR: project not found"))
    switcher = ContextSwitcher(GCloudTool(runner), attempts=2, sleep=sleep)

    with pytest.raises(ContextSwitchError, match="project not found"):
        await switcher.switch("proj-1")
    assert len(runner.commands("config", "set")) == 2
    assert switcher.active_project is None


@pytest.mark.asyncio
async def test_empty_project_is_rejected(runner, sleep):
    with pytest.raises(ContextSwitchError):
        await ContextSwitcher(GCloudTool(runner), sleep=sleep).switch("")
    assert runner.calls == []
