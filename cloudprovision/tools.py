"""Thin adapters over the terraform and gcloud CLIs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from cloudprovision.runner import CommandResult, CommandRunner

logger = logging.getLogger(__name__)

# settings.ipConfiguration.pscConfig.pscEnabled on a Cloud SQL instance
PSC_ENABLED_FIELD = "settings.ipConfiguration.pscConfig.pscEnabled"


class TerraformTool:
    def __init__(self, runner: CommandRunner, *, binary: str = "terraform", timeout: float = 900.0) -> None:
        self.runner = runner
        self.binary = binary
        self.timeout = timeout

    async def init_and_apply(
        self,
        working_dir: Path,
        env: Mapping[str, str],
        targets: Sequence[str] = (),
    ) -> CommandResult:
        """Returns the init result when init fails, else the apply result."""
        init = await self.runner.run(
            [self.binary, "init", "-input=false", "-no-color"],
            cwd=str(working_dir),
            env=env,
            timeout=self.timeout,
        )
        if not init.ok:
            return init

        cmd: List[str] = [self.binary, "apply", "-auto-approve", "-input=false", "-no-color"]
        cmd += [f"-target={t}" for t in targets]
        return await self.runner.run(cmd, cwd=str(working_dir), env=env, timeout=self.timeout)

    async def read_output(self, working_dir: Path) -> CommandResult:
        return await self.runner.run(
            [self.binary, "output", "-json", "-no-color"],
            cwd=str(working_dir),
            timeout=self.timeout,
        )


class GCloudTool:
    def __init__(self, runner: CommandRunner, *, binary: str = "gcloud", timeout: float = 120.0) -> None:
        self.runner = runner
        self.binary = binary
        self.timeout = timeout

    async def set_project(self, project_id: str) -> CommandResult:
        return await self.runner.run(
            [self.binary, "config", "set", "project", project_id, "--quiet"],
            timeout=self.timeout,
        )

    async def enable_services(self, project_id: str, services: Iterable[str]) -> CommandResult:
        return await self.runner.run(
            [self.binary, "services", "enable", *services, f"--project={project_id}", "--quiet"],
            timeout=self.timeout,
        )

    async def describe(
        self,
        identifier: str,
        project_id: str,
        field: str = PSC_ENABLED_FIELD,
        *,
        resource: Sequence[str] = ("sql", "instances"),
    ) -> CommandResult:
        return await self.runner.run(
            [
                self.binary,
                *resource,
                "describe",
                identifier,
                f"--project={project_id}",
                f"--format=value({field})",
            ],
            timeout=self.timeout,
        )


def parse_bool(value: Optional[str]) -> Optional[bool]:
    """gcloud prints True/False for boolean fields; anything else is indeterminate."""
    v = (value or "").strip().lower()
    if v in {"true", "yes", "1"}:
        return True
    if v in {"false", "no", "0"}:
        return False
    return None
