"""Provisioning orchestrator: the entry point callers use to deploy resource folders."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from cloudprovision.context import ContextSwitcher
from cloudprovision.errors import ClassifiedError, DeploymentStateUnknown, OutputNotFound, ProvisionError
from cloudprovision.executor.folders import FolderDefinition, FolderRegistry
from cloudprovision.executor.outputs import TFVARS_FILE, parse_outputs, write_tfvars
from cloudprovision.executor.phases import ApplyPlan, PhaseSequencer
from cloudprovision.executor.schema import (
    ApplyAttempt,
    ApplyRequest,
    DeployResult,
    DeployStatus,
    ErrorCategory,
    ManagedDeployResult,
    OutputRecord,
)
from cloudprovision.poller import CompletionPoller
from cloudprovision.runner import CommandRunner, SubprocessRunner
from cloudprovision.settings import ProvisionSettings
from cloudprovision.tools import PSC_ENABLED_FIELD, GCloudTool, TerraformTool, parse_bool

logger = logging.getLogger(__name__)

_CAVEATS = {
    ErrorCategory.ASYNC_OPERATION_ACCEPTED: (
        DeployStatus.ACCEPTED,
        "The operation was submitted successfully and is running in the background; "
        "it will complete automatically.",
    ),
    ErrorCategory.ASYNC_OPERATION_IN_PROGRESS: (
        DeployStatus.IN_PROGRESS,
        "The operation is taking longer than expected but was submitted successfully; "
        "it is still in progress.",
    ),
}


class ProvisioningOrchestrator:
    """
    Runs one sequential pipeline per request:
    context switch -> phase 1 (optional) -> propagation wait -> phase 2 -> optional completion poll.

    Requests for different folders may run concurrently. Requests for the same folder are
    not serialized here; callers that need that must provide their own locking.
    """

    def __init__(
        self,
        settings: Optional[ProvisionSettings] = None,
        *,
        runner: Optional[CommandRunner] = None,
        registry: Optional[FolderRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Timing and tool configuration (default: from CLOUDPROVISION_* env)
            runner: Command runner (default: SubprocessRunner); tests pass a fake
            registry: Resource folder definitions (default: built-ins + settings.packs_dir)
            sleep: Awaitable sleep used for every wait in the pipeline
            clock: Monotonic clock used by the completion poller
        """
        self.settings = settings or ProvisionSettings.default_from_env()
        self.runner = runner or SubprocessRunner(self.settings.command_timeout_seconds)
        self.registry = registry or FolderRegistry(self.settings.packs_dir)

        self.terraform = TerraformTool(
            self.runner, binary=self.settings.terraform_bin, timeout=self.settings.command_timeout_seconds
        )
        self.gcloud = GCloudTool(self.runner, binary=self.settings.gcloud_bin)
        self.context = ContextSwitcher(self.gcloud, attempts=self.settings.context_switch_attempts, sleep=sleep)
        self.sequencer = PhaseSequencer(
            self.terraform,
            gcloud=self.gcloud,
            propagation_wait_seconds=self.settings.propagation_wait_seconds,
            sleep=sleep,
            on_attempt=self._record_attempt,
        )
        self.poller = CompletionPoller(sleep=sleep, clock=clock)

        self._history: Dict[str, List[ApplyAttempt]] = {}
        # pipelines that outlived the caller's deadline
        self._orphans: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    async def deploy(
        self,
        resource_folder: str,
        variables: Optional[Mapping[str, Any]] = None,
        capabilities_already_enabled: Optional[bool] = None,
    ) -> DeployResult:
        # unset optional variables are dropped, not sent to terraform
        request = ApplyRequest(
            resource_folder=resource_folder,
            variables={k: v for k, v in (variables or {}).items() if v is not None},
            capabilities_already_enabled=capabilities_already_enabled,
        )
        return await self.submit(request)

    async def submit(self, request: ApplyRequest) -> DeployResult:
        """Race the pipeline against the overall deadline without cancelling it."""
        timeout = self.settings.deploy_timeout_minutes * 60
        task = asyncio.ensure_future(self._pipeline(request))
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task in done:
            return task.result()

        logger.error(f"Deployment of {request.resource_folder} exceeded {timeout:g}s; leaving it running")
        self._orphans.add(task)
        task.add_done_callback(self._reap)
        raise DeploymentStateUnknown(request.resource_folder, timeout)

    async def get_last_output(self, resource_folder: str) -> OutputRecord:
        folder = self.registry.get(resource_folder)
        working_dir = self.settings.folder_dir(folder.name)
        if not working_dir.exists():
            raise OutputNotFound(folder.name, f"{working_dir} does not exist")

        result = await self.terraform.read_output(working_dir)
        if not result.ok:
            raise OutputNotFound(folder.name, result.diagnostics.strip())
        try:
            if not json.loads(result.stdout or "{}"):
                raise OutputNotFound(folder.name, "no outputs (not deployed?)")
        except ValueError:
            pass
        return parse_outputs(result.stdout, folder, _read_tfvars(working_dir))

    async def await_async_completion(
        self,
        identifier: str,
        project: str,
        max_wait_minutes: Optional[float] = None,
        *,
        field: str = PSC_ENABLED_FIELD,
        check_interval_seconds: Optional[float] = None,
    ) -> bool:
        """Poll `gcloud sql instances describe` until `field` reads True."""

        async def query() -> Optional[bool]:
            result = await self.gcloud.describe(identifier, project, field)
            if not result.ok:
                raise ProvisionError(result.diagnostics.strip() or f"describe exited {result.exit_code}")
            return parse_bool(result.stdout)

        return await self.poller.poll_until(
            query,
            check_interval_seconds or self.settings.poll_interval_seconds,
            self.settings.poll_max_wait_minutes if max_wait_minutes is None else max_wait_minutes,
            label=f"{field} on {identifier}",
        )

    async def deploy_managed(
        self, service_attachment_uri: str, variables: Optional[Mapping[str, Any]] = None
    ) -> ManagedDeployResult:
        """Connect a consumer VPC to an existing producer's service attachment."""
        if not service_attachment_uri or "/serviceAttachments/" not in service_attachment_uri:
            raise ValueError("Invalid service attachment URI format")

        merged = {**dict(variables or {}), "service_attachment_uri": service_attachment_uri}
        try:
            consumer = await self.deploy("consumer", merged)
        except ClassifiedError as e:
            logger.error(f"Consumer setup failed: {e}")
            return ManagedDeployResult(service_attachment_uri=service_attachment_uri, error=str(e))
        return ManagedDeployResult(service_attachment_uri=service_attachment_uri, consumer=consumer)

    def attempt_history(self, resource_folder: str) -> List[ApplyAttempt]:
        return list(self._history.get(resource_folder, []))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _pipeline(self, request: ApplyRequest) -> DeployResult:
        folder = self.registry.get(request.resource_folder)
        variables = effective_variables(folder, request)
        project_id = str(variables.get(folder.project_variable, ""))
        logger.info(f"Deploying {folder.name} for project {project_id}")

        working_dir = self.settings.folder_dir(folder.name)
        write_tfvars(working_dir, variables)
        await self.context.switch(project_id)

        enabled = request.capabilities_already_enabled
        if enabled is None:
            enabled = folder.capabilities_already_enabled
        plan = ApplyPlan(
            folder=folder,
            working_dir=working_dir,
            env=terraform_env(folder, variables),
            variables=variables,
            project_id=project_id,
            capabilities_already_enabled=enabled,
        )
        outcome = await self.sequencer.run(plan)

        status, caveat = DeployStatus.COMPLETED, None
        if outcome.caveat in _CAVEATS:
            status, caveat = _CAVEATS[outcome.caveat]

        converged = None
        if folder.await_completion and status == DeployStatus.COMPLETED:
            identifier = _completion_identifier(folder, outcome.outputs, variables)
            converged = await self.await_async_completion(identifier, project_id)
            if not converged:
                caveat = "Resources deployed, but private service connect enablement timed out."

        logger.info(f"Deployment of {folder.name} finished: {status.value}")
        return DeployResult(
            resource_folder=folder.name,
            status=status,
            outputs=outcome.outputs,
            caveat=caveat,
            attempts=outcome.attempts,
            converged=converged,
        )

    def _record_attempt(self, folder: str, attempt: ApplyAttempt) -> None:
        self._history.setdefault(folder, []).append(attempt)

    def _reap(self, task: asyncio.Task) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Orphaned deployment finished with error: {exc}", exc_info=exc)
        else:
            logger.info(f"Orphaned deployment finished: {task.result().status.value}")


def effective_variables(folder: FolderDefinition, request: ApplyRequest) -> Dict[str, Any]:
    """Folder defaults overlaid with the caller's variables; the request itself is untouched."""
    variables = {**folder.defaults, **{k: v for k, v in request.variables.items() if v is not None}}
    missing = [name for name in folder.required_variables if variables.get(name) in (None, "", [])]
    if missing:
        raise ValueError(f"Missing required variable(s) for {folder.name}: {', '.join(missing)}")
    return variables


def terraform_env(folder: FolderDefinition, variables: Mapping[str, Any]) -> Dict[str, str]:
    env = {"TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}
    for name in (folder.project_variable, folder.region_variable):
        value = variables.get(name)
        if value not in (None, ""):
            env[f"TF_VAR_{name}"] = str(value)
    return env


def _completion_identifier(folder: FolderDefinition, outputs: OutputRecord, variables: Mapping[str, Any]) -> str:
    if folder.completion_identifier_output and outputs.get(folder.completion_identifier_output):
        return str(outputs.get(folder.completion_identifier_output))
    return str(variables.get(folder.completion_identifier_variable or "", ""))


def _read_tfvars(working_dir: Path) -> Dict[str, Any]:
    path = working_dir / TFVARS_FILE
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text("utf-8"))
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
