"""Exceptions raised across the provisioning pipeline."""

from __future__ import annotations

from typing import List, Optional, Sequence

from cloudprovision.executor.schema import ApplyAttempt, ErrorCategory


class ProvisionError(Exception):
    """Base class for every error surfaced to callers."""


class ExecutionTimeout(ProvisionError):
    """An external command exceeded its hard deadline and was killed."""

    def __init__(self, command: Sequence[str], timeout_seconds: float):
        self.command = list(command)
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Command timed out after {timeout_seconds:g}s: {' '.join(self.command)}")


class ProcessError(ProvisionError):
    """An external command could not be started at all."""

    def __init__(self, command: Sequence[str], reason: str):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"Failed to start {' '.join(self.command)}: {reason}")


class ClassifiedError(ProvisionError):
    """A terminal apply failure, carrying the raw diagnostic text verbatim."""

    def __init__(
        self,
        category: ErrorCategory,
        stderr: str,
        *,
        folder: str = "",
        attempts: Optional[List[ApplyAttempt]] = None,
        message: Optional[str] = None,
    ):
        self.category = category
        self.stderr = stderr
        self.folder = folder
        self.attempts = list(attempts or [])
        super().__init__(message or self._default_message())

    def _default_message(self) -> str:
        where = f" in {self.folder}" if self.folder else ""
        return f"Apply failed{where} ({self.category.value}): {self.stderr.strip()}"


class PermissionDeniedError(ClassifiedError):
    """The operating identity lacks the rights to create the resources."""

    def __init__(
        self,
        stderr: str,
        *,
        project_id: str = "",
        folder: str = "",
        attempts: Optional[List[ApplyAttempt]] = None,
    ):
        self.project_id = project_id
        super().__init__(
            ErrorCategory.PERMISSION_DENIED,
            stderr,
            folder=folder,
            attempts=attempts,
            message=f"{remediation_hint(project_id)}\n{stderr.strip()}",
        )


def remediation_hint(project_id: str) -> str:
    project = project_id or "<project-id>"
    return (
        f"Permission denied on project {project}. Grant the operating identity elevated "
        f"project-level access (roles/owner or roles/editor), e.g.: "
        f"gcloud projects add-iam-policy-binding {project} "
        f"--member=serviceAccount:<identity> --role=roles/owner"
    )


def classified_error(
    category: ErrorCategory,
    stderr: str,
    *,
    project_id: str = "",
    folder: str = "",
    attempts: Optional[List[ApplyAttempt]] = None,
) -> ClassifiedError:
    if category == ErrorCategory.PERMISSION_DENIED:
        return PermissionDeniedError(stderr, project_id=project_id, folder=folder, attempts=attempts)
    return ClassifiedError(category, stderr, folder=folder, attempts=attempts)


class ContextSwitchError(ProvisionError):
    def __init__(self, project_id: str, detail: str):
        self.project_id = project_id
        super().__init__(f"Could not set active project to {project_id}: {detail}")


class OutputNotFound(ProvisionError):
    def __init__(self, folder: str, detail: str = ""):
        self.folder = folder
        super().__init__(f"No outputs found for {folder}" + (f": {detail}" if detail else ""))


class DeploymentStateUnknown(ProvisionError):
    """The caller's overall deadline fired; the pipeline may still be running."""

    def __init__(self, folder: str, timeout_seconds: float):
        self.folder = folder
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Deployment of {folder} did not finish within {timeout_seconds:g}s; "
            f"treat its state as unknown (it may still be in progress)"
        )


class UnknownResourceFolder(ProvisionError, KeyError):
    def __init__(self, folder: str):
        self.folder = folder
        super().__init__(f"Unknown resource folder: {folder}")

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransition(ProvisionError):
    pass
