"""Terraform provisioning with capability propagation handling and async completion polling."""

from cloudprovision.errors import (
    ClassifiedError,
    ContextSwitchError,
    DeploymentStateUnknown,
    ExecutionTimeout,
    OutputNotFound,
    PermissionDeniedError,
    ProvisionError,
    UnknownResourceFolder,
)
from cloudprovision.executor.schema import DeployResult, DeployStatus, ErrorCategory, ManagedDeployResult, OutputRecord
from cloudprovision.orchestrator import ProvisioningOrchestrator
from cloudprovision.settings import ProvisionSettings, load_settings

__all__ = [
    "ProvisioningOrchestrator",
    "ProvisionSettings",
    "load_settings",
    "DeployResult",
    "DeployStatus",
    "ErrorCategory",
    "ManagedDeployResult",
    "OutputRecord",
    "ProvisionError",
    "ClassifiedError",
    "PermissionDeniedError",
    "ContextSwitchError",
    "DeploymentStateUnknown",
    "ExecutionTimeout",
    "OutputNotFound",
    "UnknownResourceFolder",
]
