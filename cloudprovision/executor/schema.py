from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, Field

Scalar = Union[str, int, float, bool]
VariableValue = Union[Scalar, List[str]]


class ErrorCategory(str, Enum):
    """Failure categories assigned to a failed apply from its diagnostic text."""
    CAPABILITY_PROPAGATING = "capability_propagating"
    PERMISSION_DENIED = "permission_denied"
    ASYNC_OPERATION_IN_PROGRESS = "async_operation_in_progress"
    ASYNC_OPERATION_ACCEPTED = "async_operation_accepted"
    UNCLASSIFIED = "unclassified"

    @property
    def is_async(self) -> bool:
        return self in (ErrorCategory.ASYNC_OPERATION_ACCEPTED, ErrorCategory.ASYNC_OPERATION_IN_PROGRESS)


class RetryScheme(str, Enum):
    LINEAR = "linear"
    PER_CATEGORY = "per_category"


class RetryPolicy(BaseModel):
    """Fixed per resource folder; never mutated during a run."""
    max_attempts: int = Field(default=1, ge=1)
    base_delay_seconds: int = Field(default=0, ge=0)
    scheme: RetryScheme = RetryScheme.LINEAR
    # only consulted by the per-category scheme; the last entry repeats
    category_delays: Dict[ErrorCategory, List[int]] = Field(default_factory=dict)

    class Config:
        frozen = True


class ApplyRequest(BaseModel):
    """What a caller submits to deploy. Treated as a value: never mutated in place."""
    resource_folder: str
    variables: Dict[str, VariableValue] = Field(default_factory=dict)
    capabilities_already_enabled: Optional[bool] = None

    class Config:
        frozen = True


class ApplyAttempt(BaseModel):
    """One external apply invocation, recorded for observability."""
    attempt_number: int = Field(ge=1, description="1-based attempt within its phase")
    phase: int = Field(description="1 = capability enabling, 2 = full apply")
    category: Optional[ErrorCategory] = Field(default=None, description="Set only for failed attempts")
    started_at: datetime
    ended_at: datetime
    exit_succeeded: bool

    class Config:
        frozen = True


class OutputRecord(BaseModel):
    """Typed key/value result extracted from the infrastructure tool's outputs."""
    resource_folder: str
    values: Dict[str, Any] = Field(default_factory=dict)
    degraded: bool = Field(default=False, description="True when raw output could not be parsed")

    class Config:
        frozen = True

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def keys(self) -> Iterator[str]:
        return iter(self.values)


class DeployStatus(str, Enum):
    COMPLETED = "completed"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"


class DeployResult(BaseModel):
    resource_folder: str
    status: DeployStatus
    outputs: OutputRecord
    caveat: Optional[str] = None
    attempts: List[ApplyAttempt] = Field(default_factory=list)
    # None when the folder does not await an async endpoint
    converged: Optional[bool] = None


class ManagedDeployResult(BaseModel):
    service_attachment_uri: str
    consumer: Optional[DeployResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.consumer is not None and self.error is None
