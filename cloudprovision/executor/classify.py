"""Failure classification for terraform / gcloud diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Sequence, Tuple

from .schema import ErrorCategory

Matcher = Callable[[str], bool]


def contains_any(*phrases: str) -> Matcher:
    """Case-sensitive substring matcher."""
    def _match(text: str) -> bool:
        return any(p in text for p in phrases)
    return _match


# API not enabled yet, or enabled but not propagated
CAPABILITY_PHRASES: Tuple[str, ...] = (
    "SERVICE_DISABLED",
    "has not been used in project",
    "API has not been used",
    "accessNotConfigured",
    "it is disabled",
    "wait a few minutes",
)

PERMISSION_PHRASES: Tuple[str, ...] = (
    "PERMISSION_DENIED",
    "IAM_PERMISSION_DENIED",
    "does not have permission",
    "Permission denied",
    "permission denied",
    "is not authorized",
    "AUTH_PERMISSION_DENIED",
)

ACCEPTED_PHRASES: Tuple[str, ...] = (
    "submitted successfully and is running in background",
    "running in the background",
    "running in background",
    "will complete automatically",
)

IN_PROGRESS_PHRASES: Tuple[str, ...] = (
    "taking longer than expected",
    "Timeout while waiting",
    "timeout while waiting",
    "timed out waiting",
    "context deadline exceeded",
)

names_disabled_capability = contains_any(*CAPABILITY_PHRASES)


@dataclass(frozen=True)
class ClassificationRule:
    category: ErrorCategory
    matchers: Sequence[Matcher]
    long_running_only: bool = False
    # texts that name a disabled API always belong to CAPABILITY_PROPAGATING;
    # GCP reports them with a PERMISSION_DENIED status as well
    yields_to_capability: bool = True

    def matches(self, text: str, is_long_running: bool) -> bool:
        if self.long_running_only and not is_long_running:
            return False
        if self.yields_to_capability and names_disabled_capability(text):
            return False
        return any(m(text) for m in self.matchers)


# Evaluated top to bottom; first match wins. Append phrases above, not branches below.
DEFAULT_RULES: List[ClassificationRule] = [
    ClassificationRule(ErrorCategory.PERMISSION_DENIED, [contains_any(*PERMISSION_PHRASES)]),
    ClassificationRule(
        ErrorCategory.ASYNC_OPERATION_ACCEPTED, [contains_any(*ACCEPTED_PHRASES)], long_running_only=True
    ),
    ClassificationRule(
        ErrorCategory.ASYNC_OPERATION_IN_PROGRESS, [contains_any(*IN_PROGRESS_PHRASES)], long_running_only=True
    ),
    ClassificationRule(
        ErrorCategory.CAPABILITY_PROPAGATING, [names_disabled_capability], yields_to_capability=False
    ),
]


@dataclass
class ErrorClassifier:
    """
    Maps a failed command's diagnostic text to an ErrorCategory.

    Conservative on purpose: anything not matched is UNCLASSIFIED, which is never retried.
    """
    rules: List[ClassificationRule] = field(default_factory=lambda: list(DEFAULT_RULES))

    def classify(self, stderr_text: str, is_long_running: bool = False) -> ErrorCategory:
        text = stderr_text or ""
        for rule in self.rules:
            if rule.matches(text, is_long_running):
                return rule.category
        return ErrorCategory.UNCLASSIFIED


def classify(stderr_text: str, is_long_running: bool = False) -> ErrorCategory:
    return _default.classify(stderr_text, is_long_running)


_default = ErrorClassifier()
