"""
Two-phase apply.

Phase 1 applies only the capability-enabling resources (google_project_service),
then a fixed propagation wait lets GCP activate the APIs before Phase 2 applies
everything. Folders whose APIs are already enabled start directly in Phase 2.

The protocol is a pure transition function over frozen states/events/effects;
PhaseSequencer is the only part that touches processes or the clock.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, Union

from cloudprovision.errors import ExecutionTimeout, InvalidTransition, ProvisionError, classified_error
from cloudprovision.redact import redact_text
from cloudprovision.runner import CommandResult
from cloudprovision.tools import GCloudTool, TerraformTool

from .classify import ErrorClassifier
from .folders import FolderDefinition
from .outputs import parse_outputs
from .retry import should_retry
from .schema import ApplyAttempt, ErrorCategory, OutputRecord, RetryPolicy

logger = logging.getLogger(__name__)

SERVICE_NAME_RE = re.compile(r"\b([a-z0-9-]+\.googleapis\.com)\b")


class Phase(str, Enum):
    IDLE = "idle"
    PHASE1_RUNNING = "phase1_running"
    PHASE1_DONE = "phase1_done"
    AWAITING_PROPAGATION = "awaiting_propagation"
    PHASE2_RUNNING = "phase2_running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL = frozenset({Phase.COMPLETED, Phase.FAILED})
_RUNNING = {Phase.PHASE1_RUNNING: 1, Phase.PHASE2_RUNNING: 2}


@dataclass(frozen=True)
class SequencerState:
    phase: Phase = Phase.IDLE
    attempt: int = 0
    # FAILED: the fatal category; COMPLETED: the async caveat, if any
    category: Optional[ErrorCategory] = None


# --- events -----------------------------------------------------------------

@dataclass(frozen=True)
class Start:
    capabilities_already_enabled: bool


@dataclass(frozen=True)
class ApplySucceeded:
    pass


@dataclass(frozen=True)
class ApplyFailed:
    category: ErrorCategory


@dataclass(frozen=True)
class PropagationStarted:
    pass


@dataclass(frozen=True)
class PropagationElapsed:
    pass


Event = Union[Start, ApplySucceeded, ApplyFailed, PropagationStarted, PropagationElapsed]


# --- effects ----------------------------------------------------------------

@dataclass(frozen=True)
class RunApply:
    phase: int
    attempt: int
    delay_seconds: int = 0
    activate_capabilities: bool = False


@dataclass(frozen=True)
class AwaitPropagation:
    seconds: float


@dataclass(frozen=True)
class ReadOutputs:
    caveat: Optional[ErrorCategory] = None


@dataclass(frozen=True)
class SurfaceError:
    category: ErrorCategory


Effect = Union[RunApply, AwaitPropagation, ReadOutputs, SurfaceError]


@dataclass(frozen=True)
class SequencerConfig:
    policy: RetryPolicy
    propagation_seconds: float = 120.0


def transition(
    state: SequencerState, event: Event, config: SequencerConfig
) -> Tuple[SequencerState, Optional[Effect]]:
    """(state, event) -> (next state, effect to perform). No I/O."""
    if state.phase in TERMINAL:
        raise InvalidTransition(f"{state.phase.value} is terminal; got {type(event).__name__}")

    if state.phase == Phase.IDLE and isinstance(event, Start):
        if event.capabilities_already_enabled:
            return SequencerState(Phase.PHASE2_RUNNING, attempt=1), RunApply(phase=2, attempt=1)
        return SequencerState(Phase.PHASE1_RUNNING, attempt=1), RunApply(phase=1, attempt=1)

    if state.phase in _RUNNING and isinstance(event, ApplySucceeded):
        if state.phase == Phase.PHASE1_RUNNING:
            return SequencerState(Phase.PHASE1_DONE), AwaitPropagation(config.propagation_seconds)
        return SequencerState(Phase.COMPLETED), ReadOutputs()

    if state.phase in _RUNNING and isinstance(event, ApplyFailed):
        category = event.category
        if category.is_async and state.phase == Phase.PHASE1_RUNNING:
            # API enablement was submitted; the full apply still has to run
            return SequencerState(Phase.PHASE1_DONE), AwaitPropagation(config.propagation_seconds)
        if category.is_async:
            # the operation outlives this process; report it as accepted, not failed
            return SequencerState(Phase.COMPLETED, category=category), ReadOutputs(caveat=category)
        decision = should_retry(category, state.attempt, config.policy)
        if decision.retry:
            nxt = replace(state, attempt=state.attempt + 1)
            return nxt, RunApply(
                phase=_RUNNING[state.phase],
                attempt=nxt.attempt,
                delay_seconds=decision.delay_seconds,
                activate_capabilities=decision.activate_capabilities,
            )
        return SequencerState(Phase.FAILED, attempt=state.attempt, category=category), SurfaceError(category)

    if state.phase == Phase.PHASE1_DONE and isinstance(event, PropagationStarted):
        return SequencerState(Phase.AWAITING_PROPAGATION), None

    if state.phase == Phase.AWAITING_PROPAGATION and isinstance(event, PropagationElapsed):
        return SequencerState(Phase.PHASE2_RUNNING, attempt=1), RunApply(phase=2, attempt=1)

    raise InvalidTransition(f"{type(event).__name__} is not valid in {state.phase.value}")


@dataclass(frozen=True)
class ApplyPlan:
    """Everything one run needs, resolved up front by the orchestrator."""
    folder: FolderDefinition
    working_dir: Path
    env: Mapping[str, str]
    variables: Mapping[str, Any]
    project_id: str
    capabilities_already_enabled: bool


@dataclass
class SequenceOutcome:
    state: SequencerState
    outputs: OutputRecord
    attempts: List[ApplyAttempt] = field(default_factory=list)
    transitions: List[Phase] = field(default_factory=list)

    @property
    def caveat(self) -> Optional[ErrorCategory]:
        return self.state.category


class PhaseSequencer:
    def __init__(
        self,
        terraform: TerraformTool,
        *,
        gcloud: Optional[GCloudTool] = None,
        classifier: Optional[ErrorClassifier] = None,
        propagation_wait_seconds: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_attempt: Optional[Callable[[str, ApplyAttempt], None]] = None,
    ) -> None:
        self.terraform = terraform
        self.gcloud = gcloud
        self.classifier = classifier or ErrorClassifier()
        self.propagation_wait_seconds = propagation_wait_seconds
        self._sleep = sleep
        self._on_attempt = on_attempt

    async def run(self, plan: ApplyPlan) -> SequenceOutcome:
        name = plan.folder.name
        config = SequencerConfig(plan.folder.retry_policy, self.propagation_wait_seconds)
        attempts: List[ApplyAttempt] = []
        transitions: List[Phase] = []
        last: Optional[CommandResult] = None

        def step(state: SequencerState, event: Event) -> Tuple[SequencerState, Optional[Effect]]:
            nxt, effect = transition(state, event, config)
            logger.info(f"[{name}] {state.phase.value} -> {nxt.phase.value}")
            transitions.append(nxt.phase)
            return nxt, effect

        state, effect = step(SequencerState(), Start(plan.capabilities_already_enabled))
        while True:
            if isinstance(effect, RunApply):
                if effect.activate_capabilities:
                    await self._activate(plan, last)
                if effect.delay_seconds:
                    logger.info(
                        f"[{name}] retrying phase {effect.phase} "
                        f"(attempt {effect.attempt}/{config.policy.max_attempts}) in {effect.delay_seconds}s"
                    )
                    await self._sleep(effect.delay_seconds)
                last = await self._apply(plan, effect, attempts)
                if last.ok:
                    state, effect = step(state, ApplySucceeded())
                else:
                    state, effect = step(state, ApplyFailed(attempts[-1].category or ErrorCategory.UNCLASSIFIED))

            elif isinstance(effect, AwaitPropagation):
                state, _ = step(state, PropagationStarted())
                logger.info(f"[{name}] waiting {effect.seconds:g}s for API propagation")
                await self._sleep(effect.seconds)
                state, effect = step(state, PropagationElapsed())

            elif isinstance(effect, ReadOutputs):
                if effect.caveat:
                    logger.warning(f"[{name}] apply accepted with caveat: {effect.caveat.value}")
                outputs = await self.read_outputs(plan.folder, plan.working_dir, plan.variables)
                return SequenceOutcome(state=state, outputs=outputs, attempts=attempts, transitions=transitions)

            elif isinstance(effect, SurfaceError):
                raise classified_error(
                    effect.category,
                    last.diagnostics if last else "",
                    project_id=plan.project_id,
                    folder=name,
                    attempts=attempts,
                )
            else:
                raise InvalidTransition(f"no effect to perform in {state.phase.value}")

    async def read_outputs(
        self, folder: FolderDefinition, working_dir: Path, variables: Mapping[str, Any]
    ) -> OutputRecord:
        result = await self.terraform.read_output(working_dir)
        if not result.ok:
            logger.warning(f"terraform output failed for {folder.name}: {redact_text(result.diagnostics.strip())}")
            return parse_outputs(None, folder, variables)
        return parse_outputs(result.stdout, folder, variables)

    async def _apply(self, plan: ApplyPlan, effect: RunApply, attempts: List[ApplyAttempt]) -> CommandResult:
        targets = plan.folder.capability_targets if effect.phase == 1 else ()
        logger.info(
            f"[{plan.folder.name}] phase {effect.phase} apply, attempt {effect.attempt}"
            + (f" (targets: {', '.join(targets)})" if targets else "")
        )
        started = datetime.now(timezone.utc)
        try:
            result = await self.terraform.init_and_apply(plan.working_dir, plan.env, targets)
        except ExecutionTimeout:
            self._record(plan, attempts, effect, started, ok=False, category=None)
            raise

        category = None
        if not result.ok:
            category = self.classifier.classify(result.diagnostics, plan.folder.long_running)
            logger.warning(f"[{plan.folder.name}] apply failed ({category.value}): {redact_text(result.diagnostics.strip()[-2000:])}")
        self._record(plan, attempts, effect, started, ok=result.ok, category=category)
        return result

    def _record(
        self,
        plan: ApplyPlan,
        attempts: List[ApplyAttempt],
        effect: RunApply,
        started: datetime,
        *,
        ok: bool,
        category: Optional[ErrorCategory],
    ) -> None:
        attempt = ApplyAttempt(
            attempt_number=effect.attempt,
            phase=effect.phase,
            category=category,
            started_at=started,
            ended_at=datetime.now(timezone.utc),
            exit_succeeded=ok,
        )
        attempts.append(attempt)
        if self._on_attempt:
            self._on_attempt(plan.folder.name, attempt)

    async def _activate(self, plan: ApplyPlan, last: Optional[CommandResult]) -> None:
        """Direct API activation ahead of the first backoff. Failure only costs latency."""
        if self.gcloud is None:
            return
        mentioned = SERVICE_NAME_RE.findall(last.diagnostics) if last else []
        services = sorted(set(mentioned) | set(plan.folder.required_services))
        if not services:
            return
        logger.info(f"[{plan.folder.name}] enabling {', '.join(services)} directly")
        try:
            result = await self.gcloud.enable_services(plan.project_id, services)
        except ProvisionError as e:
            logger.warning(f"[{plan.folder.name}] direct API activation failed: {e}")
            return
        if not result.ok:
            logger.warning(f"[{plan.folder.name}] direct API activation failed: {result.diagnostics.strip()}")
