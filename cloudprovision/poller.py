from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# True = target reached, False/None = keep waiting; raising counts as a failed check
ConditionQuery = Callable[[], Awaitable[Optional[bool]]]


@dataclass
class PollState:
    deadline: float
    target_reached: bool = False
    attempts_used: int = 0


class CompletionPoller:
    """
    Convergence polling against an external, read-only status query.

    Running out of time is a normal outcome (False), never an exception, and a
    failing query is logged and retried on the next tick.
    """

    def __init__(
        self,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sleep = sleep
        self._clock = clock

    async def poll_until(
        self,
        condition_query: ConditionQuery,
        check_interval_seconds: float = 30.0,
        max_wait_minutes: float = 30.0,
        *,
        label: str = "condition",
    ) -> bool:
        state = PollState(deadline=self._clock() + max_wait_minutes * 60)

        while True:
            state.attempts_used += 1
            try:
                outcome = await condition_query()
            except Exception as e:
                logger.warning(f"Status check {state.attempts_used} for {label} failed: {e}")
                outcome = None

            if outcome is True:
                state.target_reached = True
                logger.info(f"{label} reached after {state.attempts_used} check(s)")
                return True

            if self._clock() >= state.deadline:
                break
            logger.info(
                f"{label} not reached yet (check {state.attempts_used}); "
                f"next check in {check_interval_seconds:g}s"
            )
            await self._sleep(check_interval_seconds)
            if self._clock() >= state.deadline:
                break

        logger.warning(f"Gave up waiting for {label} after {max_wait_minutes:g} minute(s), {state.attempts_used} check(s)")
        return False
