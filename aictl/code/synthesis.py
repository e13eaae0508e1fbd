"""SynthesisWatcher — wait for an agent's `Synthesized` condition.

PENDING → SUCCEEDED | FAILED | TIMEOUT

Polls every 2s for up to 600s. The default policy is fail-open: running
out of budget, or hitting an unexpected error while watching, is
reported as a soft success so the CLI returns and the user can check
`aictl agent code` later. `strict=True` turns both into hard outcomes.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable

import structlog
from pydantic import BaseModel

from aictl.cluster.store import ResourceStore
from aictl.exceptions import ResourceNotFoundError, SynthesisError
from aictl.types import KIND_AGENT, AgentName, Resource

logger = structlog.get_logger()

CONDITION_SYNTHESIZED = "Synthesized"
DEFAULT_INTERVAL = 2.0
DEFAULT_TIMEOUT = 600.0


class SynthesisState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMEOUT = "timeout"


class SynthesisResult(BaseModel):
    state: SynthesisState = SynthesisState.PENDING
    success: bool = False
    timeout: bool = False
    duration: float = 0.0
    model: str = ""
    token_count: int = 0
    message: str = ""
    warning: str = ""


def synthesized_condition(agent: Resource) -> dict | None:
    conditions = (agent.get("status") or {}).get("conditions") or []
    return next((c for c in conditions if c.get("type") == CONDITION_SYNTHESIZED), None)


class SynthesisWatcher:

    def __init__(
        self,
        store: ResourceStore,
        namespace: str,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        strict: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._interval = interval
        self._timeout = timeout
        self._strict = strict
        self._sleep = sleep
        self._clock = clock

    async def check(self, agent: AgentName, started: float) -> SynthesisResult:
        """One poll. Raises ResourceNotFoundError if the agent is not visible yet."""
        resource = await self._store.get(KIND_AGENT, agent, self._namespace)
        synthesis = (resource.get("status") or {}).get("synthesis") or {}
        result = SynthesisResult(
            model=synthesis.get("model") or "",
            token_count=int(synthesis.get("tokenCount") or 0),
        )

        condition = synthesized_condition(resource)
        if condition is None:
            return result
        if condition.get("status") == "True":
            result.state = SynthesisState.SUCCEEDED
            result.success = True
            result.duration = self._clock() - started
        elif condition.get("status") == "False":
            result.state = SynthesisState.FAILED
            result.message = condition.get("message", "")
        return result

    async def watch(self, agent: AgentName) -> SynthesisResult:
        started = self._clock()
        seen = False
        log = logger.bind(agent=agent, namespace=self._namespace)

        while True:
            try:
                result = await self.check(agent, started)
                seen = True
                if result.state is not SynthesisState.PENDING:
                    log.info("synthesis.resolved", state=result.state.value,
                             duration=result.duration)
                    return result
            except ResourceNotFoundError:
                # object creation lag; keep polling within the same budget
                log.debug("synthesis.agent_not_visible")
            except Exception as e:
                if self._strict:
                    raise SynthesisError(f"Could not watch synthesis: {e}") from e
                log.warning("synthesis.watch_failed", error=str(e))
                return SynthesisResult(
                    state=SynthesisState.PENDING,
                    success=True,
                    warning=f"Could not watch synthesis: {e}",
                )

            if self._clock() - started >= self._timeout:
                break
            await self._sleep(self._interval)

        if not seen:
            log.error("synthesis.agent_not_found")
            return SynthesisResult(
                state=SynthesisState.FAILED,
                message="Agent resource not found",
            )

        log.warning("synthesis.timeout", budget=self._timeout)
        return SynthesisResult(
            state=SynthesisState.TIMEOUT,
            success=not self._strict,
            timeout=True,
            duration=self._clock() - started,
            message="Synthesis taking longer than expected, continuing in background",
        )
