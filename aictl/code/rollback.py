"""RollbackManager — restore a previous code version as the active one.

Rollback is the same "snapshot, then swap base" sequence as an
optimization, pointed backwards. History only grows: if the running
code is not held by any snapshot it is captured first, and no snapshot
is ever deleted here.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from aictl.cluster.workload import WorkloadController
from aictl.code.versions import VersionStore
from aictl.exceptions import VersionNotFoundError
from aictl.types import (
    ANN_PREVIOUS_VERSION,
    ANN_ROLLED_BACK,
    ANN_ROLLED_BACK_AT,
    ANN_VERSION,
    CODE_KEY,
    ORIGINAL,
    AgentName,
    annotations_of,
    normalize_version,
    utcnow_iso,
)

_logger = logging.getLogger(__name__)


class VersionEntry(BaseModel):
    version: str
    created_at: str = ""
    task: str = ""
    source_type: str = ""
    current: bool = False


class VersionChoice(BaseModel):
    """One row of the interactive version picker."""

    label: str
    value: str
    disabled: bool = False


class RollbackResult(BaseModel):
    success: bool = False
    agent: str = ""
    version: str = ""
    previous_version: str = ""
    captured_version: str = ""
    restarted_pods: list[str] = Field(default_factory=list)
    error: str = ""
    message: str = ""


class RollbackManager:

    def __init__(self, versions: VersionStore, workload: WorkloadController) -> None:
        self._versions = versions
        self._workload = workload

    async def current_version(self, agent: AgentName) -> str:
        base = await self._versions.get_base(agent)
        return annotations_of(base).get(ANN_VERSION) or ORIGINAL

    async def list_versions(self, agent: AgentName) -> list[VersionEntry]:
        current = await self.current_version(agent)
        return [
            VersionEntry(
                version=a.version,
                created_at=a.created_at,
                task=a.optimized_task,
                source_type=a.source_type.value,
                current=a.version == current,
            )
            for a in await self._versions.list_versions(agent)
        ]

    async def choices(self, agent: AgentName) -> list[VersionChoice]:
        choices = []
        for entry in await self.list_versions(agent):
            task = entry.task or entry.source_type
            if entry.current:
                label = f"{entry.version} (current) - Task: {task}"
            else:
                label = f"{entry.version} - {entry.created_at or 'unknown'} - Task: {task}"
            choices.append(VersionChoice(label=label, value=entry.version, disabled=entry.current))
        return choices

    async def rollback(self, agent: AgentName, version: str) -> RollbackResult:
        """Make `version` the active code. Never raises."""
        target_version = normalize_version(version)
        result = RollbackResult(agent=agent, version=target_version)
        try:
            base = await self._versions.get_base(agent)
            current = annotations_of(base).get(ANN_VERSION) or ORIGINAL
            result.previous_version = current

            target = await self._versions.get_version(agent, target_version)
            if target.version == current and target.code == (base.get("data") or {}).get(CODE_KEY):
                result.error = f"Agent '{agent}' is already running {current}"
                result.message = result.error
                return result

            captured = await self._versions.capture_current(agent, base)
            result.captured_version = captured or ""

            await self._versions.swap_base(base, target.code, {
                ANN_VERSION: target.version,
                ANN_ROLLED_BACK: "true",
                ANN_ROLLED_BACK_AT: utcnow_iso(),
                ANN_PREVIOUS_VERSION: current,
            })
            result.restarted_pods = await self._workload.restart(agent)
        except VersionNotFoundError as e:
            result.error = str(e)
            result.message = f"Version '{target_version}' not found"
            return result
        except Exception as e:
            _logger.warning("Rollback of '%s' to %s failed: %s", agent, target_version, e)
            result.error = str(e)
            result.message = f"Failed to roll back: {e}"
            return result

        result.success = True
        result.message = f"Successfully rolled back to {target_version}"
        _logger.info("Rolled back '%s' from %s to %s", agent, current, target_version)
        return result
