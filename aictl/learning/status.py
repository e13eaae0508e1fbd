"""Per-agent learning switch and progress report.

Learning is on unless the agent resource carries the
`langop.io/learning-disabled` annotation. Progress is published by the
operator in the `<agent>-learning-status` ConfigMap as JSON strings
under `tasks` and `history`; aictl only reads it.
"""

from __future__ import annotations

import logging
from typing import Any

import orjson
from pydantic import BaseModel, Field

from aictl.cluster.store import ResourceStore
from aictl.exceptions import ResourceNotFoundError
from aictl.types import (
    ANN_LEARNING_DISABLED,
    KIND_AGENT,
    KIND_CONFIGMAP,
    AgentName,
    Resource,
    annotations_of,
    learning_status_name,
)

_logger = logging.getLogger(__name__)

HISTORY_LIMIT = 5


class ToggleResult(BaseModel):
    changed: bool = False
    enabled: bool = True
    message: str = ""


class TaskLearning(BaseModel):
    name: str
    confidence: float = 0.0
    executions: int = 0
    status: str = "neural"  # neural, symbolic, hybrid


class HistoryEvent(BaseModel):
    timestamp: str = "Unknown"
    action: str = "Unknown"
    task: str = "Unknown"


class LearningStatus(BaseModel):
    agent: str
    enabled: bool = True
    created: str = ""
    ready: bool | None = None
    last_activity: str = ""
    has_data: bool = False
    tasks: list[TaskLearning] = Field(default_factory=list)
    history: list[HistoryEvent] = Field(default_factory=list)


def _loads(raw: Any, expected: type) -> Any:
    """Parse a JSON string field, returning an empty value on any problem."""
    if not isinstance(raw, (str, bytes)) or not raw:
        return expected()
    try:
        value = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        _logger.debug("Ignoring malformed learning data: %s", e)
        return expected()
    return value if isinstance(value, expected) else expected()


def _parse_tasks(raw: Any) -> list[TaskLearning]:
    tasks = []
    for name, info in _loads(raw, dict).items():
        if not isinstance(info, dict):
            continue
        try:
            tasks.append(TaskLearning(
                name=name,
                confidence=float(info.get("confidence") or 0),
                executions=int(info.get("executions") or 0),
                status=str(info.get("status") or "neural"),
            ))
        except (TypeError, ValueError):
            continue
    return tasks


def _parse_history(raw: Any) -> list[HistoryEvent]:
    events = [
        HistoryEvent(
            timestamp=str(e.get("timestamp") or "Unknown"),
            action=str(e.get("action") or "Unknown"),
            task=str(e.get("task") or "Unknown"),
        )
        for e in _loads(raw, list)
        if isinstance(e, dict)
    ]
    return events[-HISTORY_LIMIT:]


class LearningStatusTracker:

    def __init__(self, store: ResourceStore, namespace: str) -> None:
        self._store = store
        self._namespace = namespace

    async def _agent(self, agent: AgentName) -> Resource:
        return await self._store.get(KIND_AGENT, agent, self._namespace)

    async def is_enabled(self, agent: AgentName) -> bool:
        return ANN_LEARNING_DISABLED not in annotations_of(await self._agent(agent))

    async def enable(self, agent: AgentName) -> ToggleResult:
        return await self._toggle(agent, enabled=True)

    async def disable(self, agent: AgentName) -> ToggleResult:
        return await self._toggle(agent, enabled=False)

    async def _toggle(self, agent: AgentName, enabled: bool) -> ToggleResult:
        state = "enabled" if enabled else "disabled"
        resource = await self._agent(agent)
        annotations = annotations_of(resource)
        if (ANN_LEARNING_DISABLED not in annotations) == enabled:
            return ToggleResult(
                changed=False, enabled=enabled,
                message=f"Learning is already {state} for agent '{agent}'",
            )

        if enabled:
            annotations.pop(ANN_LEARNING_DISABLED, None)
        else:
            annotations[ANN_LEARNING_DISABLED] = "true"
        # `resource` still carries the resourceVersion it was read with,
        # so a concurrent writer turns this into a ConflictError
        resource.setdefault("metadata", {})["annotations"] = annotations
        await self._store.update(KIND_AGENT, agent, self._namespace, resource)
        _logger.info("Learning %s for agent '%s'", state, agent)
        return ToggleResult(
            changed=True, enabled=enabled,
            message=f"Learning {state} for agent '{agent}'",
        )

    async def status(self, agent: AgentName) -> LearningStatus:
        resource = await self._agent(agent)
        meta = resource.get("metadata", {})
        result = LearningStatus(
            agent=agent,
            enabled=ANN_LEARNING_DISABLED not in annotations_of(resource),
            created=meta.get("creationTimestamp", ""),
        )

        conditions = (resource.get("status") or {}).get("conditions") or []
        ready = next((c for c in conditions if c.get("type") == "Ready"), None)
        if ready:
            result.ready = ready.get("status") == "True"
            result.last_activity = ready.get("lastTransitionTime", "")

        try:
            config = await self._store.get(KIND_CONFIGMAP, learning_status_name(agent), self._namespace)
        except ResourceNotFoundError:
            return result

        data = config.get("data") or {}
        result.tasks = _parse_tasks(data.get("tasks"))
        result.history = _parse_history(data.get("history"))
        result.has_data = bool(result.tasks or result.history)
        return result
