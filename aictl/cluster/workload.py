"""The running side of an agent: pods, Deployment, CronJob.

aictl never manages replicas. Restarting means deleting the agent's
pods; the controller recreates them from the updated code.
"""

from __future__ import annotations

import logging

from aictl.cluster.store import ResourceStore
from aictl.exceptions import ResourceNotFoundError
from aictl.types import (
    ANN_VERSION,
    KIND_CRONJOB,
    KIND_DEPLOYMENT,
    KIND_POD,
    LABEL_APP,
    AgentName,
    Resource,
)

_logger = logging.getLogger(__name__)

# Where a workload may carry its version tag, most specific first
_VERSION_PATHS: list[tuple[str, ...]] = [
    ("spec", "jobTemplate", "metadata", "labels"),
    ("spec", "template", "metadata", "labels"),
    ("metadata", "labels"),
    ("spec", "jobTemplate", "metadata", "annotations"),
    ("spec", "template", "metadata", "annotations"),
    ("metadata", "annotations"),
]


def _dig(resource: Resource, path: tuple[str, ...]) -> dict:
    node: object = resource
    for key in path:
        if not isinstance(node, dict):
            return {}
        node = node.get(key)
    return node if isinstance(node, dict) else {}


class WorkloadController:
    """Restarts agent pods and reads version tags off the running workload."""

    def __init__(self, store: ResourceStore, namespace: str) -> None:
        self._store = store
        self._namespace = namespace

    async def restart(self, agent: AgentName) -> list[str]:
        """Delete every pod labelled app=<agent>. Best-effort per pod."""
        pods = await self._store.list(
            KIND_POD, self._namespace, label_selector=f"{LABEL_APP}={agent}",
        )
        restarted: list[str] = []
        for pod in pods:
            pod_name = pod.get("metadata", {}).get("name", "")
            try:
                await self._store.delete(KIND_POD, pod_name, self._namespace)
            except Exception as e:
                _logger.warning("Could not delete pod '%s': %s", pod_name, e)
                continue
            _logger.info("Restarting pod '%s'", pod_name)
            restarted.append(pod_name)
        return restarted

    async def version_tag(self, agent: AgentName) -> str | None:
        """Version label/annotation on the agent's CronJob or Deployment, if any."""
        for kind in (KIND_CRONJOB, KIND_DEPLOYMENT):
            try:
                workload = await self._store.get(kind, agent, self._namespace)
            except ResourceNotFoundError:
                continue
            for path in _VERSION_PATHS:
                version = _dig(workload, path).get(ANN_VERSION)
                if version:
                    return version
        return None
