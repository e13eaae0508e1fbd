"""VersionStore — numbered code lineage for one agent.

Layout in the cluster:

    <agent>-code        base artifact, mutable, always what is running
    <agent>-code-v<N>   immutable snapshots, owned by the base artifact

Every change to the base goes through the same two steps: create a
versioned snapshot, then swap the base content and pointer with a
conditional update gated on the resourceVersion read at the start.
A stale token fails the swap; the snapshot is left behind as an inert
orphan and the next attempt simply numbers past it.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from aictl.cluster.store import ResourceStore, resource_version
from aictl.cluster.workload import WorkloadController
from aictl.code.source import AgentSource, splice_task
from aictl.exceptions import AictlError, PruneError, VersionNotFoundError
from aictl.types import (
    ANN_LATEST_VERSIONED,
    ANN_OPTIMIZED,
    ANN_OPTIMIZED_AT,
    ANN_OPTIMIZED_TASK,
    ANN_PREVIOUS_VERSION,
    ANN_SOURCE_TYPE,
    ANN_VERSION,
    CODE_KEY,
    COMPONENT_AGENT_CODE,
    KIND_CONFIGMAP,
    LABEL_AGENT,
    LABEL_APP,
    LABEL_COMPONENT,
    ORIGINAL,
    AgentName,
    CodeArtifact,
    Resource,
    SourceType,
    TaskDefinition,
    annotations_of,
    base_code_name,
    code_selector,
    labels_of,
    normalize_version,
    utcnow_iso,
    version_id,
    version_number,
    versioned_code_name,
)

_logger = logging.getLogger(__name__)

DEFAULT_KEEP_LAST = 5


class VersionResult(BaseModel):
    """Outcome of create_version."""

    version: str
    name: str
    previous_version: str
    task_name: str = ""
    code: str = ""


def to_artifact(resource: Resource) -> CodeArtifact:
    meta = resource.get("metadata", {})
    ann = annotations_of(resource)
    version = ann.get(ANN_VERSION) or labels_of(resource).get(ANN_VERSION) or ORIGINAL
    try:
        source_type = SourceType(ann.get(ANN_SOURCE_TYPE, ""))
    except ValueError:
        optimized = ann.get(ANN_OPTIMIZED) == "true"
        source_type = SourceType.OPTIMIZED if optimized else SourceType.ORIGINAL
    return CodeArtifact(
        name=meta.get("name", ""),
        version=normalize_version(version),
        source_type=source_type,
        code=(resource.get("data") or {}).get(CODE_KEY, ""),
        created_at=ann.get(ANN_OPTIMIZED_AT) or meta.get("creationTimestamp", ""),
        optimized_task=ann.get(ANN_OPTIMIZED_TASK, ""),
        previous_version=ann.get(ANN_PREVIOUS_VERSION, ""),
        resource_version=str(meta.get("resourceVersion", "")),
    )


class VersionStore:
    """Creates, reads, enumerates and prunes versioned code artifacts."""

    def __init__(
        self,
        store: ResourceStore,
        namespace: str,
        workload: WorkloadController | None = None,
        keep_last: int = DEFAULT_KEEP_LAST,
        strict: bool = False,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._workload = workload or WorkloadController(store, namespace)
        self._keep_last = keep_last
        self._strict = strict

    @property
    def namespace(self) -> str:
        return self._namespace

    # ── Reads ────────────────────────────────────────────────────

    async def get_base(self, agent: AgentName) -> Resource:
        return await self._store.get(KIND_CONFIGMAP, base_code_name(agent), self._namespace)

    async def _versioned_resources(self, agent: AgentName) -> list[Resource]:
        """Versioned snapshots only (the base shares the selector labels)."""
        base = base_code_name(agent)
        resources = await self._store.list(
            KIND_CONFIGMAP, self._namespace, label_selector=code_selector(agent),
        )
        versioned = [
            r for r in resources
            if r.get("metadata", {}).get("name", "").startswith(f"{base}-v")
            and version_number(to_artifact(r).version) > 0
        ]
        versioned.sort(key=lambda r: version_number(to_artifact(r).version), reverse=True)
        return versioned

    async def list_versions(self, agent: AgentName) -> list[CodeArtifact]:
        """Versioned artifacts, highest version first."""
        return [to_artifact(r) for r in await self._versioned_resources(agent)]

    async def get_active_version(self, agent: AgentName) -> str:
        """Version the running workload is tagged with, else 'original'.

        The workload wins over the base artifact so out-of-band changes
        to the running Deployment/CronJob are reported faithfully.
        """
        tag = await self._workload.version_tag(agent)
        return normalize_version(tag) if tag else ORIGINAL

    async def get_original(self, agent: AgentName) -> CodeArtifact:
        return to_artifact(await self.get_base(agent))

    async def get_version(self, agent: AgentName, version: str | None = None) -> CodeArtifact:
        versions = await self.list_versions(agent)

        if version is not None:
            wanted = normalize_version(version)
            for artifact in versions:
                if artifact.version == wanted:
                    return artifact
            raise VersionNotFoundError(agent, wanted, [a.version for a in versions])

        if not versions:
            base = await self.get_original(agent)
            return base.model_copy(update={"version": ORIGINAL})

        active = await self.get_active_version(agent)
        if active == ORIGINAL:
            base = await self.get_original(agent)
            return base.model_copy(update={"version": ORIGINAL})
        for artifact in versions:
            if artifact.version == active:
                return artifact
        _logger.info("Active version %s of '%s' has no artifact, using latest", active, agent)
        return versions[0]

    async def next_version_number(self, agent: AgentName, base: Resource | None = None) -> int:
        """One past the highest number ever visible: snapshots or base pointer."""
        base = base if base is not None else await self.get_base(agent)
        pointer = version_number(annotations_of(base).get(ANN_VERSION))
        versions = await self._versioned_resources(agent)
        highest = version_number(to_artifact(versions[0]).version) if versions else 0
        return max(highest, pointer) + 1

    # ── Writes ───────────────────────────────────────────────────

    async def create_version(
        self,
        agent: AgentName,
        task_name: str,
        proposed_code: str,
        task_definition: TaskDefinition | None = None,
    ) -> VersionResult:
        """Splice new task code into the base and publish it as the next version."""
        base = await self.get_base(agent)
        current_code = (base.get("data") or {}).get(CODE_KEY)
        if current_code is None:
            raise AictlError(f"ConfigMap '{base_code_name(agent)}' does not contain {CODE_KEY}")

        definition = task_definition or AgentSource.parse(current_code).task_definitions().get(
            task_name, TaskDefinition(name=task_name),
        )
        # Raises TaskNotFoundError before anything is written
        updated_code = splice_task(current_code, definition, proposed_code)

        previous = annotations_of(base).get(ANN_VERSION) or ORIGINAL
        number = await self.next_version_number(agent, base)
        now = utcnow_iso()
        name = await self._create_snapshot(
            agent, base, number, updated_code,
            source_type=SourceType.OPTIMIZED,
            annotations={
                ANN_OPTIMIZED: "true",
                ANN_OPTIMIZED_AT: now,
                ANN_OPTIMIZED_TASK: task_name,
                ANN_PREVIOUS_VERSION: previous,
            },
        )
        await self.swap_base(base, updated_code, {
            ANN_VERSION: version_id(number),
            ANN_LATEST_VERSIONED: name,
            ANN_OPTIMIZED: "true",
            ANN_OPTIMIZED_AT: now,
            ANN_OPTIMIZED_TASK: task_name,
            ANN_PREVIOUS_VERSION: previous,
        })
        _logger.info("Published %s for agent '%s' (task %s)", name, agent, task_name)
        return VersionResult(
            version=version_id(number),
            name=name,
            previous_version=previous,
            task_name=task_name,
            code=updated_code,
        )

    async def capture_current(self, agent: AgentName, base: Resource | None = None) -> str | None:
        """Snapshot the base content unless a versioned artifact already holds it.

        Returns the new version id, or None when nothing needed capturing.
        """
        base = base if base is not None else await self.get_base(agent)
        code = (base.get("data") or {}).get(CODE_KEY, "")
        pointer = annotations_of(base).get(ANN_VERSION) or ORIGINAL
        versions = await self.list_versions(agent)
        if any(a.code == code for a in versions):
            return None

        source_type = SourceType.ORIGINAL if pointer == ORIGINAL else SourceType.MANUAL
        number = await self.next_version_number(agent, base)
        await self._create_snapshot(
            agent, base, number, code,
            source_type=source_type,
            annotations={ANN_PREVIOUS_VERSION: pointer},
        )
        _logger.info("Captured current code of '%s' as %s", agent, version_id(number))
        return version_id(number)

    async def swap_base(
        self, base: Resource, code: str, annotations: dict[str, str],
    ) -> Resource:
        """Overwrite base content and pointer, gated on base's resourceVersion.

        Raises ConflictError when someone else wrote the base since it was read.
        """
        meta = base.get("metadata", {})
        updated = {
            "apiVersion": base.get("apiVersion", "v1"),
            "kind": KIND_CONFIGMAP,
            "metadata": {
                "name": meta.get("name"),
                "namespace": self._namespace,
                "resourceVersion": resource_version(base),
                "labels": labels_of(base),
                "annotations": annotations,
            },
            "data": {**(base.get("data") or {}), CODE_KEY: code},
        }
        return await self._store.update(
            KIND_CONFIGMAP, meta.get("name"), self._namespace, updated,
        )

    async def _create_snapshot(
        self,
        agent: AgentName,
        base: Resource,
        number: int,
        code: str,
        source_type: SourceType,
        annotations: dict[str, str],
    ) -> str:
        name = versioned_code_name(agent, number)
        version = version_id(number)
        owner: dict[str, Any] = {
            "apiVersion": "v1",
            "kind": KIND_CONFIGMAP,
            "name": base.get("metadata", {}).get("name"),
            "uid": base.get("metadata", {}).get("uid", ""),
            "controller": False,
            "blockOwnerDeletion": False,
        }
        snapshot = {
            "apiVersion": "v1",
            "kind": KIND_CONFIGMAP,
            "metadata": {
                "name": name,
                "namespace": self._namespace,
                "labels": {
                    LABEL_APP: agent,
                    LABEL_AGENT: agent,
                    LABEL_COMPONENT: COMPONENT_AGENT_CODE,
                    ANN_VERSION: version,
                },
                "annotations": {
                    ANN_VERSION: version,
                    ANN_SOURCE_TYPE: source_type.value,
                    **annotations,
                },
                "ownerReferences": [owner],
            },
            "data": {CODE_KEY: code},
        }
        await self._store.create(KIND_CONFIGMAP, self._namespace, snapshot)
        return name

    async def prune(self, agent: AgentName, keep_last: int | None = None) -> list[str]:
        """Delete snapshots beyond the newest `keep_last`. Never the active one.

        Best-effort: a failed read or delete is logged and skipped unless strict.
        """
        keep_last = self._keep_last if keep_last is None else keep_last
        try:
            versioned = await self._versioned_resources(agent)
            protected = {await self.get_active_version(agent)}
        except Exception as e:
            if self._strict:
                raise PruneError(f"Could not list versions of '{agent}' for cleanup: {e}") from e
            _logger.warning("Skipping cleanup of old versions for '%s': %s", agent, e)
            return []
        try:
            base = await self.get_base(agent)
            protected.add(annotations_of(base).get(ANN_VERSION) or ORIGINAL)
        except AictlError as e:
            _logger.debug("Base artifact unavailable while pruning '%s': %s", agent, e)

        deleted: list[str] = []
        for resource in versioned[keep_last:]:
            artifact = to_artifact(resource)
            if artifact.version in protected:
                continue
            try:
                await self._store.delete(KIND_CONFIGMAP, artifact.name, self._namespace)
            except Exception as e:
                if self._strict:
                    raise PruneError(f"Could not delete old version '{artifact.name}': {e}") from e
                _logger.warning("Could not delete old version '%s': %s", artifact.name, e)
                continue
            _logger.info("Cleaned up old version '%s'", artifact.name)
            deleted.append(artifact.name)
        return deleted
