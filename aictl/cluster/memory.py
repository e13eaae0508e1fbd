"""A ResourceStore kept in a dict.

Mirrors the API server semantics aictl relies on: monotonically
increasing resourceVersion tokens, conditional updates, label
selectors, and garbage collection of dependents. The last one is
done explicitly here: deleting an object also deletes everything
whose ownerReferences point at its uid.
"""

from __future__ import annotations

import copy
import logging
import uuid

from aictl.cluster.store import ResourceStore, match_selector, resource_version
from aictl.exceptions import AlreadyExistsError, ConflictError, ResourceNotFoundError
from aictl.types import Resource, metadata, utcnow_iso

_logger = logging.getLogger(__name__)

Key = tuple[str, str, str]  # kind, namespace, name


class InMemoryStore(ResourceStore):

    def __init__(self) -> None:
        self._objects: dict[Key, Resource] = {}
        self._revision = 0

    def _next_revision(self) -> str:
        self._revision += 1
        return str(self._revision)

    async def get(self, kind: str, name: str, namespace: str) -> Resource:
        obj = self._objects.get((kind, namespace, name))
        if obj is None:
            raise ResourceNotFoundError(f"{kind} '{name}' not found in '{namespace}'")
        return copy.deepcopy(obj)

    async def list(
        self, kind: str, namespace: str, label_selector: str | None = None,
    ) -> list[Resource]:
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self._objects.items())
            if k == kind and ns == namespace and match_selector(obj, label_selector)
        ]

    async def create(self, kind: str, namespace: str, resource: Resource) -> Resource:
        obj = copy.deepcopy(resource)
        meta = metadata(obj)
        name = meta.get("name")
        if not name:
            raise ValueError("resource has no metadata.name")
        key = (kind, namespace, name)
        if key in self._objects:
            raise AlreadyExistsError(f"{kind} '{name}' already exists in '{namespace}'")
        obj["kind"] = kind
        meta["namespace"] = namespace
        meta["uid"] = uuid.uuid4().hex
        meta["creationTimestamp"] = utcnow_iso()
        meta["resourceVersion"] = self._next_revision()
        self._objects[key] = obj
        return copy.deepcopy(obj)

    async def update(
        self, kind: str, name: str, namespace: str, resource: Resource,
    ) -> Resource:
        key = (kind, namespace, name)
        current = self._objects.get(key)
        if current is None:
            raise ResourceNotFoundError(f"{kind} '{name}' not found in '{namespace}'")
        token = resource_version(resource)
        if token and token != resource_version(current):
            raise ConflictError(
                f"{kind} '{name}' was modified concurrently "
                f"(have {token}, store has {resource_version(current)})"
            )
        obj = copy.deepcopy(resource)
        meta = metadata(obj)
        cur_meta = current["metadata"]
        obj["kind"] = kind
        meta["name"] = name
        meta["namespace"] = namespace
        meta["uid"] = cur_meta["uid"]
        meta["creationTimestamp"] = cur_meta["creationTimestamp"]
        meta["resourceVersion"] = self._next_revision()
        self._objects[key] = obj
        return copy.deepcopy(obj)

    async def delete(self, kind: str, name: str, namespace: str) -> None:
        obj = self._objects.pop((kind, namespace, name), None)
        if obj is None:
            raise ResourceNotFoundError(f"{kind} '{name}' not found in '{namespace}'")
        self._collect_dependents(obj["metadata"]["uid"])

    def _collect_dependents(self, owner_uid: str) -> None:
        dependents = [
            key for key, obj in self._objects.items()
            if any(
                ref.get("uid") == owner_uid
                for ref in obj.get("metadata", {}).get("ownerReferences") or []
            )
        ]
        for key in dependents:
            obj = self._objects.pop(key, None)
            if obj is not None:
                _logger.debug("Garbage-collected %s '%s'", key[0], key[2])
                self._collect_dependents(obj["metadata"]["uid"])
