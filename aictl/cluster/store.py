"""The narrow contract aictl needs from the cluster.

Resources are plain Kubernetes-shaped dicts. The concurrency token is
`metadata.resourceVersion`: `update` with a token that no longer matches
the stored object raises ConflictError instead of overwriting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from aictl.types import Resource


def parse_selector(selector: str | None) -> dict[str, str]:
    """'a=b,c=d' -> {'a': 'b', 'c': 'd'}. Only equality terms are supported."""
    terms: dict[str, str] = {}
    if not selector:
        return terms
    for term in selector.split(","):
        term = term.strip()
        if not term:
            continue
        key, sep, value = term.partition("=")
        if not sep:
            raise ValueError(f"Unsupported label selector term: {term!r}")
        terms[key.strip()] = value.strip()
    return terms


def match_selector(resource: Resource, selector: str | None) -> bool:
    labels = resource.get("metadata", {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in parse_selector(selector).items())


def resource_version(resource: Resource) -> str:
    return str(resource.get("metadata", {}).get("resourceVersion", ""))


class ResourceStore(ABC):
    """Get/list/create/update/delete by kind + name + namespace."""

    @abstractmethod
    async def get(self, kind: str, name: str, namespace: str) -> Resource:
        """Fetch one resource. Raises ResourceNotFoundError."""
        ...

    @abstractmethod
    async def list(
        self, kind: str, namespace: str, label_selector: str | None = None,
    ) -> list[Resource]:
        ...

    @abstractmethod
    async def create(self, kind: str, namespace: str, resource: Resource) -> Resource:
        """Create a resource. Raises AlreadyExistsError."""
        ...

    @abstractmethod
    async def update(
        self, kind: str, name: str, namespace: str, resource: Resource,
    ) -> Resource:
        """Replace a resource, gated on its metadata.resourceVersion if set."""
        ...

    @abstractmethod
    async def delete(self, kind: str, name: str, namespace: str) -> None:
        ...

    async def close(self) -> None:
        return None
