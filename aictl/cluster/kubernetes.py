"""KubernetesStore — ResourceStore backed by the Kubernetes REST API.

Uses httpx directly rather than a full client library; aictl only needs
CRUD on a handful of kinds. Works against `kubectl proxy` (the default
server) or an API server with a bearer token.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from aictl.cluster.store import ResourceStore
from aictl.exceptions import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    ResourceNotFoundError,
)
from aictl.types import (
    KIND_AGENT,
    KIND_CONFIGMAP,
    KIND_CRONJOB,
    KIND_DEPLOYMENT,
    KIND_MODEL,
    KIND_POD,
    Resource,
)

_logger = logging.getLogger(__name__)

# kind -> (api prefix, apiVersion, plural)
KINDS: dict[str, tuple[str, str, str]] = {
    KIND_CONFIGMAP: ("/api/v1", "v1", "configmaps"),
    KIND_POD: ("/api/v1", "v1", "pods"),
    KIND_DEPLOYMENT: ("/apis/apps/v1", "apps/v1", "deployments"),
    KIND_CRONJOB: ("/apis/batch/v1", "batch/v1", "cronjobs"),
    KIND_AGENT: ("/apis/langop.io/v1alpha1", "langop.io/v1alpha1", "languageagents"),
    KIND_MODEL: ("/apis/langop.io/v1alpha1", "langop.io/v1alpha1", "languagemodels"),
}


class KubernetesStore(ResourceStore):
    """HTTP client for the subset of the Kubernetes API used by aictl."""

    def __init__(
        self,
        server: str,
        token: str = "",
        verify: bool = True,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=server.rstrip("/"),
            headers=headers,
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _path(kind: str, namespace: str, name: str | None = None) -> str:
        try:
            prefix, _, plural = KINDS[kind]
        except KeyError:
            raise ClusterError(f"Unsupported resource kind: {kind}") from None
        path = f"{prefix}/namespaces/{namespace}/{plural}"
        return f"{path}/{name}" if name else path

    @staticmethod
    def _with_type(kind: str, resource: Resource) -> Resource:
        body = dict(resource)
        body.setdefault("apiVersion", KINDS[kind][1])
        body.setdefault("kind", kind)
        return body

    async def get(self, kind: str, name: str, namespace: str) -> Resource:
        resp = await self._request("GET", self._path(kind, namespace, name))
        return self._check(resp, kind, name)

    async def list(
        self, kind: str, namespace: str, label_selector: str | None = None,
    ) -> list[Resource]:
        params = {"labelSelector": label_selector} if label_selector else None
        resp = await self._request("GET", self._path(kind, namespace), params=params)
        data = self._check(resp, kind, "")
        return list(data.get("items") or [])

    async def create(self, kind: str, namespace: str, resource: Resource) -> Resource:
        name = resource.get("metadata", {}).get("name", "")
        resp = await self._request(
            "POST",
            self._path(kind, namespace), json=self._with_type(kind, resource),
        )
        return self._check(resp, kind, name)

    async def update(
        self, kind: str, name: str, namespace: str, resource: Resource,
    ) -> Resource:
        resp = await self._request(
            "PUT",
            self._path(kind, namespace, name), json=self._with_type(kind, resource),
        )
        return self._check(resp, kind, name)

    async def delete(self, kind: str, name: str, namespace: str) -> None:
        resp = await self._request("DELETE", self._path(kind, namespace, name))
        self._check(resp, kind, name)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise ClusterError(f"Cannot reach Kubernetes API: {e}") from e

    def _check(self, resp: httpx.Response, kind: str, name: str) -> dict[str, Any]:
        if resp.status_code == 404:
            raise ResourceNotFoundError(f"{kind} '{name}' not found")
        if resp.status_code == 409:
            message = _status_message(resp)
            if resp.request.method == "POST":
                raise AlreadyExistsError(f"{kind} '{name}' already exists: {message}")
            raise ConflictError(f"{kind} '{name}' was modified concurrently: {message}")
        if resp.is_error:
            _logger.debug("API error %s for %s %s", resp.status_code, kind, name)
            raise ClusterError(
                f"{resp.request.method} {kind} '{name}' failed "
                f"({resp.status_code}): {_status_message(resp)}"
            )
        if not resp.content:
            return {}
        return resp.json()


def _status_message(resp: httpx.Response) -> str:
    try:
        return resp.json().get("message", resp.text)
    except ValueError:
        return resp.text
