"""Tests for KubernetesStore against a mocked API server."""

import json

import httpx
import pytest

from aictl.cluster.kubernetes import KubernetesStore
from aictl.exceptions import AlreadyExistsError, ClusterError, ConflictError, ResourceNotFoundError


def _store(handler, token=""):
    return KubernetesStore("https://k8s.test", token=token, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_configmap_path_and_auth():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"metadata": {"name": "a-code"}})

    store = _store(handler, token="t0k")
    result = await store.get("ConfigMap", "a-code", "prod")
    await store.close()

    assert seen["path"] == "/api/v1/namespaces/prod/configmaps/a-code"
    assert seen["auth"] == "Bearer t0k"
    assert result["metadata"]["name"] == "a-code"


@pytest.mark.asyncio
async def test_custom_resource_paths():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"metadata": {}})

    store = _store(handler)
    await store.get("LanguageAgent", "bot", "default")
    await store.get("CronJob", "bot", "default")
    await store.get("Deployment", "bot", "default")
    assert paths == [
        "/apis/langop.io/v1alpha1/namespaces/default/languageagents/bot",
        "/apis/batch/v1/namespaces/default/cronjobs/bot",
        "/apis/apps/v1/namespaces/default/deployments/bot",
    ]


@pytest.mark.asyncio
async def test_list_passes_label_selector():
    def handler(request):
        assert request.url.params["labelSelector"] == "app=bot"
        return httpx.Response(200, json={"items": [{"metadata": {"name": "p1"}}]})

    items = await _store(handler).list("Pod", "default", label_selector="app=bot")
    assert [i["metadata"]["name"] for i in items] == ["p1"]


@pytest.mark.asyncio
async def test_create_fills_type_meta():
    def handler(request):
        body = json.loads(request.content)
        assert request.method == "POST"
        assert body["apiVersion"] == "v1"
        assert body["kind"] == "ConfigMap"
        return httpx.Response(201, json=body)

    created = await _store(handler).create("ConfigMap", "default", {"metadata": {"name": "x"}})
    assert created["kind"] == "ConfigMap"


@pytest.mark.asyncio
async def test_not_found_maps_to_resource_not_found():
    store = _store(lambda request: httpx.Response(404, json={"message": "gone"}))
    with pytest.raises(ResourceNotFoundError):
        await store.get("ConfigMap", "x", "default")


@pytest.mark.asyncio
async def test_409_on_create_is_already_exists():
    store = _store(lambda request: httpx.Response(409, json={"message": "exists"}))
    with pytest.raises(AlreadyExistsError):
        await store.create("ConfigMap", "default", {"metadata": {"name": "x"}})


@pytest.mark.asyncio
async def test_409_on_update_is_conflict():
    store = _store(lambda request: httpx.Response(409, json={"message": "stale"}))
    with pytest.raises(ConflictError, match="stale"):
        await store.update("ConfigMap", "x", "default", {"metadata": {"name": "x", "resourceVersion": "1"}})


@pytest.mark.asyncio
async def test_server_error_is_cluster_error():
    store = _store(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(ClusterError, match="500"):
        await store.delete("Pod", "x", "default")


@pytest.mark.asyncio
async def test_transport_error_is_cluster_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ClusterError, match="Cannot reach"):
        await _store(handler).get("ConfigMap", "x", "default")


@pytest.mark.asyncio
async def test_unknown_kind_rejected():
    store = _store(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ClusterError, match="Unsupported"):
        await store.get("Secret", "x", "default")
