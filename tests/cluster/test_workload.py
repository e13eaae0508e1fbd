"""Tests for WorkloadController and resource builders."""

import pytest

from aictl.cluster.resources import agent_name_from, language_agent
from aictl.exceptions import ResourceNotFoundError
from aictl.types import ANN_VERSION, KIND_CRONJOB, KIND_DEPLOYMENT, KIND_POD

from tests.conftest import AGENT, NAMESPACE, seed_agent, set_active


@pytest.mark.asyncio
async def test_restart_deletes_agent_pods_only(store, workload):
    await seed_agent(store, pods=3)
    await store.create(KIND_POD, NAMESPACE, {"metadata": {"name": "other", "labels": {"app": "other"}}})

    restarted = await workload.restart(AGENT)

    assert sorted(restarted) == [f"{AGENT}-0", f"{AGENT}-1", f"{AGENT}-2"]
    remaining = [p["metadata"]["name"] for p in await store.list(KIND_POD, NAMESPACE)]
    assert remaining == ["other"]


@pytest.mark.asyncio
async def test_restart_is_best_effort(store, workload):
    await seed_agent(store, pods=2)
    original_delete = store.delete

    async def flaky_delete(kind, name, namespace):
        if name.endswith("-0"):
            raise ResourceNotFoundError("already gone")
        return await original_delete(kind, name, namespace)

    store.delete = flaky_delete
    assert await workload.restart(AGENT) == [f"{AGENT}-1"]


@pytest.mark.asyncio
async def test_version_tag_from_deployment(store, workload):
    await seed_agent(store)
    assert await workload.version_tag(AGENT) is None
    await set_active(store, AGENT, "v3")
    assert await workload.version_tag(AGENT) == "v3"


@pytest.mark.asyncio
async def test_cronjob_wins_over_deployment(store, workload):
    await seed_agent(store)
    await set_active(store, AGENT, "v2")
    await store.create(KIND_CRONJOB, NAMESPACE, {
        "metadata": {"name": AGENT, "annotations": {ANN_VERSION: "v5"}},
        "spec": {"jobTemplate": {"metadata": {}}},
    })
    assert await workload.version_tag(AGENT) == "v5"


@pytest.mark.asyncio
async def test_version_tag_missing_workload(store, workload):
    assert await workload.version_tag("ghost") is None
    await store.create(KIND_DEPLOYMENT, NAMESPACE, {"metadata": {"name": "ghost"}, "spec": None})
    assert await workload.version_tag("ghost") is None


# ── Resource builders ────────────────────────────────────────────

def test_agent_name_from_description():
    assert agent_name_from("Summarize Hacker News top stories!", now=1700001234) == "summarize-hacker-news-1234"


def test_agent_name_must_start_with_letter():
    assert agent_name_from("42 reports daily", now=1700005678) == "agent-42-reports-daily-5678"


def test_language_agent_scheduled():
    resource = language_agent(
        "bot", "do things", "ns", schedule="0 8 * * *", tools=["web"], models=["m1"],
    )
    assert resource["kind"] == "LanguageAgent"
    assert resource["spec"]["mode"] == "scheduled"
    assert resource["spec"]["toolRefs"] == [{"name": "web"}]
    assert resource["spec"]["modelRefs"] == [{"name": "m1"}]
    assert resource["spec"]["workspace"] == {"enabled": True}


def test_language_agent_defaults():
    spec = language_agent("bot", "do things", "ns", workspace=False)["spec"]
    assert spec["mode"] == "autonomous"
    assert "toolRefs" not in spec
    assert "workspace" not in spec
