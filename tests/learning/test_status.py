"""Tests for LearningStatusTracker."""

import json

import pytest

from aictl.exceptions import ConflictError, ResourceNotFoundError
from aictl.learning.status import LearningStatusTracker
from aictl.types import ANN_LEARNING_DISABLED, KIND_AGENT, KIND_CONFIGMAP, annotations_of

from tests.conftest import AGENT, NAMESPACE, seed_agent


@pytest.fixture
def tracker(store):
    return LearningStatusTracker(store, NAMESPACE)


async def _status_configmap(store, data):
    await store.create(KIND_CONFIGMAP, NAMESPACE, {
        "metadata": {"name": f"{AGENT}-learning-status"},
        "data": data,
    })


# ── Enable / disable ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_enabled_by_default(store, tracker):
    await seed_agent(store)
    assert await tracker.is_enabled(AGENT)


@pytest.mark.asyncio
async def test_disable_twice_writes_once(store, tracker):
    await seed_agent(store)
    before = store.writes[KIND_AGENT]

    first = await tracker.disable(AGENT)
    second = await tracker.disable(AGENT)

    assert first.changed and not first.enabled
    assert not second.changed
    assert "already disabled" in second.message
    assert store.writes[KIND_AGENT] - before == 1
    agent = await store.get(KIND_AGENT, AGENT, NAMESPACE)
    assert annotations_of(agent)[ANN_LEARNING_DISABLED] == "true"


@pytest.mark.asyncio
async def test_enable_removes_annotation(store, tracker):
    await seed_agent(store)
    await tracker.disable(AGENT)

    result = await tracker.enable(AGENT)

    assert result.changed and result.enabled
    assert ANN_LEARNING_DISABLED not in annotations_of(await store.get(KIND_AGENT, AGENT, NAMESPACE))
    assert not (await tracker.enable(AGENT)).changed


@pytest.mark.asyncio
async def test_toggle_carries_concurrency_token(store, tracker):
    await seed_agent(store)
    original_get = store.get
    stale = await original_get(KIND_AGENT, AGENT, NAMESPACE)
    agent = await original_get(KIND_AGENT, AGENT, NAMESPACE)
    agent["spec"]["instructions"] = "changed elsewhere"
    await store.update(KIND_AGENT, AGENT, NAMESPACE, agent)

    async def stale_get(kind, name, namespace):
        if kind == KIND_AGENT:
            return stale
        return await original_get(kind, name, namespace)

    store.get = stale_get
    with pytest.raises(ConflictError):
        await tracker.disable(AGENT)


@pytest.mark.asyncio
async def test_toggle_unknown_agent(tracker):
    with pytest.raises(ResourceNotFoundError):
        await tracker.disable("ghost")


# ── Status ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_status_without_data(store, tracker):
    await seed_agent(store)
    status = await tracker.status(AGENT)
    assert status.enabled
    assert status.created
    assert not status.has_data
    assert status.tasks == []
    assert status.ready is None


@pytest.mark.asyncio
async def test_status_parses_tasks_history_and_ready(store, tracker):
    await seed_agent(store)
    agent = await store.get(KIND_AGENT, AGENT, NAMESPACE)
    agent["status"] = {"conditions": [
        {"type": "Ready", "status": "True", "lastTransitionTime": "2026-01-02T03:04:05Z"},
    ]}
    await store.update(KIND_AGENT, AGENT, NAMESPACE, agent)
    history = [{"timestamp": f"t{i}", "action": "optimized", "task": "summarize"} for i in range(8)]
    await _status_configmap(store, {
        "tasks": '{"summarize": {"confidence": 92.5, "executions": 40, "status": "symbolic"}}',
        "history": json.dumps(history),
    })

    status = await tracker.status(AGENT)

    assert status.ready is True
    assert status.last_activity == "2026-01-02T03:04:05Z"
    assert status.has_data
    assert status.tasks[0].name == "summarize"
    assert status.tasks[0].confidence == 92.5
    assert status.tasks[0].executions == 40
    assert status.tasks[0].status == "symbolic"
    assert [e.timestamp for e in status.history] == ["t3", "t4", "t5", "t6", "t7"]


@pytest.mark.asyncio
async def test_status_tolerates_malformed_data(store, tracker):
    await seed_agent(store)
    await _status_configmap(store, {
        "tasks": "{not json",
        "history": '{"unexpected": "shape"}',
    })
    status = await tracker.status(AGENT)
    assert status.tasks == []
    assert status.history == []
    assert not status.has_data


@pytest.mark.asyncio
async def test_status_skips_bad_entries(store, tracker):
    await seed_agent(store)
    await _status_configmap(store, {
        "tasks": '{"a": "oops", "b": {"confidence": "high"}, "c": {}}',
        "history": '[1, {"action": "learned"}]',
    })
    status = await tracker.status(AGENT)
    assert [t.name for t in status.tasks] == ["c"]
    assert status.tasks[0].status == "neural"
    assert [(e.action, e.task) for e in status.history] == [("learned", "Unknown")]
