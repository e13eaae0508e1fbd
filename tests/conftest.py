"""Shared fixtures: an in-memory cluster seeded with a billing-bot agent."""

from __future__ import annotations

from collections import Counter

import pytest

from aictl.cluster.memory import InMemoryStore
from aictl.cluster.workload import WorkloadController
from aictl.code.versions import VersionStore
from aictl.learning.analyzer import PatternResult, TraceAnalyzer
from aictl.llm.base import BaseLLMProvider, LLMResponse
from aictl.types import (
    ANN_VERSION,
    CODE_KEY,
    COMPONENT_AGENT_CODE,
    KIND_AGENT,
    KIND_CONFIGMAP,
    KIND_DEPLOYMENT,
    KIND_POD,
    LABEL_AGENT,
    LABEL_APP,
    LABEL_COMPONENT,
    Opportunity,
    base_code_name,
)

NAMESPACE = "default"
AGENT = "billing-bot"

BILLING_BOT_CODE = '''require 'language_operator'

agent "billing-bot" do
  description "Summarizes invoices"  # owned by finance

  task :fetch,
    instructions: "Fetch the invoice with the given id",
    inputs: { id: 'string' },
    outputs: { invoice: 'hash' }

  task :summarize,
    instructions: "Summarize the invoice in one sentence",
    inputs: { invoice: 'hash' },
    outputs: { summary: 'string' }

  task :notify,
    inputs: { summary: 'string' },
    outputs: { sent: 'boolean' } do |inputs|
    { sent: !inputs[:summary].to_s.empty? }
  end

  main do |inputs|
    invoice = execute_task(:fetch, inputs: inputs)
    execute_task(:notify, inputs: execute_task(:summarize, inputs: invoice))
  end
end
'''

SUMMARIZE_BODY = '''total = inputs[:invoice][:total]
{ summary: "Invoice total: #{total}" }'''


# ── Store ────────────────────────────────────────────────────────

class RecordingStore(InMemoryStore):
    """InMemoryStore that counts mutating calls per kind."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: Counter = Counter()

    async def create(self, kind, namespace, resource):
        self.writes[kind] += 1
        return await super().create(kind, namespace, resource)

    async def update(self, kind, name, namespace, resource):
        self.writes[kind] += 1
        return await super().update(kind, name, namespace, resource)

    async def delete(self, kind, name, namespace):
        self.writes[kind] += 1
        return await super().delete(kind, name, namespace)


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ── Trace analysis / LLM fakes ───────────────────────────────────

class FakeAnalyzer(TraceAnalyzer):
    def __init__(self, opportunities=None, patterns=None, traces=None, available=True):
        self._opportunities = opportunities or []
        self.patterns: dict[str, PatternResult] = patterns or {}
        self.traces: dict[str, list[dict]] = traces or {}
        self._available = available
        self.detect_calls: list[str] = []

    async def available(self):
        return self._available

    async def opportunities(self, agent, time_range=None):
        return list(self._opportunities)

    async def task_traces(self, agent, task, limit=20):
        return self.traces.get(task, [])[:limit]

    async def detect_pattern(self, agent, task):
        self.detect_calls.append(task)
        return self.patterns.get(task, PatternResult(success=False, reason="No common pattern found"))


class MockLLMProvider(BaseLLMProvider):
    """LLM provider that returns canned responses. No API calls."""

    def __init__(self, responses: list[str] | None = None):
        self._responses = responses or []
        self.calls: list[dict] = []

    async def complete(self, messages, system=None, max_tokens=4096):
        self.calls.append({"messages": messages, "system": system, "max_tokens": max_tokens})
        content = self._responses[len(self.calls) - 1] if len(self.calls) <= len(self._responses) else ""
        return LLMResponse(content=content, stop_reason="end_turn", input_tokens=10, output_tokens=5)


def opportunity(task: str, executions: int = 25, ready: bool = True, score: float = 0.95) -> Opportunity:
    return Opportunity(
        task_name=task, execution_count=executions, ready_for_learning=ready, consistency_score=score,
    )


# ── Seeding helpers ──────────────────────────────────────────────

async def seed_agent(
    store: InMemoryStore,
    agent: str = AGENT,
    code: str = BILLING_BOT_CODE,
    pods: int = 2,
) -> None:
    """Base code artifact, Deployment, agent resource and running pods."""
    await store.create(KIND_CONFIGMAP, NAMESPACE, {
        "metadata": {
            "name": base_code_name(agent),
            "labels": {
                LABEL_APP: agent,
                LABEL_AGENT: agent,
                LABEL_COMPONENT: COMPONENT_AGENT_CODE,
            },
        },
        "data": {CODE_KEY: code},
    })
    await store.create(KIND_DEPLOYMENT, NAMESPACE, {
        "metadata": {"name": agent, "labels": {LABEL_APP: agent}},
        "spec": {"template": {"metadata": {"labels": {LABEL_APP: agent}}}},
    })
    await store.create(KIND_AGENT, NAMESPACE, {
        "metadata": {"name": agent},
        "spec": {"instructions": "Summarize invoices"},
    })
    for i in range(pods):
        await store.create(KIND_POD, NAMESPACE, {
            "metadata": {"name": f"{agent}-{i}", "labels": {LABEL_APP: agent}},
        })


async def set_active(store: InMemoryStore, agent: str, version: str) -> None:
    """Tag the running Deployment the way the operator does after a rollout."""
    deployment = await store.get(KIND_DEPLOYMENT, agent, NAMESPACE)
    deployment["spec"]["template"]["metadata"]["labels"][ANN_VERSION] = version
    await store.update(KIND_DEPLOYMENT, agent, NAMESPACE, deployment)


async def publish_versions(
    versions: VersionStore, agent: str, count: int, task: str = "summarize",
) -> list[str]:
    """Create `count` versions, each rewriting `task` with a distinct body."""
    created = []
    for i in range(count):
        result = await versions.create_version(
            agent, task, f'{{ result: "revision {i + 1}" }}',
        )
        created.append(result.version)
    return created


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def workload(store):
    return WorkloadController(store, NAMESPACE)


@pytest.fixture
def versions(store, workload):
    return VersionStore(store, NAMESPACE, workload=workload)


@pytest.fixture
def clock():
    return FakeClock()
