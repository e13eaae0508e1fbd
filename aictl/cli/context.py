"""Per-invocation wiring of settings into engine components, plus the sync-to-async bridge."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from aictl.cluster.kubernetes import KubernetesStore
from aictl.cluster.logs import LogStreamer
from aictl.cluster.store import ResourceStore
from aictl.cluster.workload import WorkloadController
from aictl.code.rollback import RollbackManager
from aictl.code.synthesis import SynthesisWatcher
from aictl.code.versions import VersionStore
from aictl.config import AictlSettings, settings
from aictl.learning.analyzer import HttpTraceAnalyzer
from aictl.learning.pipeline import OptimizationPipeline
from aictl.learning.proposers import PatternProposer, SynthesisProposer, select_proposer
from aictl.learning.status import LearningStatusTracker
from aictl.learning.validator import DenylistValidator
from aictl.types import AgentName


class AictlContext:
    """Holds the store and builds engine components for one invocation."""

    _instance: AictlContext | None = None

    def __init__(
        self,
        store: ResourceStore | None = None,
        config: AictlSettings | None = None,
    ) -> None:
        self.settings = config or settings
        self.namespace = self.settings.namespace
        self.store = store or KubernetesStore(
            server=self.settings.kube_api_server,
            token=self.settings.kube_token,
            verify=self.settings.kube_verify_ssl,
            timeout=self.settings.request_timeout,
        )
        self.workload = WorkloadController(self.store, self.namespace)
        self.versions = VersionStore(
            self.store,
            self.namespace,
            workload=self.workload,
            keep_last=self.settings.keep_versions,
            strict=self.settings.strict,
        )
        self.rollback = RollbackManager(self.versions, self.workload)
        self.learning = LearningStatusTracker(self.store, self.namespace)
        self.logs = LogStreamer(self.settings.kubectl, self.namespace)

    def watcher(self) -> SynthesisWatcher:
        return SynthesisWatcher(
            self.store,
            self.namespace,
            interval=self.settings.synthesis_poll_interval,
            timeout=self.settings.synthesis_timeout,
            strict=self.settings.strict,
        )

    def analyzer(self) -> HttpTraceAnalyzer | None:
        if not self.settings.otel_query_endpoint:
            return None
        return HttpTraceAnalyzer(
            self.settings.otel_query_endpoint,
            api_key=self.settings.otel_query_api_key,
            timeout=self.settings.request_timeout,
        )

    def pipeline(
        self,
        agent: AgentName,
        analyzer: HttpTraceAnalyzer,
        use_synthesis: bool = False,
        synthesis_model: str | None = None,
    ) -> OptimizationPipeline:
        synthesizer = None
        if self.settings.anthropic_api_key:
            # Imported lazily so commands that never synthesize skip the SDK import
            from aictl.llm.anthropic import AnthropicProvider

            llm = AnthropicProvider(
                api_key=self.settings.anthropic_api_key,
                model=synthesis_model or self.settings.synthesis_model,
            )
            synthesizer = SynthesisProposer(agent, analyzer, llm)

        proposer = select_proposer(
            PatternProposer(agent, analyzer), synthesizer, use_synthesis=use_synthesis,
        )
        return OptimizationPipeline(
            agent,
            self.versions,
            self.workload,
            analyzer,
            proposer,
            validator=DenylistValidator(),
            synthesis_enabled=synthesizer is not None,
            min_executions=self.settings.min_executions,
        )

    async def close(self) -> None:
        await self.store.close()

    @classmethod
    def get(cls) -> AictlContext:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls, instance: AictlContext | None = None) -> None:
        cls._instance = instance


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)
