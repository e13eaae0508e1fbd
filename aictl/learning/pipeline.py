"""OptimizationPipeline — analyze → select → propose → decide → apply.

Turns neural (instruction-only) tasks that have settled into a stable
pattern into symbolic code, one new code version per accepted task.

Failures are isolated per task: a task that cannot be proposed is
skipped with a warning, a failed apply is reported and the batch moves
on. Only an explicit ABORT decision stops the batch.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field

from aictl.cluster.workload import WorkloadController
from aictl.code.source import AgentSource
from aictl.code.versions import VersionStore
from aictl.exceptions import ProposalError
from aictl.learning.analyzer import TraceAnalyzer
from aictl.learning.proposers import CodeProposer
from aictl.learning.validator import SafetyValidator
from aictl.types import AgentName, Opportunity, Proposal

_logger = logging.getLogger(__name__)

DEFAULT_MIN_EXECUTIONS = 10
DEFAULT_MIN_CONFIDENCE = 0.90


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    ABORT = "abort"
    DRY_RUN = "dry_run"


Chooser = Callable[[Proposal], Decision]


class ApplyResult(BaseModel):
    """Result of applying one proposal."""

    success: bool = False
    task_name: str = ""
    version: str = ""
    previous_version: str = ""
    artifact: str = ""
    restarted_pods: list[str] = Field(default_factory=list)
    pruned: list[str] = Field(default_factory=list)
    error: str = ""
    message: str = ""


class TaskOutcome(BaseModel):
    task_name: str
    status: str  # applied, failed, rejected, skipped, dry_run, aborted
    decision: Decision | None = None
    proposal: Proposal | None = None
    result: ApplyResult | None = None
    message: str = ""


class BatchReport(BaseModel):
    agent: str
    opportunities: list[Opportunity] = Field(default_factory=list)
    candidates: list[str] = Field(default_factory=list)
    outcomes: list[TaskOutcome] = Field(default_factory=list)
    aborted: bool = False

    def by_status(self, status: str) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def applied(self) -> list[TaskOutcome]:
        return self.by_status("applied")


class OptimizationPipeline:
    """Drives optimization for one agent.

    The proposer is fixed at construction (see `select_proposer`);
    `synthesis_enabled` only widens candidate selection to every task
    with enough executions, since synthesis does not need the
    analyzer's readiness verdict.
    """

    def __init__(
        self,
        agent: AgentName,
        versions: VersionStore,
        workload: WorkloadController,
        analyzer: TraceAnalyzer,
        proposer: CodeProposer,
        validator: SafetyValidator | None = None,
        synthesis_enabled: bool = False,
        min_executions: int = DEFAULT_MIN_EXECUTIONS,
    ) -> None:
        self.agent = agent
        self._versions = versions
        self._workload = workload
        self._analyzer = analyzer
        self._proposer = proposer
        self._validator = validator
        self._synthesis_enabled = synthesis_enabled
        self._min_executions = min_executions

    # ── Stages ───────────────────────────────────────────────────

    async def analyze(self, time_range: int | None = None) -> list[Opportunity]:
        return await self._analyzer.opportunities(self.agent, time_range)

    def select_candidates(
        self,
        opportunities: list[Opportunity],
        tasks: list[str] | None = None,
    ) -> list[Opportunity]:
        if self._synthesis_enabled:
            eligible = [o for o in opportunities if o.execution_count >= self._min_executions]
        else:
            eligible = [o for o in opportunities if o.ready_for_learning]
        if tasks:
            wanted = set(tasks)
            eligible = [o for o in eligible if o.task_name in wanted]
        return eligible

    async def propose(self, task_name: str) -> Proposal:
        """Generate a proposal for one task of the running code.

        Raises ProposalError when the task cannot be optimized.
        """
        base = await self._versions.get_original(self.agent)
        definitions = AgentSource.parse(base.code).task_definitions()
        definition = definitions.get(task_name)
        if definition is None:
            raise ProposalError(f"Task '{task_name}' not found in agent definition")
        if not definition.neural:
            raise ProposalError(f"Task '{task_name}' is already symbolic")

        proposal = await self._proposer.propose(definition)
        if self._validator is not None:
            proposal.violations = self._validator.validate(proposal.proposed_code)
            if proposal.violations:
                _logger.warning(
                    "Proposal for '%s' has %d safety violation(s)",
                    task_name, len(proposal.violations),
                )
        return proposal

    def decide(
        self,
        proposal: Proposal,
        auto_accept: bool = False,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        dry_run: bool = False,
        chooser: Chooser | None = None,
    ) -> Decision:
        if not proposal.ready_to_deploy:
            return Decision.REJECT
        if auto_accept and proposal.consistency_score >= min_confidence:
            return Decision.ACCEPT
        if dry_run:
            return Decision.DRY_RUN
        if chooser is None:
            return Decision.REJECT
        return chooser(proposal)

    async def apply(self, proposal: Proposal) -> ApplyResult:
        """Publish the proposal as a new version, restart, prune. Never raises."""
        result = ApplyResult(task_name=proposal.task_name)
        try:
            created = await self._versions.create_version(
                self.agent,
                proposal.task_name,
                proposal.proposed_code,
                proposal.task_definition,
            )
            result.version = created.version
            result.previous_version = created.previous_version
            result.artifact = created.name
            result.restarted_pods = await self._workload.restart(self.agent)
            result.pruned = await self._versions.prune(self.agent)
        except Exception as e:
            _logger.warning("Failed to apply optimization for '%s': %s", proposal.task_name, e)
            result.error = str(e)
            result.message = f"Failed to apply optimization for '{proposal.task_name}': {e}"
            return result

        result.success = True
        result.message = f"Optimization applied for task '{proposal.task_name}' as {result.version}"
        return result

    # ── Batch ────────────────────────────────────────────────────

    async def run(
        self,
        time_range: int | None = None,
        tasks: list[str] | None = None,
        auto_accept: bool = False,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        dry_run: bool = False,
        chooser: Chooser | None = None,
        on_proposal: Callable[[Proposal], None] | None = None,
    ) -> BatchReport:
        report = BatchReport(agent=self.agent)
        report.opportunities = await self.analyze(time_range)
        candidates = self.select_candidates(report.opportunities, tasks)
        report.candidates = [c.task_name for c in candidates]

        for candidate in candidates:
            outcome = await self._run_one(
                candidate.task_name, auto_accept, min_confidence, dry_run, chooser, on_proposal,
            )
            report.outcomes.append(outcome)
            if outcome.decision is Decision.ABORT:
                report.aborted = True
                break
        return report

    async def _run_one(
        self,
        task_name: str,
        auto_accept: bool,
        min_confidence: float,
        dry_run: bool,
        chooser: Chooser | None,
        on_proposal: Callable[[Proposal], None] | None,
    ) -> TaskOutcome:
        try:
            proposal = await self.propose(task_name)
        except ProposalError as e:
            _logger.warning("Cannot optimize '%s': %s", task_name, e)
            return TaskOutcome(task_name=task_name, status="skipped", message=str(e))
        except Exception as e:
            _logger.warning("Proposal for '%s' failed: %s", task_name, e)
            return TaskOutcome(task_name=task_name, status="failed", message=str(e))

        if on_proposal is not None:
            on_proposal(proposal)

        decision = self.decide(proposal, auto_accept, min_confidence, dry_run, chooser)
        outcome = TaskOutcome(task_name=task_name, status="rejected", decision=decision,
                              proposal=proposal)
        if decision is Decision.ABORT:
            outcome.status = "aborted"
        elif decision is Decision.DRY_RUN or (decision is Decision.ACCEPT and dry_run):
            outcome.status = "dry_run"
        elif decision is Decision.ACCEPT:
            outcome.result = await self.apply(proposal)
            outcome.status = "applied" if outcome.result.success else "failed"
            outcome.message = outcome.result.message
        elif proposal.violations:
            outcome.message = "; ".join(proposal.violations)
        return outcome
