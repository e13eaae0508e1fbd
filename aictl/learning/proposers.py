"""Code proposers — turn a neural task into proposed symbolic code.

Two implementations share one interface: pattern detection (delegated
to the trace analysis service) and LLM synthesis from sample traces.
The pipeline is handed exactly one CodeProposer, chosen once by
`select_proposer`; when both are configured, FallbackProposer tries
the pattern path and falls back to synthesis if it cannot propose.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from aictl.code.source import format_neural_task
from aictl.exceptions import ProposalError
from aictl.learning.analyzer import TraceAnalyzer
from aictl.llm.base import BaseLLMProvider, LLMMessage
from aictl.types import AgentName, Proposal, TaskDefinition

_logger = logging.getLogger(__name__)

SYNTHESIS_PROMPT = """You convert an LLM-executed agent task into deterministic code.
You are given the task definition and sample executions (inputs, outputs, tool calls).
If the outputs are a deterministic function of the inputs, write the body of the task
block: plain code that reads `inputs[:name]` and returns a hash with the output keys.
Do not touch files, processes, the network or metaprogramming.

Respond with JSON only:
{"is_deterministic": bool, "confidence": 0.0-1.0, "code": "...", "explanation": "..."}"""


class CodeProposer(ABC):
    """Produces a Proposal for one task, or raises ProposalError."""

    method: str = ""

    @abstractmethod
    async def propose(self, task: TaskDefinition) -> Proposal: ...


class PatternProposer(CodeProposer):
    method = "pattern_detection"

    def __init__(self, agent: AgentName, analyzer: TraceAnalyzer) -> None:
        self._agent = agent
        self._analyzer = analyzer

    async def propose(self, task: TaskDefinition) -> Proposal:
        result = await self._analyzer.detect_pattern(self._agent, task.name)
        if not result.success or not result.code:
            raise ProposalError(
                f"Cannot optimize task '{task.name}': {result.reason or 'No common pattern found'}"
            )
        return Proposal(
            task_name=task.name,
            current_code=format_neural_task(task),
            proposed_code=result.code,
            task_definition=task,
            consistency_score=result.consistency_score,
            execution_count=result.execution_count,
            method=self.method,
        )


class SynthesisProposer(CodeProposer):
    method = "llm_synthesis"

    def __init__(
        self,
        agent: AgentName,
        analyzer: TraceAnalyzer,
        llm: BaseLLMProvider,
        trace_limit: int = 20,
    ) -> None:
        self._agent = agent
        self._analyzer = analyzer
        self._llm = llm
        self._trace_limit = trace_limit

    async def propose(self, task: TaskDefinition) -> Proposal:
        traces = await self._analyzer.task_traces(self._agent, task.name, limit=self._trace_limit)
        if not traces:
            raise ProposalError(f"No execution data found for task '{task.name}'")

        response = await self._llm.complete(
            messages=[LLMMessage(role="user", content=self._build_context(task, traces))],
            system=SYNTHESIS_PROMPT,
            max_tokens=4096,
        )
        data = _parse_response(response.content or "")
        if not data:
            raise ProposalError(f"Cannot optimize task '{task.name}': unparseable synthesis response")
        if not data.get("is_deterministic") or not data.get("code"):
            raise ProposalError(
                f"Cannot optimize task '{task.name}': {data.get('explanation') or 'not deterministic'}"
            )

        return Proposal(
            task_name=task.name,
            current_code=format_neural_task(task),
            proposed_code=data["code"],
            task_definition=task,
            consistency_score=float(data.get("confidence") or 0.0),
            execution_count=len(traces),
            method=self.method,
            explanation=data.get("explanation", ""),
        )

    def _build_context(self, task: TaskDefinition, traces: list[dict[str, Any]]) -> str:
        tools = sorted({
            call.get("tool_name", "")
            for trace in traces
            for call in trace.get("tool_calls") or []
            if call.get("tool_name")
        })
        parts = [
            "=== Task definition ===",
            format_neural_task(task),
            f"Available tools: {', '.join(tools) if tools else 'none'}",
            "",
            f"=== Sample executions ({len(traces)}) ===",
        ]
        for trace in traces:
            parts.append(json.dumps({
                "inputs": trace.get("inputs"),
                "outputs": trace.get("outputs"),
                "tool_calls": trace.get("tool_calls") or [],
            }, default=str)[:2000])
        return "\n".join(parts)


class FallbackProposer(CodeProposer):
    """Try `primary`; on ProposalError or an unavailable backend use `fallback`."""

    def __init__(self, primary: CodeProposer, fallback: CodeProposer) -> None:
        self._primary = primary
        self._fallback = fallback
        self.method = primary.method

    async def propose(self, task: TaskDefinition) -> Proposal:
        try:
            return await self._primary.propose(task)
        except ProposalError as e:
            _logger.info("Pattern detection failed for '%s' (%s), using synthesis", task.name, e)
        except Exception as e:
            _logger.warning("Pattern backend unavailable for '%s': %s", task.name, e)
        return await self._fallback.propose(task)


def select_proposer(
    pattern: CodeProposer | None,
    synthesizer: CodeProposer | None,
    use_synthesis: bool = False,
) -> CodeProposer:
    """Pick the single proposer a pipeline will use."""
    if use_synthesis and synthesizer:
        return synthesizer
    if pattern and synthesizer:
        return FallbackProposer(pattern, synthesizer)
    proposer = pattern or synthesizer
    if proposer is None:
        raise ValueError("No code proposer configured")
    return proposer


def _parse_response(text: str) -> dict | None:
    """Extract JSON from an LLM response."""
    text = text.strip()

    # Strip markdown code fences
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start >= 0 and end > start:
            try:
                return json.loads(text[start:end])
            except json.JSONDecodeError:
                pass
    return None
