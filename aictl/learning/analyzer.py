"""Trace analysis client.

The analysis service owns trace queries and pattern detection; aictl
only asks it which tasks look learnable and for candidate code. The
service is reached over HTTP at AICTL_OTEL_QUERY_ENDPOINT.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel

from aictl.types import AgentName, Opportunity

_logger = logging.getLogger(__name__)

_SINCE_RE = re.compile(r"^(\d+)([hHdDwW])$")
_UNIT_SECONDS = {"h": 3600, "d": 86_400, "w": 604_800}


def parse_since(since: str | None) -> int | None:
    """'2h' / '1d' / '1w' -> seconds. None or an invalid value -> None (service default)."""
    if not since:
        return None
    match = _SINCE_RE.match(since.strip())
    if not match:
        _logger.warning("Invalid --since format '%s', using default (24h)", since)
        return None
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]


class PatternResult(BaseModel):
    """Outcome of pattern detection for one task."""

    success: bool = False
    code: str = ""
    consistency_score: float = 0.0
    execution_count: int = 0
    reason: str = ""


class TraceAnalyzer(ABC):

    @abstractmethod
    async def available(self) -> bool: ...

    @abstractmethod
    async def opportunities(
        self, agent: AgentName, time_range: int | None = None,
    ) -> list[Opportunity]: ...

    @abstractmethod
    async def task_traces(
        self, agent: AgentName, task: str, limit: int = 20,
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def detect_pattern(self, agent: AgentName, task: str) -> PatternResult: ...


class HttpTraceAnalyzer(TraceAnalyzer):
    """TraceAnalyzer backed by the analysis service's JSON API."""

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=endpoint.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def available(self) -> bool:
        try:
            resp = await self._client.get("/health")
        except httpx.HTTPError as e:
            _logger.warning("Trace analysis service unreachable: %s", e)
            return False
        return resp.is_success

    async def opportunities(
        self, agent: AgentName, time_range: int | None = None,
    ) -> list[Opportunity]:
        params = {"since": time_range} if time_range else None
        resp = await self._client.get(f"/api/v1/agents/{agent}/opportunities", params=params)
        resp.raise_for_status()
        return [Opportunity(**item) for item in resp.json().get("opportunities", [])]

    async def task_traces(
        self, agent: AgentName, task: str, limit: int = 20,
    ) -> list[dict[str, Any]]:
        resp = await self._client.get(
            f"/api/v1/agents/{agent}/tasks/{task}/traces", params={"limit": limit},
        )
        resp.raise_for_status()
        return list(resp.json().get("traces", []))

    async def detect_pattern(self, agent: AgentName, task: str) -> PatternResult:
        resp = await self._client.post(f"/api/v1/agents/{agent}/tasks/{task}/patterns")
        resp.raise_for_status()
        return PatternResult(**resp.json())

    async def close(self) -> None:
        await self._client.aclose()
