"""Builders for the custom resources aictl creates."""

from __future__ import annotations

import re
import time

from aictl.types import KIND_AGENT, AgentName, Resource

API_VERSION = "langop.io/v1alpha1"
DEFAULT_AGENT_IMAGE = "ghcr.io/language-operator/agent:latest"

_NAME_CHARS_RE = re.compile(r"[^a-z0-9\s]")


def agent_name_from(description: str, now: float | None = None) -> AgentName:
    """First three words, hyphenated, plus a timestamp suffix against collisions."""
    words = _NAME_CHARS_RE.sub("", description.lower()).split()[:3]
    name = "-".join(words)
    # DNS-1123 names must start with a letter
    if not re.match(r"^[a-z]", name):
        name = f"agent-{name}" if name else "agent"
    stamp = str(int(now if now is not None else time.time()))[-4:]
    return f"{name}-{stamp}"


def language_agent(
    name: AgentName,
    instructions: str,
    namespace: str,
    schedule: str | None = None,
    persona: str | None = None,
    tools: list[str] | None = None,
    models: list[str] | None = None,
    workspace: bool = True,
) -> Resource:
    spec: dict = {
        "instructions": instructions,
        "mode": "scheduled" if schedule else "autonomous",
        "image": DEFAULT_AGENT_IMAGE,
    }
    if schedule:
        spec["schedule"] = schedule
    if persona:
        spec["persona"] = persona
    if tools:
        spec["toolRefs"] = [{"name": t} for t in tools]
    if models:
        spec["modelRefs"] = [{"name": m} for m in models]
    if workspace:
        spec["workspace"] = {"enabled": True}
    return {
        "apiVersion": API_VERSION,
        "kind": KIND_AGENT,
        "metadata": {"name": name, "namespace": namespace, "labels": {}},
        "spec": spec,
    }
