"""Core types shared across all aictl subsystems."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, Field

# ── Names & tags ─────────────────────────────────────────────────────────────

AgentName: TypeAlias = str
Resource: TypeAlias = dict[str, Any]

CODE_KEY = "agent.rb"
ORIGINAL = "original"

KIND_CONFIGMAP = "ConfigMap"
KIND_POD = "Pod"
KIND_DEPLOYMENT = "Deployment"
KIND_CRONJOB = "CronJob"
KIND_AGENT = "LanguageAgent"
KIND_MODEL = "LanguageModel"

LABEL_APP = "app"
LABEL_NAME = "app.kubernetes.io/name"
LABEL_AGENT = "langop.io/agent"
LABEL_COMPONENT = "langop.io/component"
COMPONENT_AGENT_CODE = "agent-code"

ANN_VERSION = "langop.io/version"
ANN_SOURCE_TYPE = "langop.io/source-type"
ANN_OPTIMIZED = "langop.io/optimized"
ANN_OPTIMIZED_AT = "langop.io/optimized-at"
ANN_OPTIMIZED_TASK = "langop.io/optimized-task"
ANN_PREVIOUS_VERSION = "langop.io/previous-version"
ANN_LATEST_VERSIONED = "langop.io/latest-versioned-configmap"
ANN_ROLLED_BACK = "langop.io/rolled-back"
ANN_ROLLED_BACK_AT = "langop.io/rolled-back-at"
ANN_LEARNING_DISABLED = "langop.io/learning-disabled"

_VERSION_RE = re.compile(r"^v?(\d+)$")


def base_code_name(agent: AgentName) -> str:
    return f"{agent}-code"


def versioned_code_name(agent: AgentName, number: int) -> str:
    return f"{agent}-code-v{number}"


def learning_status_name(agent: AgentName) -> str:
    return f"{agent}-learning-status"


def code_selector(agent: AgentName) -> str:
    return f"{LABEL_AGENT}={agent},{LABEL_COMPONENT}={COMPONENT_AGENT_CODE}"


def version_number(version: str | None) -> int:
    """'v3' -> 3, '3' -> 3; 'original', 'v0', missing or garbage -> 0."""
    if not version:
        return 0
    match = _VERSION_RE.match(version.strip())
    return int(match.group(1)) if match else 0


def version_id(number: int) -> str:
    return f"v{number}" if number > 0 else ORIGINAL


def normalize_version(version: str) -> str:
    """Accept '3', 'v3' or 'original' from users."""
    version = version.strip()
    if version == ORIGINAL:
        return version
    match = _VERSION_RE.match(version)
    return f"v{int(match.group(1))}" if match else version


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def metadata(resource: Resource) -> dict[str, Any]:
    return resource.setdefault("metadata", {})


def labels_of(resource: Resource) -> dict[str, str]:
    return dict(resource.get("metadata", {}).get("labels") or {})


def annotations_of(resource: Resource) -> dict[str, str]:
    return dict(resource.get("metadata", {}).get("annotations") or {})


# ── Code lineage ─────────────────────────────────────────────────────────────


class SourceType(str, Enum):
    ORIGINAL = "original"
    OPTIMIZED = "optimized"
    MANUAL = "manual"


class CodeArtifact(BaseModel):
    """One code container: the base artifact or an immutable versioned snapshot."""

    name: str
    version: str = ORIGINAL
    source_type: SourceType = SourceType.ORIGINAL
    code: str = ""
    created_at: str = ""
    optimized_task: str = ""
    previous_version: str = ""
    resource_version: str = ""

    @property
    def number(self) -> int:
        return version_number(self.version)


# ── Learning ─────────────────────────────────────────────────────────────────


class Opportunity(BaseModel):
    """A task the trace analyzer considers for optimization."""

    task_name: str
    execution_count: int = 0
    ready_for_learning: bool = False
    consistency_score: float = 0.0
    reason: str = ""


class TaskDefinition(BaseModel):
    name: str
    instructions: str = ""
    inputs: dict[str, str] = Field(default_factory=dict)
    outputs: dict[str, str] = Field(default_factory=dict)
    neural: bool = True


class Proposal(BaseModel):
    """Generated replacement code for one task. Consumed once by apply."""

    task_name: str
    current_code: str = ""
    proposed_code: str
    task_definition: TaskDefinition
    consistency_score: float = 0.0
    execution_count: int = 0
    method: str = "pattern_detection"  # pattern_detection, llm_synthesis
    violations: list[str] = Field(default_factory=list)
    explanation: str = ""

    @property
    def ready_to_deploy(self) -> bool:
        return not self.violations
