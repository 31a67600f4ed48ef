from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class Phase(Enum):
    DETECT = "detect"
    BUILD = "build"


class LayerFlag(Enum):
    BUILD = "build"
    CACHE = "cache"
    LAUNCH = "launch"
    LAUNCH_IF_DEV_MODE = "launch-if-dev-mode"


@dataclass(frozen=True)
class BOMEntry:
    """A declared contribution to the final build or image."""

    name: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    build: bool = False
    launch: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "metadata": dict(self.metadata),
            "build": self.build,
            "launch": self.launch,
        }


@dataclass(frozen=True)
class PlanEntry:
    name: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


@dataclass(frozen=True)
class BuildPlan:
    """Provision/requirement pairs handed to the external plan resolver."""

    provides: List[PlanEntry] = field(default_factory=list)
    requires: List[PlanEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provides": [entry.to_dict() for entry in self.provides],
            "requires": [entry.to_dict() for entry in self.requires],
        }


@dataclass(frozen=True)
class DetectResult:
    opted_in: bool
    reason: str
    build_plans: List[BuildPlan] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "opted_in": self.opted_in,
            "reason": self.reason,
            "build_plans": [plan.to_dict() for plan in self.build_plans],
        }


@dataclass
class ExecResult:
    """Captured outcome of one subprocess invocation."""

    argv: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class Process:
    type: str
    command: List[str]
    default: bool = False
    direct: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "command": list(self.command),
            "default": self.default,
            "direct": self.direct,
        }


@dataclass
class PhaseReport:
    """Summary emitted by the driver for one phase of one buildpack."""

    buildpack: str
    phase: str
    status: str
    exit_code: int
    details: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "buildpack": self.buildpack,
            "phase": self.phase,
            "status": self.status,
            "exit_code": self.exit_code,
            "details": self.details,
        }
        if self.message is not None:
            payload["message"] = self.message
        return payload
