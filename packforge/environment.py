"""Scoped environment-variable mutations attached to a layer.

Mutations live in one explicit sequence per layer. Build and launch outputs are
views over that sequence, with shared mutations materialised into both at the
position they were recorded, so replaying the same calls always yields the
same serialised result.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional


class EnvScope(Enum):
    BUILD = "build"
    LAUNCH = "launch"
    SHARED = "shared"


class EnvVerb(Enum):
    DEFAULT = "default"
    OVERRIDE = "override"
    APPEND = "append"
    PREPEND = "prepend"


@dataclass(frozen=True)
class EnvMutation:
    scope: EnvScope
    name: str
    verb: EnvVerb
    value: str
    delim: str = os.pathsep

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "verb": self.verb.value, "value": self.value}
        if self.verb in (EnvVerb.APPEND, EnvVerb.PREPEND):
            payload["delim"] = self.delim
        return payload


def apply_mutations(base: Mapping[str, str], mutations: Iterable[EnvMutation]) -> Dict[str, str]:
    """Replay ``mutations`` in order on top of ``base`` and return the result."""

    result = dict(base)
    for mutation in mutations:
        current = result.get(mutation.name)
        if mutation.verb is EnvVerb.OVERRIDE:
            result[mutation.name] = mutation.value
        elif mutation.verb is EnvVerb.DEFAULT:
            if current is None:
                result[mutation.name] = mutation.value
        elif mutation.verb is EnvVerb.APPEND:
            result[mutation.name] = f"{current}{mutation.delim}{mutation.value}" if current else mutation.value
        elif mutation.verb is EnvVerb.PREPEND:
            result[mutation.name] = f"{mutation.value}{mutation.delim}{current}" if current else mutation.value
    return result


class ScopedEnvironment:
    """Mutation entry points for one scope of a layer environment."""

    def __init__(self, owner: "LayerEnvironment", scope: EnvScope) -> None:
        self._owner = owner
        self.scope = scope

    def default(self, name: str, value: str) -> None:
        self._owner.record(EnvMutation(self.scope, name, EnvVerb.DEFAULT, str(value)))

    def override(self, name: str, value: str) -> None:
        self._owner.record(EnvMutation(self.scope, name, EnvVerb.OVERRIDE, str(value)))

    def append(self, name: str, value: str, delim: str = os.pathsep) -> None:
        self._owner.record(EnvMutation(self.scope, name, EnvVerb.APPEND, str(value), delim))

    def prepend(self, name: str, value: str, delim: str = os.pathsep) -> None:
        self._owner.record(EnvMutation(self.scope, name, EnvVerb.PREPEND, str(value), delim))


class LayerEnvironment:
    def __init__(self) -> None:
        self._mutations: List[EnvMutation] = []
        self.build = ScopedEnvironment(self, EnvScope.BUILD)
        self.launch = ScopedEnvironment(self, EnvScope.LAUNCH)
        self.shared = ScopedEnvironment(self, EnvScope.SHARED)

    def record(self, mutation: EnvMutation) -> None:
        if not mutation.name:
            raise ValueError("environment variable name must not be empty")
        self._mutations.append(mutation)

    def __len__(self) -> int:
        return len(self._mutations)

    def mutations_for(self, scope: EnvScope) -> List[EnvMutation]:
        if scope is EnvScope.SHARED:
            return [m for m in self._mutations if m.scope is EnvScope.SHARED]
        return [m for m in self._mutations if m.scope in (scope, EnvScope.SHARED)]

    def resolve(self, scope: EnvScope, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        return apply_mutations(base or {}, self.mutations_for(scope))

    def serialize(self, scope: EnvScope) -> List[Dict[str, Any]]:
        return [mutation.to_dict() for mutation in self.mutations_for(scope)]

