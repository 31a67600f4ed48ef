from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .errors import UserError

try:  # pragma: no cover - tomllib is stdlib from 3.11 onwards
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore

DEBUG_MODE = "FUNC_DEBUG"
DEV_MODE = "FUNC_DEVMODE"
LABEL_PREFIX = "FUNC_LABEL_"
PROJECT_DESCRIPTOR = "project.toml"

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(value: str) -> bool:
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid syntax: {value!r}")


def is_present_and_true(env: Mapping[str, str], name: str) -> bool:
    if name not in env:
        return False
    try:
        return parse_bool(env[name])
    except ValueError as exc:
        raise UserError(f"parsing {name}: {exc}") from exc


def load_project_env(application_root: Path) -> Dict[str, str]:
    """Read ``[[build.env]]`` entries from the project descriptor, if any."""

    descriptor = application_root / PROJECT_DESCRIPTOR
    if not descriptor.exists():
        return {}
    try:
        data = tomllib.loads(descriptor.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise UserError(f"parsing {PROJECT_DESCRIPTOR}: {exc}") from exc

    entries = data.get("build", {}).get("env", [])
    if not isinstance(entries, list):
        raise UserError(f"{PROJECT_DESCRIPTOR}: build.env must be an array of tables")
    env: Dict[str, str] = {}
    for entry in entries:
        if not isinstance(entry, dict) or "name" not in entry:
            raise UserError(f"{PROJECT_DESCRIPTOR}: every build.env entry needs a name")
        env[str(entry["name"])] = str(entry.get("value", ""))
    return env


def labels_from_env(env: Mapping[str, str], prefix: str = LABEL_PREFIX) -> Dict[str, str]:
    """Turn ``<prefix>SOME_KEY=value`` variables into ``some-key=value`` image labels."""

    labels: Dict[str, str] = {}
    for name in sorted(env):
        if not name.startswith(prefix) or len(name) == len(prefix):
            continue
        labels[name[len(prefix):].lower().replace("_", "-")] = env[name]
    return labels


@dataclass(frozen=True)
class BuildConfig:
    """Explicit configuration threaded through every execution context."""

    env: Mapping[str, str] = field(default_factory=dict)
    debug: bool = False
    dev_mode: bool = False
    labels: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    @classmethod
    def from_environ(
        cls,
        environ: Mapping[str, str],
        application_root: Optional[str | Path] = None,
        *,
        label_prefix: str = LABEL_PREFIX,
    ) -> "BuildConfig":
        env: Dict[str, str] = {}
        if application_root is not None:
            env.update(load_project_env(Path(application_root)))
        env.update(environ)
        return cls.from_env(env, label_prefix=label_prefix)

    @classmethod
    def from_env(cls, env: Mapping[str, str], *, label_prefix: str = LABEL_PREFIX) -> "BuildConfig":
        return cls(
            env=env,
            debug=is_present_and_true(env, DEBUG_MODE),
            dev_mode=is_present_and_true(env, DEV_MODE),
            labels=labels_from_env(env, label_prefix),
        )

    def with_env(self, overlay: Mapping[str, str]) -> "BuildConfig":
        merged = dict(self.env)
        merged.update(overlay)
        return BuildConfig(env=merged, debug=self.debug, dev_mode=self.dev_mode, labels=self.labels)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.env.get(name, default)
