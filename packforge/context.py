"""The execution context handed to every buildpack phase function.

A context composes the layer store, the per-layer environment model, the
bill-of-materials ledger and a set of file/process helpers. Helpers either
return a value the caller inspects (``exec_with_result``) or raise a
classified :class:`~packforge.errors.BuildpackError` that the driver turns
into an exit code.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import requests

from .bom import BOMLedger
from .config import BuildConfig
from .errors import InternalError, UserError
from .layers import Layer, LayerStore
from .models import BOMEntry, BuildPlan, DetectResult, ExecResult, LayerFlag, Phase, Process
from .utils import dump_json, ensure_directory, run_command, tail_lines

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_S = 30


class Attribution(Enum):
    """Who a subprocess is attributed to, for timing and failure classification."""

    PLATFORM = "platform"
    USER = "user"
    # Time counts as user time but a failure is still the platform's.
    USER_TIMING = "user-timing"


@dataclass
class PhaseStats:
    user_s: float = 0.0
    platform_s: float = 0.0
    commands: int = 0
    cache_hits: List[str] = field(default_factory=list)
    cache_misses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_s": round(self.user_s, 3),
            "platform_s": round(self.platform_s, 3),
            "commands": self.commands,
            "cache_hits": list(self.cache_hits),
            "cache_misses": list(self.cache_misses),
        }


@dataclass
class BuildOutput:
    """What a successful build phase contributes to the assembled image."""

    launch_layers: List[Layer]
    build_layers: List[Layer]
    bom: List[BOMEntry]
    processes: List[Process]
    labels: Dict[str, str]


def opt_in(reason: str, build_plans: Sequence[BuildPlan] = ()) -> DetectResult:
    return DetectResult(opted_in=True, reason=reason, build_plans=list(build_plans))


def opt_out(reason: str) -> DetectResult:
    return DetectResult(opted_in=False, reason=reason)


def opt_in_file_found(path: str, build_plans: Sequence[BuildPlan] = ()) -> DetectResult:
    return opt_in(f"found {path}", build_plans)


def opt_in_env_set(name: str, build_plans: Sequence[BuildPlan] = ()) -> DetectResult:
    return opt_in(f"{name} set", build_plans)


def opt_out_file_not_found(path: str) -> DetectResult:
    return opt_out(f"{path} not found")


def opt_out_env_not_set(name: str) -> DetectResult:
    return opt_out(f"{name} not set")


class Context:
    opt_in = staticmethod(opt_in)
    opt_out = staticmethod(opt_out)
    opt_in_file_found = staticmethod(opt_in_file_found)
    opt_in_env_set = staticmethod(opt_in_env_set)
    opt_out_file_not_found = staticmethod(opt_out_file_not_found)
    opt_out_env_not_set = staticmethod(opt_out_env_not_set)

    def __init__(
        self,
        *,
        buildpack_id: str,
        phase: Phase,
        application_root: str | Path,
        config: BuildConfig,
        layers_dir: str | Path | None = None,
        buildpack_root: str | Path | None = None,
    ) -> None:
        self.buildpack_id = buildpack_id
        self.phase = phase
        self.application_root = Path(application_root)
        self.config = config
        self.buildpack_root = Path(buildpack_root) if buildpack_root else None
        self.layers_dir = Path(layers_dir) if layers_dir else None
        self.stats = PhaseStats()
        self.bom = BOMLedger()
        self._processes: Dict[str, Process] = {}
        self._labels: Dict[str, str] = {}
        self._store: Optional[LayerStore] = None
        if phase is Phase.BUILD:
            if self.layers_dir is None:
                raise InternalError("a layers directory is required for the build phase")
            self._store = LayerStore(self.layers_dir, dev_mode=config.dev_mode)

    @property
    def debug(self) -> bool:
        return self.config.debug

    @property
    def dev_mode(self) -> bool:
        return self.config.dev_mode

    def getenv(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.config.get(name, default)

    # Logging

    def logf(self, fmt: str, *args: object) -> None:
        logger.info("[%s] " + fmt, self.buildpack_id, *args)

    def warnf(self, fmt: str, *args: object) -> None:
        logger.warning("[%s] " + fmt, self.buildpack_id, *args)

    def debugf(self, fmt: str, *args: object) -> None:
        if self.debug:
            logger.debug("[%s] " + fmt, self.buildpack_id, *args)

    # Layers

    @property
    def layer_store(self) -> LayerStore:
        if self._store is None:
            raise InternalError(f"layers are not available during the {self.phase.value} phase")
        return self._store

    def layer(self, name: str, *flags: LayerFlag) -> Layer:
        return self.layer_store.layer(name, *flags)

    def get_metadata(self, layer: Layer, key: str) -> str:
        return self.layer_store.get_metadata(layer, key)

    def has_metadata(self, layer: Layer, key: str) -> bool:
        return self.layer_store.has_metadata(layer, key)

    def set_metadata(self, layer: Layer, key: str, value: str) -> None:
        self.layer_store.set_metadata(layer, key, value)

    def clear_layer(self, layer: Layer) -> None:
        self.layer_store.clear_layer(layer)

    def cache_hit(self, name: str) -> None:
        self.stats.cache_hits.append(name)
        self.logf("Cache hit for layer %s", name)

    def cache_miss(self, name: str) -> None:
        self.stats.cache_misses.append(name)
        self.logf("Cache miss for layer %s", name)

    # Image contributions

    def add_bom_entry(self, entry: BOMEntry) -> None:
        self.bom.add(entry)

    def add_process(self, type: str, command: Sequence[str], *, default: bool = False, direct: bool = True) -> None:
        if isinstance(command, str):
            raise InternalError("process command must be an argument sequence")
        self._processes[type] = Process(type=type, command=list(command), default=default, direct=direct)

    def add_web_process(self, command: Sequence[str], direct: bool = True) -> None:
        self.add_process("web", command, default=True, direct=direct)

    def add_label(self, key: str, value: str) -> None:
        self._labels[key] = value

    # Processes

    def exec_with_result(
        self,
        argv: Sequence[str],
        *,
        attribution: Attribution = Attribution.PLATFORM,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecResult:
        """Run ``argv`` and return its result without judging the exit status."""

        if isinstance(argv, (str, bytes)):
            raise InternalError("commands must be given as an argument sequence, not a string")
        process_env = dict(self.config.env)
        if env:
            process_env.update(env)
        workdir = self._resolve(cwd) if cwd is not None else self.application_root
        self.debugf("Running %s", list(argv))
        try:
            result = run_command(argv, env=process_env, cwd=workdir)
        except OSError as exc:
            raise InternalError(f"starting {list(argv)!r}: {exc}") from exc
        self.stats.commands += 1
        if attribution is Attribution.PLATFORM:
            self.stats.platform_s += result.duration_s
        else:
            self.stats.user_s += result.duration_s
        return result

    def exec(
        self,
        argv: Sequence[str],
        *,
        attribution: Attribution = Attribution.PLATFORM,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        stdout_tail: int = 0,
        stderr_tail: int = 0,
    ) -> ExecResult:
        """Run ``argv`` and raise a classified error when it exits non-zero."""

        result = self.exec_with_result(argv, attribution=attribution, cwd=cwd, env=env)
        if result.ok:
            return result

        message = f"{result.argv!r} failed with exit code {result.returncode}"
        tails = [
            ("stdout", tail_lines(result.stdout, stdout_tail)),
            ("stderr", tail_lines(result.stderr, stderr_tail)),
        ]
        for stream, text in tails:
            if text:
                message += f"\n{stream}:\n{text}"
        if attribution is Attribution.USER:
            raise UserError(message)
        raise InternalError(message)

    def http_status(self, url: str, *, timeout: float = HTTP_TIMEOUT_S) -> int:
        try:
            response = requests.head(url, allow_redirects=True, timeout=timeout)
        except requests.RequestException as exc:
            raise InternalError(f"probing {url}: {exc}") from exc
        return response.status_code

    # Files

    def _resolve(self, path: str | Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.application_root / path

    def file_exists(self, *parts: str | Path) -> bool:
        return self._resolve(Path(*parts)).exists()

    def is_dir(self, *parts: str | Path) -> bool:
        return self._resolve(Path(*parts)).is_dir()

    def glob(self, pattern: str) -> List[str]:
        return sorted(str(p.relative_to(self.application_root)) for p in self.application_root.glob(pattern))

    def read_file(self, path: str | Path) -> str:
        try:
            return self._resolve(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise InternalError(f"reading {path}: {exc}") from exc

    def write_file(self, path: str | Path, content: str | bytes) -> Path:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise InternalError(f"writing {path}: {exc}") from exc
        return target

    def mkdir_all(self, path: str | Path) -> Path:
        try:
            return ensure_directory(self._resolve(path))
        except OSError as exc:
            raise InternalError(f"creating {path}: {exc}") from exc

    def remove_all(self, path: str | Path) -> None:
        target = self._resolve(path)
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
        except OSError as exc:
            raise InternalError(f"removing {path}: {exc}") from exc

    @contextmanager
    def temp_dir(self, prefix: str = "packforge-") -> Iterator[Path]:
        with tempfile.TemporaryDirectory(prefix=prefix) as name:
            yield Path(name)

    # Phase completion

    def finalize(self) -> BuildOutput:
        """Persist environment files, the BOM and launch metadata for this build."""

        store = self.layer_store
        launch_layers = store.finalize()
        output = BuildOutput(
            launch_layers=launch_layers,
            build_layers=store.build_layers(),
            bom=self.bom.entries(),
            processes=list(self._processes.values()),
            labels=dict(self._labels),
        )
        dump_json(store.layers_dir / "bom.json", self.bom.to_list())
        dump_json(
            store.layers_dir / "launch.json",
            {
                "layers": [layer.name for layer in launch_layers],
                "processes": [process.to_dict() for process in output.processes],
                "labels": output.labels,
            },
        )
        return output
