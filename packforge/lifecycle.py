from __future__ import annotations

import logging
import re
import sys
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO

from .config import BuildConfig
from .context import BuildOutput, Context
from .environment import EnvScope
from .errors import EXIT_SUCCESS, InternalError, classify, exit_code_for, format_failure
from .models import BuildPlan, DetectResult, Phase, PhaseReport, Process
from .utils import dump_json, ensure_directory

logger = logging.getLogger(__name__)

DetectFn = Callable[[Context], DetectResult]
BuildFn = Callable[[Context], None]


class State(Enum):
    START = auto()
    DETECTING = auto()
    OPTED_OUT = auto()
    OPTED_IN = auto()
    BUILDING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class Buildpack:
    """A detect/build pair for one ecosystem."""

    id: str
    detect: DetectFn
    build: BuildFn
    root: Optional[Path] = None


@dataclass
class BuildPaths:
    application_root: Path
    layers_root: Path
    report_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        self.application_root = Path(self.application_root)
        self.layers_root = Path(self.layers_root)
        if self.report_dir is not None:
            self.report_dir = Path(self.report_dir)

    def layers_dir(self, buildpack_id: str) -> Path:
        return ensure_directory(self.layers_root / _safe_id(buildpack_id))

    def report_path(self, buildpack_id: str, phase: Phase) -> Optional[Path]:
        if self.report_dir is None:
            return None
        return self.report_dir / f"{_safe_id(buildpack_id)}.{phase.value}.json"

    @property
    def manifest_path(self) -> Path:
        return self.layers_root / "image_manifest.json"


def _safe_id(buildpack_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", buildpack_id)


class BuildpackDriver:
    """Runs one detection call and at most one build call for a buildpack."""

    def __init__(
        self,
        buildpack: Buildpack,
        paths: BuildPaths,
        config: BuildConfig,
        *,
        stream: Optional[TextIO] = None,
    ) -> None:
        self.buildpack = buildpack
        self.paths = paths
        self.config = config
        self.stream = stream if stream is not None else sys.stderr
        self.state = State.START
        self.detect_result: Optional[DetectResult] = None
        self.output: Optional[BuildOutput] = None
        self.reports: List[PhaseReport] = []

    @property
    def exit_code(self) -> int:
        if not self.reports:
            return EXIT_SUCCESS
        return self.reports[-1].exit_code

    def run(self) -> PhaseReport:
        report = self.detect()
        if self.state is State.OPTED_IN:
            report = self.build()
        return report

    def detect(self) -> PhaseReport:
        if self.state is not State.START:
            raise RuntimeError(f"detect cannot run from state {self.state.name}")
        self.state = State.DETECTING
        ctx = Context(
            buildpack_id=self.buildpack.id,
            phase=Phase.DETECT,
            application_root=self.paths.application_root,
            config=self.config,
            buildpack_root=self.buildpack.root,
        )
        start = time.perf_counter()
        try:
            result = self.buildpack.detect(ctx)
            if not isinstance(result, DetectResult):
                raise InternalError(f"detect returned {type(result).__name__}, expected DetectResult")
        except Exception as exc:
            return self._fail(Phase.DETECT, ctx, start, exc)

        self.detect_result = result
        self.state = State.OPTED_IN if result.opted_in else State.OPTED_OUT
        details = self._timing(ctx, start)
        details.update(result.to_dict())
        logger.info(
            "%s %s: %s",
            self.buildpack.id,
            "opted in" if result.opted_in else "opted out",
            result.reason,
        )
        status = "opted_in" if result.opted_in else "opted_out"
        return self._record(PhaseReport(self.buildpack.id, Phase.DETECT.value, status, EXIT_SUCCESS, details))

    def build(self) -> PhaseReport:
        if self.state is not State.OPTED_IN:
            raise RuntimeError(f"build cannot run from state {self.state.name}")
        self.state = State.BUILDING
        start = time.perf_counter()
        ctx: Optional[Context] = None
        try:
            ctx = Context(
                buildpack_id=self.buildpack.id,
                phase=Phase.BUILD,
                application_root=self.paths.application_root,
                config=self.config,
                layers_dir=self.paths.layers_dir(self.buildpack.id),
                buildpack_root=self.buildpack.root,
            )
            self.buildpack.build(ctx)
            self.output = ctx.finalize()
        except Exception as exc:
            if ctx is not None:
                ctx.layer_store.remove_unflagged()
            return self._fail(Phase.BUILD, ctx, start, exc)

        self.state = State.SUCCEEDED
        details = self._timing(ctx, start)
        details["launch_layers"] = [layer.name for layer in self.output.launch_layers]
        details["bom_entries"] = len(self.output.bom)
        logger.info("%s build succeeded in %.3fs", self.buildpack.id, details["duration_s"])
        return self._record(PhaseReport(self.buildpack.id, Phase.BUILD.value, "succeeded", EXIT_SUCCESS, details))

    def _timing(self, ctx: Optional[Context], start: float) -> Dict[str, Any]:
        duration = time.perf_counter() - start
        details: Dict[str, Any] = {"duration_s": round(duration, 3)}
        if ctx is not None:
            stats = ctx.stats.to_dict()
            # Everything not spent in user-attributed commands is platform time.
            stats["platform_s"] = round(max(duration - ctx.stats.user_s, 0.0), 3)
            details.update(stats)
        return details

    def _fail(self, phase: Phase, ctx: Optional[Context], start: float, exc: Exception) -> PhaseReport:
        self.state = State.FAILED
        status = classify(exc)
        message = format_failure(exc)
        self.stream.write(message + "\n")
        self.stream.flush()
        logger.debug("%s %s failed", self.buildpack.id, phase.value, exc_info=exc)
        details = self._timing(ctx, start)
        details["classification"] = status.value
        report = PhaseReport(
            self.buildpack.id,
            phase.value,
            "failed",
            exit_code_for(status),
            details,
            message=message,
        )
        return self._record(report)

    def _record(self, report: PhaseReport) -> PhaseReport:
        self.reports.append(report)
        path = self.paths.report_path(self.buildpack.id, Phase(report.phase))
        if path is not None:
            dump_json(path, report.to_dict())
        return report


@dataclass
class LifecycleResult:
    exit_code: int
    reports: List[PhaseReport] = field(default_factory=list)
    manifest: Optional[Dict[str, Any]] = None


class Lifecycle:
    """Runs buildpacks strictly in the given order and assembles the image description."""

    def __init__(
        self,
        buildpacks: Sequence[Buildpack],
        paths: BuildPaths,
        config: BuildConfig,
        *,
        stream: Optional[TextIO] = None,
    ) -> None:
        self.buildpacks = list(buildpacks)
        self.paths = paths
        self.config = config
        self.stream = stream

    def run(self) -> LifecycleResult:
        config = self.config
        reports: List[PhaseReport] = []
        launch_env: Dict[str, str] = {}
        launch_layers: List[Dict[str, str]] = []
        bom: List[Dict[str, Any]] = []
        processes: Dict[str, Process] = {}
        labels: Dict[str, str] = dict(self.config.labels)
        plans: List[Dict[str, Any]] = []
        participants: List[str] = []

        for buildpack in self.buildpacks:
            driver = BuildpackDriver(buildpack, self.paths, config, stream=self.stream)
            driver.run()
            reports.extend(driver.reports)
            if driver.state is State.FAILED:
                return LifecycleResult(exit_code=driver.exit_code, reports=reports)
            if driver.state is State.OPTED_OUT:
                continue

            assert driver.detect_result is not None and driver.output is not None
            participants.append(buildpack.id)
            plans.extend(_plan_dicts(buildpack.id, driver.detect_result.build_plans))
            output = driver.output
            for layer in output.build_layers:
                config = config.with_env(layer.env.resolve(EnvScope.BUILD, config.env))
            for layer in output.launch_layers:
                launch_env = layer.env.resolve(EnvScope.LAUNCH, launch_env)
                launch_layers.append({"buildpack": buildpack.id, "name": layer.name, "path": str(layer.path)})
            bom.extend(entry.to_dict() for entry in output.bom)
            for process in output.processes:
                processes[process.type] = process
            labels.update(output.labels)

        manifest: Dict[str, Any] = {
            "buildpacks": participants,
            "layers": launch_layers,
            "environment": launch_env,
            "processes": [process.to_dict() for process in processes.values()],
            "labels": labels,
            "bom": bom,
            "build_plans": plans,
        }
        dump_json(self.paths.manifest_path, manifest)
        return LifecycleResult(exit_code=EXIT_SUCCESS, reports=reports, manifest=manifest)


def _plan_dicts(buildpack_id: str, build_plans: Sequence[BuildPlan]) -> List[Dict[str, Any]]:
    return [dict(plan.to_dict(), buildpack=buildpack_id) for plan in build_plans]
