from __future__ import annotations

import json
from pathlib import Path

import pytest

from packforge.errors import EXIT_INTERNAL_ERROR, EXIT_USER_ERROR
from packforge.run import main

BUILDPACK_MODULE = '''
from packforge.errors import UserError
from packforge.models import BOMEntry, LayerFlag


def detect(ctx):
    if ctx.file_exists("runtime.txt"):
        return ctx.opt_in_file_found("runtime.txt")
    return ctx.opt_out_file_not_found("runtime.txt")


def build(ctx):
    version = ctx.read_file("runtime.txt").strip()
    if not version:
        raise UserError("runtime.txt is empty")
    layer = ctx.layer("runtime", LayerFlag.CACHE, LayerFlag.LAUNCH)
    ctx.set_metadata(layer, "version", version)
    ctx.add_bom_entry(BOMEntry("runtime", {"version": version}, launch=True))
'''


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    module_dir = tmp_path / "modules"
    module_dir.mkdir()
    (module_dir / "cli_sample_buildpack.py").write_text(BUILDPACK_MODULE)
    monkeypatch.syspath_prepend(str(module_dir))
    monkeypatch.delenv("FUNC_DEBUG", raising=False)
    monkeypatch.delenv("FUNC_DEVMODE", raising=False)
    (tmp_path / "order.yaml").write_text(
        "buildpacks:\n  - id: sample/runtime\n    entrypoint: cli_sample_buildpack\n"
    )
    (tmp_path / "app").mkdir()
    return tmp_path


def _args(workspace: Path, *command: str) -> list[str]:
    return [
        "--order",
        str(workspace / "order.yaml"),
        "--app-dir",
        str(workspace / "app"),
        "--layers-dir",
        str(workspace / "layers"),
        *command,
    ]


def test_list(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args(workspace, "list")) == 0
    assert capsys.readouterr().out.strip() == "sample/runtime\tcli_sample_buildpack"


def test_detect_opt_out(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args(workspace, "detect", "--buildpack", "sample/runtime")) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["status"] == "opted_out"


def test_run_writes_manifest(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (workspace / "app" / "runtime.txt").write_text("3.11\n")
    assert main(_args(workspace, "run")) == 0
    manifest = json.loads((workspace / "layers" / "image_manifest.json").read_text())
    assert manifest["bom"][0]["metadata"] == {"version": "3.11"}
    assert manifest["layers"][0]["name"] == "runtime"


def test_build_user_failure(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (workspace / "app" / "runtime.txt").write_text("\n")
    assert main(_args(workspace, "build", "--buildpack", "sample/runtime")) == EXIT_USER_ERROR
    assert "ERROR: runtime.txt is empty" in capsys.readouterr().err


def test_invalid_toggle(workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("FUNC_DEVMODE", "maybe")
    assert main(_args(workspace, "list")) == EXIT_USER_ERROR
    assert "parsing FUNC_DEVMODE" in capsys.readouterr().err


def test_unknown_buildpack(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_args(workspace, "build", "--buildpack", "missing")) == EXIT_INTERNAL_ERROR
