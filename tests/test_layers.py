from __future__ import annotations

import json
from pathlib import Path

import pytest

from packforge.errors import InternalError
from packforge.layers import LayerStore
from packforge.models import LayerFlag


def test_layer_accessor_is_idempotent(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    first = store.layer("sdk", LayerFlag.BUILD, LayerFlag.CACHE)
    second = store.layer("sdk", LayerFlag.CACHE, LayerFlag.BUILD)
    refetched = store.layer("sdk")
    assert first is second is refetched
    assert first.path == tmp_path / "sdk"
    assert first.flags == frozenset({LayerFlag.BUILD, LayerFlag.CACHE})
    assert first.path.is_dir()


def test_conflicting_flags_fail_fast(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    store.layer("sdk", LayerFlag.BUILD)
    with pytest.raises(InternalError, match="already created"):
        store.layer("sdk", LayerFlag.LAUNCH)


@pytest.mark.parametrize("name", ["", ".hidden", "a/b", "..", "a\\b"])
def test_invalid_layer_names(tmp_path: Path, name: str) -> None:
    with pytest.raises(InternalError):
        LayerStore(tmp_path).layer(name, LayerFlag.CACHE)


def test_missing_metadata_reads_as_empty(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    layer = store.layer("sdk", LayerFlag.CACHE)
    assert store.get_metadata(layer, "version") == ""


def test_metadata_round_trip_is_persisted_immediately(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    layer = store.layer("sdk", LayerFlag.CACHE)
    store.set_metadata(layer, "version", "f1")
    assert store.get_metadata(layer, "version") == "f1"
    record = json.loads((tmp_path / "sdk.json").read_text())
    assert record == {"flags": ["cache"], "metadata": {"version": "f1"}}


def test_clear_layer_empties_directory_and_resets_metadata(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    layer = store.layer("sdk", LayerFlag.CACHE)
    store.set_metadata(layer, "version", "f1")
    (layer.path / "bin").mkdir()
    (layer.path / "bin" / "tool").write_text("x")

    store.clear_layer(layer)

    assert layer.path.is_dir()
    assert list(layer.path.iterdir()) == []
    assert store.get_metadata(layer, "version") == ""
    assert (tmp_path / "sdk.json").exists()
    assert LayerStore(tmp_path).layer("sdk", LayerFlag.CACHE).metadata == {}


def test_cache_layer_is_reattached_with_contents(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    layer = store.layer("sdk", LayerFlag.CACHE, LayerFlag.LAUNCH)
    store.set_metadata(layer, "version", "v1")
    (layer.path / "artifact").write_text("payload")

    again = LayerStore(tmp_path).layer("sdk", LayerFlag.CACHE, LayerFlag.LAUNCH)
    assert again.path == layer.path
    assert again.metadata == {"version": "v1"}
    assert (again.path / "artifact").read_text() == "payload"


def test_non_cache_layer_starts_fresh_each_build(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    layer = store.layer("deps", LayerFlag.BUILD, LayerFlag.LAUNCH)
    store.set_metadata(layer, "version", "v1")
    (layer.path / "stale").write_text("old")

    again = LayerStore(tmp_path).layer("deps", LayerFlag.BUILD, LayerFlag.LAUNCH)
    assert again.metadata == {}
    assert not (again.path / "stale").exists()


def test_corrupt_metadata_is_an_internal_error(tmp_path: Path) -> None:
    (tmp_path / "sdk.json").write_text("{not json")
    with pytest.raises(InternalError, match="sdk.json"):
        LayerStore(tmp_path).layer("sdk", LayerFlag.CACHE)


def test_finalize_removes_unflagged_layers_and_writes_env(tmp_path: Path) -> None:
    store = LayerStore(tmp_path)
    scratch = store.layer("scratch")
    (scratch.path / "tmp").write_text("x")
    runtime = store.layer("runtime", LayerFlag.LAUNCH)
    runtime.launch_environment.default("RUNTIME_ROOT", str(runtime.path))
    runtime.shared_environment.prepend("PATH", "/rt/bin", ":")

    launch = store.finalize()

    assert [layer.name for layer in launch] == ["runtime"]
    assert not scratch.path.exists()
    assert not (tmp_path / "scratch.json").exists()
    build_env = json.loads((tmp_path / "runtime.env.build.json").read_text())
    launch_env = json.loads((tmp_path / "runtime.env.launch.json").read_text())
    assert build_env == [{"delim": ":", "name": "PATH", "value": "/rt/bin", "verb": "prepend"}]
    assert [item["name"] for item in launch_env] == ["RUNTIME_ROOT", "PATH"]


def test_launch_if_dev_mode(tmp_path: Path) -> None:
    regular = LayerStore(tmp_path / "a")
    regular.layer("m2", LayerFlag.CACHE, LayerFlag.LAUNCH_IF_DEV_MODE)
    assert regular.finalize() == []

    dev = LayerStore(tmp_path / "b", dev_mode=True)
    layer = dev.layer("m2", LayerFlag.CACHE, LayerFlag.LAUNCH_IF_DEV_MODE)
    assert dev.finalize() == [layer]
