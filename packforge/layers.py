from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List

from .environment import EnvScope, LayerEnvironment
from .errors import InternalError
from .models import LayerFlag
from .utils import dump_json, empty_directory, ensure_directory

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Layer:
    """A named directory owned by one buildpack, plus its metadata slot."""

    name: str
    path: Path
    flags: FrozenSet[LayerFlag]
    metadata: Dict[str, str] = field(default_factory=dict)
    env: LayerEnvironment = field(default_factory=LayerEnvironment)

    @property
    def build_environment(self):
        return self.env.build

    @property
    def launch_environment(self):
        return self.env.launch

    @property
    def shared_environment(self):
        return self.env.shared

    @property
    def record_path(self) -> Path:
        return self.path.parent / f"{self.name}.json"

    def env_path(self, scope: EnvScope) -> Path:
        return self.path.parent / f"{self.name}.env.{scope.value}.json"


def _validate_name(name: str) -> None:
    if not name or name.startswith(".") or "/" in name or "\\" in name:
        raise InternalError(f"invalid layer name {name!r}")


def _read_record(path: Path) -> Dict[str, object]:
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise InternalError(f"reading layer metadata {path}: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("metadata", {}), dict):
        raise InternalError(f"layer metadata {path} is corrupt")
    return data


class LayerStore:
    """Layers of one buildpack for the duration of one build phase."""

    def __init__(self, layers_dir: str | Path, *, dev_mode: bool = False) -> None:
        self.layers_dir = ensure_directory(layers_dir)
        self.dev_mode = dev_mode
        self._layers: Dict[str, Layer] = {}

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers.values())

    def __contains__(self, name: str) -> bool:
        return name in self._layers

    def layer(self, name: str, *flags: LayerFlag) -> Layer:
        requested = frozenset(flags)
        existing = self._layers.get(name)
        if existing is not None:
            if requested and requested != existing.flags:
                raise InternalError(
                    f"layer {name!r} already created with flags {_flag_names(existing.flags)}, "
                    f"got {_flag_names(requested)}"
                )
            return existing

        _validate_name(name)
        path = self.layers_dir / name
        layer = Layer(name=name, path=path, flags=requested)
        if layer.record_path.exists():
            record = _read_record(layer.record_path)
            previous_flags = set(record.get("flags", []))
            if LayerFlag.CACHE.value in previous_flags:
                layer.metadata = {str(k): str(v) for k, v in record.get("metadata", {}).items()}
            else:
                logger.debug("Discarding non-cached layer %s from a previous build", name)
                if path.exists():
                    empty_directory(path)
        ensure_directory(path)
        self._layers[name] = layer
        self._write_record(layer)
        return layer

    def get_metadata(self, layer: Layer, key: str) -> str:
        return layer.metadata.get(key, "")

    def has_metadata(self, layer: Layer, key: str) -> bool:
        return key in layer.metadata

    def set_metadata(self, layer: Layer, key: str, value: str) -> None:
        layer.metadata[key] = str(value)
        self._write_record(layer)

    def clear_layer(self, layer: Layer) -> None:
        """Empty the layer directory and reset its stored metadata.

        The side file and flags remain, so the layer keeps its identity, but a
        crash before the next ``set_metadata`` reads back as a cache miss.
        """

        empty_directory(layer.path)
        layer.metadata.clear()
        self._write_record(layer)

    def is_launch(self, layer: Layer) -> bool:
        if LayerFlag.LAUNCH in layer.flags:
            return True
        return self.dev_mode and LayerFlag.LAUNCH_IF_DEV_MODE in layer.flags

    def launch_layers(self) -> List[Layer]:
        return [layer for layer in self._layers.values() if self.is_launch(layer)]

    def build_layers(self) -> List[Layer]:
        return [layer for layer in self._layers.values() if LayerFlag.BUILD in layer.flags]

    def remove_unflagged(self) -> None:
        """Delete layers created without flags; they never outlive a build phase."""

        for layer in list(self._layers.values()):
            if layer.flags:
                continue
            logger.debug("Removing layer %s without flags", layer.name)
            shutil.rmtree(layer.path, ignore_errors=True)
            layer.record_path.unlink(missing_ok=True)
            for scope in (EnvScope.BUILD, EnvScope.LAUNCH):
                layer.env_path(scope).unlink(missing_ok=True)
            del self._layers[layer.name]

    def finalize(self) -> List[Layer]:
        """Flush environment files, drop unflagged layers and return launch layers."""

        self.remove_unflagged()
        for layer in self._layers.values():
            for scope in (EnvScope.BUILD, EnvScope.LAUNCH):
                dump_json(layer.env_path(scope), layer.env.serialize(scope))
        return self.launch_layers()

    def _write_record(self, layer: Layer) -> None:
        dump_json(
            layer.record_path,
            {"flags": sorted(flag.value for flag in layer.flags), "metadata": dict(layer.metadata)},
        )


def _flag_names(flags: FrozenSet[LayerFlag]) -> List[str]:
    return sorted(flag.value for flag in flags)
