from __future__ import annotations

import importlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .lifecycle import Buildpack


class CatalogError(RuntimeError):
    """Raised when the buildpack order file cannot be parsed or resolved."""


@dataclass(frozen=True)
class BuildpackEntry:
    id: str
    entrypoint: str
    root: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildpackEntry":
        try:
            return cls(id=str(data["id"]), entrypoint=str(data["entrypoint"]), root=data.get("root"))
        except (KeyError, TypeError) as exc:
            raise CatalogError(f"Buildpack entries need 'id' and 'entrypoint': {data!r}") from exc

    def load(self) -> Buildpack:
        module_name, _, attr = self.entrypoint.partition(":")
        try:
            target: Any = importlib.import_module(module_name)
        except ImportError as exc:
            raise CatalogError(f"Cannot import buildpack {self.id} from {module_name}: {exc}") from exc
        if attr:
            try:
                target = getattr(target, attr)
            except AttributeError as exc:
                raise CatalogError(f"{module_name} has no attribute {attr!r}") from exc

        detect = getattr(target, "detect", None)
        build = getattr(target, "build", None)
        if not callable(detect) or not callable(build):
            raise CatalogError(f"Buildpack {self.id} ({self.entrypoint}) must expose detect and build")
        return Buildpack(id=self.id, detect=detect, build=build, root=Path(self.root) if self.root else None)


@dataclass
class BuildpackCatalog:
    """Loader for the ordered buildpack list."""

    path: Path
    _cache: Optional[List[BuildpackEntry]] = None

    @classmethod
    def from_file(cls, path: str | Path) -> "BuildpackCatalog":
        return cls(path=Path(path))

    def _load(self) -> List[BuildpackEntry]:
        if self._cache is not None:
            return self._cache

        try:
            raw_text = self.path.read_text()
        except OSError as exc:
            raise CatalogError(f"Cannot read order file {self.path}: {exc}") from exc
        try:
            raw_data = json.loads(raw_text)
        except json.JSONDecodeError:
            try:
                raw_data = yaml.safe_load(raw_text)
            except yaml.YAMLError as exc:
                raise CatalogError(f"Invalid order file {self.path}: {exc}") from exc

        if not isinstance(raw_data, dict) or not isinstance(raw_data.get("buildpacks"), list):
            raise CatalogError("Order file must contain a top-level 'buildpacks' list")

        entries = [BuildpackEntry.from_dict(entry) for entry in raw_data["buildpacks"]]
        seen = set()
        for entry in entries:
            if entry.id in seen:
                raise CatalogError(f"Duplicate buildpack id: {entry.id}")
            seen.add(entry.id)
        self._cache = entries
        return entries

    def entries(self) -> List[BuildpackEntry]:
        return list(self._load())

    def get(self, buildpack_id: str) -> BuildpackEntry:
        for entry in self._load():
            if entry.id == buildpack_id:
                return entry
        raise CatalogError(f"Unknown buildpack id: {buildpack_id}")

    def load_all(self) -> List[Buildpack]:
        return [entry.load() for entry in self._load()]

    def __len__(self) -> int:
        return len(self._load())

    def __contains__(self, buildpack_id: str) -> bool:
        return any(entry.id == buildpack_id for entry in self._load())
