from __future__ import annotations

from pathlib import Path

import pytest

from packforge.catalog import BuildpackCatalog, CatalogError

BUILDPACK_MODULE = '''
from packforge.models import LayerFlag


def detect(ctx):
    if ctx.file_exists("requirements.txt"):
        return ctx.opt_in_file_found("requirements.txt")
    return ctx.opt_out_file_not_found("requirements.txt")


def build(ctx):
    layer = ctx.layer("deps", LayerFlag.CACHE, LayerFlag.LAUNCH)
    ctx.set_metadata(layer, "version", "1")


class Namespaced:
    detect = staticmethod(detect)
    build = staticmethod(build)
'''


@pytest.fixture
def buildpack_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    module_dir = tmp_path / "modules"
    module_dir.mkdir()
    (module_dir / "catalog_sample_buildpack.py").write_text(BUILDPACK_MODULE)
    monkeypatch.syspath_prepend(str(module_dir))
    return "catalog_sample_buildpack"


def test_catalog_loads_json_yaml_subset(tmp_path: Path) -> None:
    catalog_path = tmp_path / "order.yaml"
    catalog_path.write_text(
        """
{
  \"buildpacks\": [
    {\"id\": \"python/pip\", \"entrypoint\": \"demo.pip\"}
  ]
}
"""
    )
    catalog = BuildpackCatalog.from_file(catalog_path)
    entry = catalog.get("python/pip")
    assert entry.id == "python/pip"
    assert entry.entrypoint == "demo.pip"
    assert "python/pip" in catalog
    assert len(catalog) == 1


def test_catalog_preserves_yaml_order(tmp_path: Path) -> None:
    catalog_path = tmp_path / "order.yaml"
    catalog_path.write_text(
        """
buildpacks:
  - id: dotnet/runtime
    entrypoint: demo.dotnet
  - id: java/maven
    entrypoint: demo.maven
  - id: python/pip
    entrypoint: demo.pip
"""
    )
    catalog = BuildpackCatalog.from_file(catalog_path)
    assert [entry.id for entry in catalog.entries()] == ["dotnet/runtime", "java/maven", "python/pip"]


@pytest.mark.parametrize(
    "content",
    [
        "repos: []\n",
        "buildpacks:\n  - id: only-id\n",
        "buildpacks:\n  - {id: a, entrypoint: x}\n  - {id: a, entrypoint: y}\n",
    ],
)
def test_invalid_catalogs(tmp_path: Path, content: str) -> None:
    catalog_path = tmp_path / "order.yaml"
    catalog_path.write_text(content)
    with pytest.raises(CatalogError):
        BuildpackCatalog.from_file(catalog_path).entries()


def test_unknown_id(tmp_path: Path) -> None:
    catalog_path = tmp_path / "order.yaml"
    catalog_path.write_text("buildpacks: []\n")
    with pytest.raises(CatalogError, match="Unknown buildpack id"):
        BuildpackCatalog.from_file(catalog_path).get("missing")


def test_entrypoints_resolve_to_buildpacks(tmp_path: Path, buildpack_module: str) -> None:
    catalog_path = tmp_path / "order.yaml"
    catalog_path.write_text(
        f"""
buildpacks:
  - id: module-level
    entrypoint: {buildpack_module}
  - id: namespaced
    entrypoint: {buildpack_module}:Namespaced
"""
    )
    buildpacks = BuildpackCatalog.from_file(catalog_path).load_all()
    assert [bp.id for bp in buildpacks] == ["module-level", "namespaced"]
    assert all(callable(bp.detect) and callable(bp.build) for bp in buildpacks)


def test_entrypoint_errors(tmp_path: Path, buildpack_module: str) -> None:
    catalog_path = tmp_path / "order.yaml"
    catalog_path.write_text(
        f"""
buildpacks:
  - id: missing-module
    entrypoint: no_such_module_for_catalog_tests
  - id: missing-attr
    entrypoint: {buildpack_module}:Nope
"""
    )
    catalog = BuildpackCatalog.from_file(catalog_path)
    with pytest.raises(CatalogError, match="Cannot import"):
        catalog.get("missing-module").load()
    with pytest.raises(CatalogError, match="no attribute"):
        catalog.get("missing-attr").load()
