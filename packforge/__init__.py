"""Execution context and layer-caching engine for two-phase buildpacks."""

from .cache import fingerprint, install_if_changed
from .catalog import BuildpackCatalog
from .config import BuildConfig
from .context import Attribution, Context
from .errors import InternalError, UserError
from .lifecycle import Buildpack, BuildPaths, BuildpackDriver, Lifecycle
from .models import BOMEntry, BuildPlan, DetectResult, LayerFlag, PlanEntry

__all__ = [
    "Attribution",
    "BOMEntry",
    "BuildConfig",
    "BuildPaths",
    "BuildPlan",
    "Buildpack",
    "BuildpackCatalog",
    "BuildpackDriver",
    "Context",
    "DetectResult",
    "InternalError",
    "LayerFlag",
    "Lifecycle",
    "PlanEntry",
    "UserError",
    "fingerprint",
    "install_if_changed",
]
