"""Fingerprint-based reuse of cached layers.

A buildpack summarises everything that should invalidate a layer into one
string. The stored value is compared byte for byte; on a miss the layer is
cleared and reinstalled, and only then is the new fingerprint written.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Tuple

from .layers import Layer

if TYPE_CHECKING:  # pragma: no cover
    from .context import Context

VERSION_KEY = "version"


def _render(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def fingerprint(*pairs: Tuple[str, object], **fields: object) -> str:
    """Render ``key:value`` pairs joined by commas, in argument order.

    >>> fingerprint(version="1.2.0", devMode=False)
    'version:1.2.0,devMode:false'
    """

    items = list(pairs) + list(fields.items())
    return ",".join(f"{key}:{_render(value)}" for key, value in items)


def is_cache_hit(ctx: "Context", layer: Layer, expected: str, *, key: str = VERSION_KEY) -> bool:
    # An absent key never matches, not even an empty fingerprint.
    return ctx.has_metadata(layer, key) and ctx.get_metadata(layer, key) == expected


def install_if_changed(
    ctx: "Context",
    layer: Layer,
    expected: str,
    install: Callable[[Layer], None],
    *,
    key: str = VERSION_KEY,
) -> bool:
    """Reuse ``layer`` when its stored fingerprint matches, otherwise reinstall it.

    Returns ``True`` on a cache hit. ``install`` runs against an emptied layer
    and the fingerprint is persisted only after it returns, so a failed or
    interrupted install is seen as a miss on the next run.
    """

    if is_cache_hit(ctx, layer, expected, key=key):
        ctx.cache_hit(layer.name)
        return True

    ctx.cache_miss(layer.name)
    ctx.clear_layer(layer)
    install(layer)
    ctx.set_metadata(layer, key, expected)
    return False
