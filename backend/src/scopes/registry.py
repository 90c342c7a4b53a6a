"""Scope registry — closed lookup of scope types and their options."""

from enum import Enum
from typing import Any, Callable

from scopes.errors import InvalidScopeOption, InvalidScopeType

ScopeFn = Callable[..., Any]

_REGISTRY: dict[str, dict] = {}


def register(
    scope_type: str, fn: ScopeFn, options: dict[str, type[Enum]], defaults: dict, name: str
):
    """Register a scope. ``options`` maps option name to its Enum of choices."""
    _REGISTRY[scope_type] = {
        "fn": fn,
        "options": options,
        "defaults": defaults,
        "name": name,
    }


def get(scope_type: str) -> dict | None:
    """Get scope info by type."""
    if not isinstance(scope_type, str):
        return None
    return _REGISTRY.get(scope_type)


def require(scope_type) -> dict:
    """Like get(), but raises InvalidScopeType for unknown types."""
    info = get(scope_type)
    if info is None:
        raise InvalidScopeType(scope_type)
    return info


def resolve_options(scope_type: str, options: dict | None) -> dict:
    """Turn wire option strings into Enum members, filling defaults.

    Unknown option names are ignored; unknown values raise InvalidScopeOption.
    """
    info = require(scope_type)
    options = options or {}
    resolved = dict(info["defaults"])
    for key, enum_cls in info["options"].items():
        if key not in options or options[key] is None:
            continue
        value = options[key]
        try:
            resolved[key] = enum_cls(value)
        except ValueError:
            raise InvalidScopeOption(
                scope_type, key, value, [m.value for m in enum_cls]
            ) from None
    return resolved


def list_all() -> list[dict]:
    """List all registered scopes with option choices and defaults."""
    return [
        {
            "id": scope_type,
            "name": info["name"],
            "options": {
                key: {
                    "choices": [m.value for m in enum_cls],
                    "default": info["defaults"][key].value,
                }
                for key, enum_cls in info["options"].items()
            },
        }
        for scope_type, info in _REGISTRY.items()
    ]


def _auto_register():
    """Register the built-in scopes."""
    from scopes.histogram import compute_histogram
    from scopes.vectorscope import VectorscopePolicy, compute_vectorscope
    from scopes.waveform import WaveformMode, compute_waveform

    register("histogram", compute_histogram, {}, {}, "Histogram")
    register(
        "waveform",
        compute_waveform,
        {"mode": WaveformMode},
        {"mode": WaveformMode.PARADE},
        "Waveform",
    )
    register(
        "vectorscope",
        compute_vectorscope,
        {"policy": VectorscopePolicy},
        {"policy": VectorscopePolicy.REC709},
        "Vectorscope",
    )


_auto_register()
