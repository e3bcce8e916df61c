"""In-memory health component registry for readiness and diagnostics."""

from __future__ import annotations

import time
from typing import Dict, Mapping

__all__ = [
    "components_snapshot",
    "overall_ready",
    "required_components",
    "reset",
    "set_component",
]

_components: Dict[str, bool] = {}
_details: Dict[str, str] = {}
_updated_at: Dict[str, float] = {}
# "storage" flips false when a local document write fails; the mirror is
# reported separately and never affects readiness.
_required_components = {"runtime", "discord", "storage"}


def required_components() -> frozenset[str]:
    return frozenset(_required_components)


def set_component(name: str, ok: bool, *, detail: str | None = None) -> None:
    """Record the health of a component and timestamp the update."""

    _components[name] = bool(ok)
    _updated_at[name] = time.time()
    if detail:
        _details[name] = detail
    else:
        _details.pop(name, None)


def components_snapshot(include_required: bool = True) -> dict[str, Mapping[str, object]]:
    snapshot: dict[str, Mapping[str, object]] = {}
    for key, value in _components.items():
        entry: dict[str, object] = {"ok": value, "ts": _updated_at.get(key, 0.0)}
        if key in _details:
            entry["detail"] = _details[key]
        snapshot[key] = entry
    if include_required:
        for name in _required_components:
            if name not in snapshot:
                snapshot[name] = {"ok": False, "ts": 0.0}
    return snapshot


def overall_ready() -> bool:
    """Return ``True`` when every required component is marked healthy."""

    return all(_components.get(name, False) for name in _required_components)


def reset() -> None:
    """Forget every recorded component (test isolation)."""

    _components.clear()
    _details.clear()
    _updated_at.clear()
