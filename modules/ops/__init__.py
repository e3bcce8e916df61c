"""Operational tooling modules."""

from __future__ import annotations

__all__ = ["command_permissions"]
