"""Startup switch that hides the mutating built-in tools."""

from __future__ import annotations

from dataclasses import dataclass

from .builtin_tools import ADMIN_TOOL_NAMES


@dataclass(frozen=True)
class AdminGate:
    """When ``active``, admin tools are neither listed nor invocable."""

    active: bool = False

    def allows(self, tool_name: str) -> bool:
        return not (self.active and tool_name in ADMIN_TOOL_NAMES)
