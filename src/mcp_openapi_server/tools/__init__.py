"""Tool listing, built-in tools and request execution."""

from .admin_gate import AdminGate
from .builtin_tools import ADMIN_TOOL_NAMES, BUILTIN_TOOL_NAMES, BuiltinTools
from .dispatcher import ToolDispatcher
from .executor import RequestExecutor
from .tool_registry import ToolRegistry

__all__ = [
    "ADMIN_TOOL_NAMES",
    "BUILTIN_TOOL_NAMES",
    "AdminGate",
    "BuiltinTools",
    "RequestExecutor",
    "ToolDispatcher",
    "ToolRegistry",
]
