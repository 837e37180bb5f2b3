"""MCP server that exposes registered HTTP APIs as tools."""

__version__ = "0.1.0"
