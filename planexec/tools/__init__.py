"""
Tool boundary for planexec
"""

from .client import ToolClient, CallableToolClient, HttpToolClient, as_tool_client, normalize_tool_result

__all__ = ["ToolClient", "CallableToolClient", "HttpToolClient", "as_tool_client", "normalize_tool_result"]
