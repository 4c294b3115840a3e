"""Mock tools — importing this package registers every tool.

New code should import lookups directly from ``tools.registry``.
"""

from __future__ import annotations

import tools.data_tools  # noqa: F401  — registers tools via @register_tool
from tools.registry import get_tool, get_tool_names, invoke_tool, list_tools

__all__ = ["get_tool", "get_tool_names", "invoke_tool", "list_tools"]
