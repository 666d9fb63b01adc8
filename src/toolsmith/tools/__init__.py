"""
Tools module for Toolsmith.

Tools are the actions the assistant can take. Built-in primitives manage
capabilities and memories, search the web and reason; every active
capability adds one more tool named cap_<name>.

Built-in tools:
    - lookup_capability, request_capability, execute_capability
    - ask_user
    - store_memory, recall_memory, deep_memory
    - web_search, browser_use
    - reason
"""

from toolsmith.tools.base import Tool, ToolContext
from toolsmith.tools.dispatcher import ToolDispatcher
from toolsmith.tools.registry import CapabilityTool, ToolTable, assemble_tools, builtin_tools

__all__ = [
    "CapabilityTool",
    "Tool",
    "ToolContext",
    "ToolDispatcher",
    "ToolTable",
    "assemble_tools",
    "builtin_tools",
]
