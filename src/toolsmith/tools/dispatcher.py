"""
Tool dispatcher.

Resolves a tool name requested by the model and runs it:

    1. A built-in tool in the current table
    2. A cap_-prefixed name, routed to execute_capability (the live catalog
       decides whether it exists and is active)
    3. Anything else raises ToolNotFoundError

The dispatcher holds no state beyond the table it was built from.
"""

from typing import Any

import structlog

from toolsmith.errors import ToolInvalidArgsError, ToolNotFoundError
from toolsmith.schema import CAPABILITY_TOOL_PREFIX
from toolsmith.tools.base import Tool, ToolContext
from toolsmith.tools.builtins import ExecuteCapabilityTool
from toolsmith.tools.registry import ToolTable

logger = structlog.get_logger(__name__)


class ToolDispatcher:
    """
    Executes tool calls against one turn's ToolTable.

    Usage:
        dispatcher = ToolDispatcher(assemble_tools(catalog.snapshot()))
        result = dispatcher.execute("lookup_capability", {"name": "weather"}, context)
    """

    def __init__(self, table: ToolTable) -> None:
        self.table = table

    def resolve(self, name: str) -> Tool:
        """
        Find the tool that handles a name.

        Raises:
            ToolNotFoundError: Name is neither a tool nor cap_-prefixed
        """
        tool = self.table.get(name)
        if tool is not None:
            return tool
        if name.startswith(CAPABILITY_TOOL_PREFIX):
            return _UnlistedCapability(name[len(CAPABILITY_TOOL_PREFIX):])
        raise ToolNotFoundError(tool=name)

    def execute(self, name: str, args: dict[str, Any], context: ToolContext) -> str:
        """
        Validate arguments and run a tool.

        Raises:
            ToolNotFoundError: Unknown tool
            ToolInvalidArgsError: Arguments fail the tool's schema
            ToolsmithError: Whatever the tool raises
        """
        tool = self.resolve(name)
        errors = tool.validate_args(args)
        if errors:
            raise ToolInvalidArgsError(tool=name, validation_error="; ".join(errors))
        logger.debug("dispatcher.execute", tool=name)
        return tool.execute(args, context)


class _UnlistedCapability(Tool):
    """cap_ name missing from this turn's table; the live catalog decides."""

    def __init__(self, capability_name: str) -> None:
        self.capability_name = capability_name

    @property
    def name(self) -> str:
        return f"{CAPABILITY_TOOL_PREFIX}{self.capability_name}"

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        return ExecuteCapabilityTool().execute(
            {"name": self.capability_name, "input": args}, context
        )

