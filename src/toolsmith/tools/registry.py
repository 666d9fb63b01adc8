"""
Tool table assembly for Toolsmith.

The set of tools offered to the model is rebuilt every turn from an
immutable catalog snapshot, so availability always reflects the latest
catalog state:

    table = assemble_tools(catalog.snapshot())
    table.specs()    # built-ins + one cap_<name> tool per active capability

Design:
    - assemble_tools is a pure function of (snapshot, built-ins)
    - Built-in tools are stateless singletons
    - Capability tools delegate to execute_capability, which re-checks the
      live catalog before running anything
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from toolsmith.capabilities.catalog import CatalogSnapshot, to_tool_spec
from toolsmith.schema import Capability, ToolSpec
from toolsmith.tools.base import Tool, ToolContext
from toolsmith.tools.builtins import (
    AskUserTool,
    ExecuteCapabilityTool,
    LookupCapabilityTool,
    RecallMemoryTool,
    RequestCapabilityTool,
    StoreMemoryTool,
)
from toolsmith.tools.deep_memory import DeepMemoryTool
from toolsmith.tools.reason import ReasonTool
from toolsmith.tools.web import BrowserUseTool, WebSearchTool


class CapabilityTool(Tool):
    """A registered capability exposed to the model as cap_<name>."""

    def __init__(self, capability: Capability) -> None:
        self.capability = capability

    @property
    def name(self) -> str:
        return self.capability.tool_name

    @property
    def description(self) -> str:
        return self.spec.description

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.spec.input_schema

    @property
    def spec(self) -> ToolSpec:
        return to_tool_spec(self.capability)

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        return ExecuteCapabilityTool().execute(
            {"name": self.capability.name, "input": args}, context
        )


def builtin_tools() -> tuple[Tool, ...]:
    """The built-in primitives, in the order they are offered to the model."""
    return (
        LookupCapabilityTool(),
        RequestCapabilityTool(),
        ExecuteCapabilityTool(),
        AskUserTool(),
        StoreMemoryTool(),
        RecallMemoryTool(),
        DeepMemoryTool(),
        WebSearchTool(),
        BrowserUseTool(),
        ReasonTool(),
    )


@dataclass(frozen=True)
class ToolTable:
    """
    Immutable name -> tool mapping for one turn.

    Attributes:
        builtins: Built-in tools by name
        capabilities: Capability tools by cap_-prefixed name
    """

    builtins: Mapping[str, Tool] = field(default_factory=dict)
    capabilities: Mapping[str, CapabilityTool] = field(default_factory=dict)

    def get(self, name: str) -> Tool | None:
        """Look up a tool by name, returning None if not offered."""
        return self.builtins.get(name) or self.capabilities.get(name)

    def specs(self) -> list[ToolSpec]:
        """Every tool as exposed to the model, built-ins first."""
        return [tool.spec for tool in self]

    def names(self) -> list[str]:
        return [tool.name for tool in self]

    def __iter__(self) -> Iterator[Tool]:
        yield from self.builtins.values()
        yield from self.capabilities.values()

    def __contains__(self, name: str) -> bool:
        return name in self.builtins or name in self.capabilities

    def __len__(self) -> int:
        return len(self.builtins) + len(self.capabilities)


def assemble_tools(
    snapshot: CatalogSnapshot,
    builtins: Iterable[Tool] | None = None,
) -> ToolTable:
    """
    Build the tool table for one turn.

    Args:
        snapshot: Active capabilities at the start of the turn
        builtins: Built-in tools (defaults to builtin_tools())
    """
    builtin_map = {tool.name: tool for tool in (builtin_tools() if builtins is None else builtins)}
    capability_map = {
        cap.tool_name: CapabilityTool(cap) for cap in snapshot.capabilities if cap.is_active
    }
    return ToolTable(
        builtins=MappingProxyType(builtin_map),
        capabilities=MappingProxyType(capability_map),
    )
