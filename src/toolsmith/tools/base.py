"""
Base classes for the tool interface.

This module defines the core abstractions for tools in Toolsmith:
- Tool: Abstract base class that all tools must implement
- ToolContext: Runtime collaborators passed to tools during execution

Design Principles:
    - Tools are stateless - all state comes from ToolContext
    - Tools return a string (usually JSON) that is fed back to the model
    - Tools raise ToolsmithError subclasses for failures; the loop turns
      them into error-flagged results, so one failing call never aborts
      the others
    - Every tool describes itself with a JSON schema (ToolSpec)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from toolsmith.schema import ToolSpec

if TYPE_CHECKING:
    import httpx

    from toolsmith.capabilities.catalog import CapabilityCatalog
    from toolsmith.capabilities.executor import CapabilityExecutor
    from toolsmith.model.base import ChatModel
    from toolsmith.store.memory import MemoryStore


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _type_error(key: str, expected: Any, value: Any) -> str | None:
    if not isinstance(expected, str) or expected not in _JSON_TYPES:
        return None
    if expected in ("integer", "number") and isinstance(value, bool):
        return f"'{key}' must be a {expected}"
    if not isinstance(value, _JSON_TYPES[expected]):
        return f"'{key}' must be a {expected}, got {type(value).__name__}"
    return None


def schema_errors(schema: dict[str, Any], args: dict[str, Any]) -> list[str]:
    """
    Check args against a JSON schema's required fields and top-level types.

    Array items are checked against the item type when the schema names one.
    Nested objects are not descended into.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    properties = schema.get("properties") or {}
    for required in schema.get("required") or []:
        if args.get(required) is None:
            errors.append(f"'{required}' is required")
    for key, value in args.items():
        if value is None:
            continue
        prop = properties.get(key) or {}
        error = _type_error(key, prop.get("type"), value)
        if error:
            errors.append(error)
        elif isinstance(value, list):
            item_type = (prop.get("items") or {}).get("type")
            for index, item in enumerate(value):
                error = _type_error(f"{key}[{index}]", item_type, item)
                if error:
                    errors.append(error)
                    break
    return errors


@dataclass
class ToolContext:
    """
    Runtime context passed to tools during execution.

    Attributes:
        catalog: Live capability catalog
        executor: Runs capabilities in sandboxes
        memory: Memory store for store_memory / recall_memory
        model: Chat model for tools that think (reason)
        tavily_api_key: Enables web_search
        http_client: Shared HTTP client for network tools (optional)
        metadata: Additional context-specific metadata
    """

    catalog: "CapabilityCatalog"
    executor: "CapabilityExecutor | None" = None
    memory: "MemoryStore | None" = None
    model: "ChatModel | None" = None
    tavily_api_key: str | None = field(default=None, repr=False)
    http_client: "httpx.Client | None" = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Tool(ABC):
    """
    Abstract base class for all Toolsmith tools.

    Subclasses must implement:
    - name property: The identifier the model uses to call the tool
    - execute(): Performs the tool's action and returns result text

    Example:
        class EchoTool(Tool):
            @property
            def name(self) -> str:
                return "echo"

            def execute(self, args: dict[str, Any], context: ToolContext) -> str:
                return args.get("message", "")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The unique identifier for this tool."""
        ...

    @property
    def description(self) -> str:
        """Human-readable description shown to the model."""
        return f"Tool: {self.name}"

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the tool's arguments."""
        return {"type": "object", "properties": {}}

    @property
    def spec(self) -> ToolSpec:
        """The tool as exposed to the model."""
        return ToolSpec(name=self.name, description=self.description, input_schema=self.input_schema)

    @abstractmethod
    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        """
        Execute the tool with the given arguments.

        Args:
            args: Arguments supplied by the model (already validated)
            context: Runtime collaborators

        Returns:
            Result text for the model

        Raises:
            ToolsmithError: The call failed; the message is shown to the model
        """
        ...

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """
        Check args against the input schema's required fields and types.

        Returns:
            List of validation error messages (empty if valid)
        """
        return schema_errors(self.input_schema, args)

    def __repr__(self) -> str:
        return f"<Tool: {self.name}>"
