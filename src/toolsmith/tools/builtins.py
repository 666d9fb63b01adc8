"""
Built-in tools that manage capabilities and memories.

- lookup_capability: Find a capability by exact name or keyword
- request_capability: Create a catalog entry and start a build
- execute_capability: Run an active capability
- ask_user: Clarifying question (intercepted by the loop)
- store_memory / recall_memory: Remember facts about the user
"""

import json
from typing import Any

from toolsmith.errors import (
    CapabilityNotActiveError,
    CapabilityNotFoundError,
    InvalidCapabilityNameError,
    ToolExecutionError,
)
from toolsmith.schema import CAPABILITY_NAME_PATTERN, CapabilityStatus, MemoryTier
from toolsmith.tools.base import Tool, ToolContext

ASK_USER = "ask_user"
REQUEST_CAPABILITY = "request_capability"
EXECUTE_CAPABILITY = "execute_capability"

DEFAULT_QUESTION = "Could you tell me more?"


class LookupCapabilityTool(Tool):
    """Exact lookup by name, falling back to a keyword search of active capabilities."""

    @property
    def name(self) -> str:
        return "lookup_capability"

    @property
    def description(self) -> str:
        return (
            "Check if a capability exists in the catalog by name or keyword. Returns the "
            "capability metadata if found. Use this before executing a capability."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "Exact name or search keyword for the capability",
                },
            },
            "required": ["name"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        name = args["name"]
        exact = context.catalog.get_by_name(name)
        if exact is not None:
            return json.dumps({
                "found": True,
                "capability": {
                    "id": exact.id,
                    "name": exact.name,
                    "description": exact.description,
                    "status": exact.status.value,
                    "input_schema": exact.input_schema,
                },
            })

        needle = name.lower()
        matches = [
            cap
            for cap in context.catalog.list_capabilities(CapabilityStatus.ACTIVE)
            if needle in cap.name.lower() or needle in cap.description.lower()
        ]
        if matches:
            return json.dumps({
                "found": True,
                "matches": [
                    {"id": cap.id, "name": cap.name, "description": cap.description}
                    for cap in matches
                ],
            })
        return json.dumps({"found": False, "message": f'No capability matching "{name}" found.'})


class RequestCapabilityTool(Tool):
    """
    Create a catalog entry in the building state.

    The build itself is started by whoever runs the loop: the returned
    capability_id doubles as the build id.
    """

    @property
    def name(self) -> str:
        return REQUEST_CAPABILITY

    @property
    def description(self) -> str:
        return (
            "Request the creation of a new capability. A builder writes Python code, tests it "
            "in a sandbox and registers it to the catalog. Use this when the user asks for "
            "something that needs a tool you do not have."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": 'Short snake_case name (e.g. "send_email", "weather_lookup")',
                },
                "description": {
                    "type": "string",
                    "description": "What the capability should do, including inputs and outputs",
                },
                "input_schema": {
                    "type": "object",
                    "description": "JSON Schema describing the expected input parameters",
                },
            },
            "required": ["name", "description"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        name = args["name"]
        if not CAPABILITY_NAME_PATTERN.match(name):
            raise InvalidCapabilityNameError(capability=name)

        existing = context.catalog.get_by_name(name)
        if existing is not None and existing.status == CapabilityStatus.FAILED:
            cap = context.catalog.set_status(existing.id, CapabilityStatus.BUILDING)
        elif existing is not None:
            return json.dumps({
                "status": "already_exists",
                "capability_id": existing.id,
                "message": (
                    f'Capability "{name}" already exists with status: {existing.status.value}'
                ),
            })
        else:
            cap = context.catalog.create(
                name=name,
                description=args["description"],
                input_schema=args.get("input_schema") or {"type": "object", "properties": {}},
            )

        return json.dumps({
            "status": "building",
            "capability_id": cap.id,
            "capability_name": cap.name,
            "message": (
                f'Capability "{name}" is being built. '
                "It will be available once the builder completes."
            ),
        })


class ExecuteCapabilityTool(Tool):
    """Run an active capability through the executor."""

    @property
    def name(self) -> str:
        return EXECUTE_CAPABILITY

    @property
    def description(self) -> str:
        return (
            "Execute an existing capability from the catalog by name. The capability must be "
            "active. Provide the input parameters matching its input_schema."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Name of the capability to execute"},
                "input": {
                    "type": "object",
                    "description": "Input parameters matching the capability's input_schema",
                },
            },
            "required": ["name"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        name = args["name"]
        cap = context.catalog.get_by_name(name)
        if cap is None:
            raise CapabilityNotFoundError(capability=name)
        if not cap.is_active:
            raise CapabilityNotActiveError(capability=name, status=cap.status.value)
        if context.executor is None:
            raise ToolExecutionError(tool=self.name, underlying_error="No executor configured")

        output = context.executor.execute(cap.id, args.get("input") or {})
        if not output.success:
            raise ToolExecutionError(
                tool=self.name,
                underlying_error=output.error or "Capability execution failed",
            )
        return json.dumps({"status": "success", "result": output.result})


class AskUserTool(Tool):
    """
    Clarifying question for the user.

    The agentic loop intercepts this tool and never dispatches it; the
    handler only runs when a caller bypasses the loop.
    """

    @property
    def name(self) -> str:
        return ASK_USER

    @property
    def description(self) -> str:
        return (
            "Ask the user a clarifying question and wait for their response. Use this when "
            "you need more information to fulfill a request. Keep it concise."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "question": {"type": "string", "description": "The question to ask the user"},
            },
            "required": ["question"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        return json.dumps({"status": "question_sent", "question": args.get("question")})


class StoreMemoryTool(Tool):
    """Remember a fact about the user."""

    @property
    def name(self) -> str:
        return "store_memory"

    @property
    def description(self) -> str:
        return (
            "Store a piece of information about the user in memory. Use this when the user "
            "tells you something they want remembered, or states a significant preference."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "The fact to remember"},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": 'Keywords for retrieval (e.g. ["preference", "food"])',
                },
                "tier": {
                    "type": "string",
                    "enum": [tier.value for tier in MemoryTier],
                    "description": "Use long_term for important persistent facts",
                },
            },
            "required": ["content"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        if context.memory is None:
            raise ToolExecutionError(tool=self.name, underlying_error="Memory is not available")
        try:
            tier = MemoryTier(args.get("tier") or MemoryTier.LONG_TERM.value)
        except ValueError as e:
            raise ToolExecutionError(tool=self.name, underlying_error=str(e)) from e

        content = args["content"]
        memory = context.memory.create(
            content=content,
            tier=tier,
            tags=args.get("tags") or [],
            priority=0.9 if tier == MemoryTier.LONG_TERM else 0.6,
        )
        return json.dumps({
            "stored": True,
            "memory_id": memory.id,
            "message": f'Remembered: "{content}"',
        })


class RecallMemoryTool(Tool):
    """Keyword-scored recall of stored memories."""

    @property
    def name(self) -> str:
        return "recall_memory"

    @property
    def description(self) -> str:
        return (
            "Search memories by keywords or tags. Use this to recall information about the "
            "user that is not in the current conversation."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "keywords": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Keywords to search for in memory content and tags",
                },
                "limit": {
                    "type": "number",
                    "description": "Maximum number of memories to return (default: 5)",
                },
            },
            "required": ["keywords"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        if context.memory is None:
            raise ToolExecutionError(tool=self.name, underlying_error="Memory is not available")
        memories = context.memory.relevant(args["keywords"], limit=int(args.get("limit") or 5))
        if not memories:
            return json.dumps({"found": False, "message": "No relevant memories found."})
        return json.dumps({
            "found": True,
            "memories": [
                {
                    "content": memory.content,
                    "tier": memory.tier.value,
                    "tags": memory.tags,
                    "priority": memory.priority,
                }
                for memory in memories
            ],
        })
