"""
Base classes for chat model adapters.

The agentic loop and the builder talk to a language model through the
ChatModel interface only. Messages use a small provider-neutral shape:

    {"role": "user" | "assistant", "content": str}
    {"role": "assistant", "content": str, "tool_calls": [ToolUse-as-dict, ...]}
    {"role": "tool_results", "results": [ToolResultBlock-as-dict, ...]}

Adapters translate this to and from their backend's wire format.

Design Principles:
    - Adapters are stateless between calls (history is passed explicitly)
    - Transport problems raise ModelError subclasses; callers decide policy
    - Tool call ids are assigned by the adapter when the backend has none
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from toolsmith.errors import ModelResponseError
from toolsmith.schema import ToolSpec

STOP_END_TURN = "end_turn"
STOP_TOOL_USE = "tool_use"


@dataclass(frozen=True)
class ToolUse:
    """A tool call requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    """The result of one tool call, keyed to the call's id."""

    tool_use_id: str
    name: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class ModelResponse:
    """
    One model completion.

    Attributes:
        text: Assistant text (may be empty when only tools are called)
        tool_calls: Requested tool calls, in the order the model gave them
        stop_reason: Why generation stopped (end_turn, tool_use, length...)
    """

    text: str = ""
    tool_calls: tuple[ToolUse, ...] = ()
    stop_reason: str = STOP_END_TURN

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def assistant_message(response: ModelResponse) -> dict[str, Any]:
    """Transcript entry for a model response."""
    message: dict[str, Any] = {"role": "assistant", "content": response.text}
    if response.tool_calls:
        message["tool_calls"] = [asdict(call) for call in response.tool_calls]
    return message


def tool_results_message(results: Iterable[ToolResultBlock]) -> dict[str, Any]:
    """Single transcript entry carrying every result of one round."""
    return {"role": "tool_results", "results": [asdict(result) for result in results]}


class ChatModel(ABC):
    """
    Abstract base class for chat model backends.

    Implementations:
        - OllamaChatModel: Local models through Ollama's /api/chat
        - ScriptedChatModel: Replays canned responses (tests, demos)
    """

    @abstractmethod
    def complete(
        self,
        system: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[ToolSpec] = (),
        max_tokens: int = 1024,
    ) -> ModelResponse:
        """
        Produce the next assistant turn.

        Args:
            system: System prompt
            messages: Conversation so far, oldest first
            tools: Tools the model may call
            max_tokens: Generation budget

        Raises:
            ModelError: Backend unreachable, timed out or returned garbage
        """
        ...

    def get_name(self) -> str:
        """Return the model's name for logging."""
        return self.__class__.__name__

    def close(self) -> None:
        """Release network resources, if any."""


class ScriptedChatModel(ChatModel):
    """
    Chat model that replays a fixed script.

    Each script entry is a ModelResponse to return or an exception to raise.
    Every call is recorded in ``calls`` for inspection. Running past the end
    of the script raises ModelResponseError.

    Example:
        model = ScriptedChatModel([
            ModelResponse(tool_calls=(ToolUse("t1", "lookup_capability", {"name": "x"}),)),
            ModelResponse(text="Done."),
        ])
    """

    def __init__(self, script: Iterable[ModelResponse | Exception]) -> None:
        self.script = list(script)
        self.calls: list[dict[str, Any]] = []

    def complete(
        self,
        system: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[ToolSpec] = (),
        max_tokens: int = 1024,
    ) -> ModelResponse:
        self.calls.append({
            "system": system,
            "messages": list(messages),
            "tools": [tool.name for tool in tools],
            "max_tokens": max_tokens,
        })
        if not self.script:
            raise ModelResponseError(backend="scripted", message="Script exhausted")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step
