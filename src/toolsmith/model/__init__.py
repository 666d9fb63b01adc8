"""
Model module for Toolsmith.

Chat model adapters used by the agentic loop and the capability builder.

Available adapters:
    - OllamaChatModel: Local models via Ollama
    - ScriptedChatModel: Canned responses for tests
"""

from toolsmith.model.base import (
    ChatModel,
    ModelResponse,
    ScriptedChatModel,
    ToolResultBlock,
    ToolUse,
    assistant_message,
    tool_results_message,
)
from toolsmith.model.ollama import OllamaChatModel

__all__ = [
    "ChatModel",
    "ModelResponse",
    "OllamaChatModel",
    "ScriptedChatModel",
    "ToolResultBlock",
    "ToolUse",
    "assistant_message",
    "tool_results_message",
]
