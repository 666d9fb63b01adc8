"""
Ollama chat model adapter.

Implements ChatModel on top of Ollama's /api/chat endpoint with native
tool calling.

Requirements:
    - Ollama must be installed and running (`ollama serve`)
    - A tool-capable model must be pulled (`ollama pull qwen2.5:7b`)

Usage:
    from toolsmith.model.ollama import OllamaChatModel
    from toolsmith.config import ModelConfig

    model = OllamaChatModel(ModelConfig(model="qwen2.5:7b"))
    response = model.complete(system, messages, tools)
"""

import json
import time
import uuid
from collections.abc import Sequence
from typing import Any

import httpx
import structlog

from toolsmith.config import ModelConfig
from toolsmith.errors import (
    ModelConnectionError,
    ModelError,
    ModelNotFoundError,
    ModelResponseError,
    ModelTimeoutError,
)
from toolsmith.model.base import STOP_TOOL_USE, ChatModel, ModelResponse, ToolUse
from toolsmith.model.json_repair import coerce_arguments, parse_text_tool_call
from toolsmith.schema import ToolSpec

logger = structlog.get_logger(__name__)

BACKEND = "ollama"


class OllamaChatModel(ChatModel):
    """
    ChatModel backed by a local Ollama server.

    Features:
        - Native tool calling (tools / message.tool_calls)
        - Retry with delay on connection, timeout and malformed-response errors
        - Lenient parsing of string arguments and text-encoded tool calls

    Args:
        config: Model settings (URL, model, timeout, retries, temperature)
        client: Optional pre-built httpx.Client (tests use MockTransport)
    """

    def __init__(self, config: ModelConfig | None = None, client: httpx.Client | None = None):
        self.config = config or ModelConfig()
        self._client = client

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "OllamaChatModel":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get_name(self) -> str:
        return f"OllamaChatModel({self.config.model})"

    # -------------------------------------------------------------------------
    # ChatModel
    # -------------------------------------------------------------------------

    def complete(
        self,
        system: str,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[ToolSpec] = (),
        max_tokens: int = 1024,
    ) -> ModelResponse:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "system", "content": system}, *to_ollama_messages(messages)],
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": max_tokens,
            },
        }
        if tools:
            payload["tools"] = [to_ollama_tool(tool) for tool in tools]

        data = self._call_with_retries(payload)
        return self._parse_response(data, {tool.name for tool in tools})

    def _call_with_retries(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Call Ollama, retrying transient failures."""
        last_error: ModelError | None = None

        for attempt in range(self.config.max_retries + 1):
            try:
                return self._call(payload)
            except (ModelConnectionError, ModelTimeoutError, ModelResponseError) as e:
                last_error = e
                logger.warning("model.call_failed", attempt=attempt + 1, error=e.message)
                if attempt < self.config.max_retries:
                    time.sleep(self.config.retry_delay_seconds)

        assert last_error is not None
        raise last_error

    def _call(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Make a single call to /api/chat."""
        client = self._get_client()
        try:
            response = client.post("/api/chat", json=payload)
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(
                backend=BACKEND,
                model=self.config.model,
                timeout_seconds=self.config.timeout_seconds,
            ) from e
        except httpx.TransportError as e:
            raise ModelConnectionError(
                backend=BACKEND,
                model=self.config.model,
                url=self.config.base_url,
                underlying_error=str(e),
            ) from e

        if response.status_code == 404:
            raise ModelNotFoundError(
                backend=BACKEND,
                model=self.config.model,
                available_models=self.list_models(),
            )

        if response.status_code != 200:
            raise ModelConnectionError(
                backend=BACKEND,
                model=self.config.model,
                url=self.config.base_url,
                underlying_error=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise ModelResponseError(
                backend=BACKEND,
                model=self.config.model,
                raw_response=response.text,
                message=f"Invalid JSON from Ollama: {e}",
            ) from e
        if not isinstance(data, dict) or not isinstance(data.get("message"), dict):
            raise ModelResponseError(
                backend=BACKEND, model=self.config.model, raw_response=response.text
            )
        return data

    def _parse_response(self, data: dict[str, Any], known_tools: set[str]) -> ModelResponse:
        """Turn an /api/chat response body into a ModelResponse."""
        message = data["message"]
        content: str = message.get("content") or ""

        calls: list[ToolUse] = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            name = function.get("name")
            if not name:
                continue
            calls.append(
                ToolUse(
                    id=raw.get("id") or _call_id(),
                    name=name,
                    input=coerce_arguments(function.get("arguments")),
                )
            )

        if not calls and known_tools and content.lstrip().startswith(("{", "```")):
            recovered = parse_text_tool_call(content, known_tools)
            if recovered is not None:
                name, arguments = recovered
                calls.append(ToolUse(id=_call_id(), name=name, input=arguments))
                content = ""

        if not calls and not content.strip():
            raise ModelResponseError(
                backend=BACKEND,
                model=self.config.model,
                raw_response=json.dumps(data)[:500],
                message="Empty response from model",
            )

        return ModelResponse(
            text=content,
            tool_calls=tuple(calls),
            stop_reason=STOP_TOOL_USE if calls else data.get("done_reason") or "stop",
        )

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def list_models(self) -> list[str]:
        """List available models from Ollama (empty if unreachable)."""
        try:
            response = self._get_client().get("/api/tags")
            if response.status_code == 200:
                return [m["name"] for m in response.json().get("models", [])]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.debug("model.list_failed", error=str(e))
        return []

    def check_connection(self) -> tuple[bool, str]:
        """
        Check if Ollama is accessible and the model is available.

        Returns:
            Tuple of (is_ok, message)
        """
        try:
            response = self._get_client().get("/api/tags")
        except httpx.HTTPError:
            return False, f"Cannot connect to Ollama at {self.config.base_url}. Is it running?"
        if response.status_code != 200:
            return False, f"Ollama returned HTTP {response.status_code}"

        models = [m.get("name", "") for m in response.json().get("models", [])]
        if not models:
            return False, f"No models available. Run: ollama pull {self.config.model}"

        model_base = self.config.model.split(":")[0]
        if not any(m == self.config.model or m.startswith(f"{model_base}:") for m in models):
            return (
                False,
                f"Model '{self.config.model}' not found. Available: {', '.join(models[:3])}",
            )
        return True, f"Connected to Ollama, model '{self.config.model}' available"


def to_ollama_tool(tool: ToolSpec) -> dict[str, Any]:
    """Render a ToolSpec as an Ollama function tool."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.input_schema,
        },
    }


def to_ollama_messages(messages: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    """Translate neutral transcript entries into Ollama chat messages."""
    result: list[dict[str, Any]] = []
    for message in messages:
        role = message.get("role")
        if role == "tool_results":
            for block in message.get("results", []):
                result.append({
                    "role": "tool",
                    "tool_name": block["name"],
                    "content": block["content"],
                })
        elif role == "assistant" and message.get("tool_calls"):
            result.append({
                "role": "assistant",
                "content": message.get("content") or "",
                "tool_calls": [
                    {"function": {"name": call["name"], "arguments": call["input"]}}
                    for call in message["tool_calls"]
                ],
            })
        else:
            result.append({"role": role, "content": message.get("content") or ""})
    return result


def _call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"
