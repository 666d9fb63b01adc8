"""
Tests for the chat model adapters.

Tests:
    - Transcript helpers (assistant_message, tool_results_message)
    - ScriptedChatModel replay and recording
    - OllamaChatModel with mocked HTTP
    - Error handling (connection, timeout, not found, empty responses)
    - check_connection
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from toolsmith.config import ModelConfig
from toolsmith.errors import (
    ModelConnectionError,
    ModelNotFoundError,
    ModelResponseError,
    ModelTimeoutError,
)
from toolsmith.model.base import (
    STOP_TOOL_USE,
    ModelResponse,
    ScriptedChatModel,
    ToolResultBlock,
    ToolUse,
    assistant_message,
    tool_results_message,
)
from toolsmith.model.ollama import OllamaChatModel, to_ollama_messages, to_ollama_tool
from toolsmith.schema import ToolSpec

SEARCH = ToolSpec(
    name="web_search",
    description="Search the web",
    input_schema={"type": "object", "properties": {"query": {"type": "string"}}},
)


def ollama_response(message: dict, status_code: int = 200) -> MagicMock:
    """Build a mocked httpx response carrying an /api/chat body."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"message": message, "done": True, "done_reason": "stop"}
    response.text = json.dumps(response.json.return_value)
    return response


@pytest.fixture
def model() -> OllamaChatModel:
    return OllamaChatModel(ModelConfig(max_retries=2, retry_delay_seconds=0))


class TestTranscriptHelpers:
    """Tests for neutral transcript entries."""

    def test_assistant_text_only(self):
        assert assistant_message(ModelResponse(text="Hi")) == {"role": "assistant", "content": "Hi"}

    def test_assistant_with_tool_calls(self):
        response = ModelResponse(tool_calls=(ToolUse("t1", "web_search", {"query": "x"}),))
        assert assistant_message(response) == {
            "role": "assistant",
            "content": "",
            "tool_calls": [{"id": "t1", "name": "web_search", "input": {"query": "x"}}],
        }

    def test_tool_results(self):
        message = tool_results_message([
            ToolResultBlock("t1", "web_search", "result"),
            ToolResultBlock("t2", "reason", "oops", is_error=True),
        ])
        assert message["role"] == "tool_results"
        assert message["results"][1] == {
            "tool_use_id": "t2",
            "name": "reason",
            "content": "oops",
            "is_error": True,
        }


class TestScriptedChatModel:
    """Tests for ScriptedChatModel."""

    def test_replays_and_records(self):
        scripted = ScriptedChatModel([ModelResponse(text="one"), ModelResponse(text="two")])
        first = scripted.complete("sys", [{"role": "user", "content": "hi"}], [SEARCH], 99)
        assert first.text == "one"
        assert scripted.complete("sys", []).text == "two"
        assert scripted.calls[0] == {
            "system": "sys",
            "messages": [{"role": "user", "content": "hi"}],
            "tools": ["web_search"],
            "max_tokens": 99,
        }

    def test_raises_scripted_exception(self):
        scripted = ScriptedChatModel([ModelTimeoutError(backend="scripted")])
        with pytest.raises(ModelTimeoutError):
            scripted.complete("sys", [])

    def test_exhausted(self):
        with pytest.raises(ModelResponseError):
            ScriptedChatModel([]).complete("sys", [])


class TestMessageTranslation:
    """Tests for to_ollama_tool / to_ollama_messages."""

    def test_tool(self):
        assert to_ollama_tool(SEARCH) == {
            "type": "function",
            "function": {
                "name": "web_search",
                "description": "Search the web",
                "parameters": SEARCH.input_schema,
            },
        }

    def test_messages(self):
        neutral = [
            {"role": "user", "content": "weather?"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"id": "t1", "name": "web_search", "input": {"query": "w"}}],
            },
            {
                "role": "tool_results",
                "results": [
                    {"tool_use_id": "t1", "name": "web_search", "content": "sunny", "is_error": False}
                ],
            },
            {"role": "assistant", "content": "Sunny."},
        ]
        assert to_ollama_messages(neutral) == [
            {"role": "user", "content": "weather?"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [{"function": {"name": "web_search", "arguments": {"query": "w"}}}],
            },
            {"role": "tool", "tool_name": "web_search", "content": "sunny"},
            {"role": "assistant", "content": "Sunny."},
        ]


class TestOllamaComplete:
    """Tests for OllamaChatModel.complete with mocked HTTP."""

    def test_name(self, model):
        assert model.get_name() == "OllamaChatModel(qwen2.5:7b)"

    @patch.object(httpx.Client, "post")
    def test_text_response(self, mock_post, model):
        mock_post.return_value = ollama_response({"role": "assistant", "content": "Hello!"})
        response = model.complete("sys", [{"role": "user", "content": "hi"}])
        assert response.text == "Hello!"
        assert not response.has_tool_calls
        assert response.stop_reason == "stop"

    @patch.object(httpx.Client, "post")
    def test_payload(self, mock_post, model):
        mock_post.return_value = ollama_response({"role": "assistant", "content": "ok"})
        model.complete("be brief", [{"role": "user", "content": "hi"}], [SEARCH], max_tokens=77)
        args, kwargs = mock_post.call_args
        assert args[0] == "/api/chat"
        payload = kwargs["json"]
        assert payload["model"] == "qwen2.5:7b"
        assert payload["stream"] is False
        assert payload["messages"][0] == {"role": "system", "content": "be brief"}
        assert payload["options"]["num_predict"] == 77
        assert payload["tools"][0]["function"]["name"] == "web_search"

    @patch.object(httpx.Client, "post")
    def test_no_tools_key_without_tools(self, mock_post, model):
        mock_post.return_value = ollama_response({"role": "assistant", "content": "ok"})
        model.complete("sys", [])
        assert "tools" not in mock_post.call_args.kwargs["json"]

    @patch.object(httpx.Client, "post")
    def test_native_tool_call(self, mock_post, model):
        mock_post.return_value = ollama_response({
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "web_search", "arguments": {"query": "oslo"}}}],
        })
        response = model.complete("sys", [], [SEARCH])
        (call,) = response.tool_calls
        assert call.name == "web_search"
        assert call.input == {"query": "oslo"}
        assert call.id.startswith("call_")
        assert response.stop_reason == STOP_TOOL_USE

    @patch.object(httpx.Client, "post")
    def test_string_arguments_repaired(self, mock_post, model):
        mock_post.return_value = ollama_response({
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": "web_search", "arguments": "{'query': 'x',}"}}],
        })
        response = model.complete("sys", [], [SEARCH])
        assert response.tool_calls[0].input == {"query": "x"}

    @patch.object(httpx.Client, "post")
    def test_text_tool_call_recovered(self, mock_post, model):
        mock_post.return_value = ollama_response({
            "role": "assistant",
            "content": '{"name": "web_search", "arguments": {"query": "news"}}',
        })
        response = model.complete("sys", [], [SEARCH])
        assert response.text == ""
        assert response.tool_calls[0].name == "web_search"

    @patch.object(httpx.Client, "post")
    def test_text_json_without_tools_is_text(self, mock_post, model):
        content = '{"name": "web_search", "arguments": {"query": "news"}}'
        mock_post.return_value = ollama_response({"role": "assistant", "content": content})
        response = model.complete("sys", [])
        assert response.text == content
        assert not response.has_tool_calls

    @patch.object(httpx.Client, "post")
    def test_empty_response(self, mock_post, model):
        mock_post.return_value = ollama_response({"role": "assistant", "content": "  "})
        with pytest.raises(ModelResponseError):
            model.complete("sys", [])
        assert mock_post.call_count == 1


class TestOllamaErrors:
    """Tests for transport failures and retries."""

    @patch("toolsmith.model.ollama.time.sleep")
    @patch.object(httpx.Client, "post")
    def test_connection_error_retried(self, mock_post, mock_sleep, model):
        mock_post.side_effect = httpx.ConnectError("refused")
        with pytest.raises(ModelConnectionError) as exc_info:
            model.complete("sys", [])
        assert mock_post.call_count == 3
        assert mock_sleep.call_count == 2
        assert "refused" in exc_info.value.message

    @patch("toolsmith.model.ollama.time.sleep")
    @patch.object(httpx.Client, "post")
    def test_recovers_after_transient_error(self, mock_post, mock_sleep, model):
        mock_post.side_effect = [
            httpx.ConnectError("refused"),
            ollama_response({"role": "assistant", "content": "back"}),
        ]
        assert model.complete("sys", []).text == "back"

    @patch("toolsmith.model.ollama.time.sleep")
    @patch.object(httpx.Client, "post")
    def test_timeout(self, mock_post, mock_sleep, model):
        mock_post.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(ModelTimeoutError):
            model.complete("sys", [])

    @patch.object(httpx.Client, "get")
    @patch.object(httpx.Client, "post")
    def test_model_not_found(self, mock_post, mock_get, model):
        mock_post.return_value = ollama_response({}, status_code=404)
        tags = MagicMock(status_code=200)
        tags.json.return_value = {"models": [{"name": "llama3.1:8b"}]}
        mock_get.return_value = tags
        with pytest.raises(ModelNotFoundError) as exc_info:
            model.complete("sys", [])
        assert exc_info.value.available_models == ["llama3.1:8b"]
        assert mock_post.call_count == 1

    @patch("toolsmith.model.ollama.time.sleep")
    @patch.object(httpx.Client, "post")
    def test_server_error(self, mock_post, mock_sleep, model):
        response = MagicMock(status_code=500, text="internal error")
        mock_post.return_value = response
        with pytest.raises(ModelConnectionError) as exc_info:
            model.complete("sys", [])
        assert "HTTP 500" in exc_info.value.message

    @patch("toolsmith.model.ollama.time.sleep")
    @patch.object(httpx.Client, "post")
    def test_invalid_json_body(self, mock_post, mock_sleep, model):
        response = MagicMock(status_code=200, text="<html>")
        response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
        mock_post.return_value = response
        with pytest.raises(ModelResponseError):
            model.complete("sys", [])


class TestCheckConnection:
    """Tests for check_connection."""

    @patch.object(httpx.Client, "get")
    def test_ok(self, mock_get, model):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {"models": [{"name": "qwen2.5:7b"}]}
        ok, message = model.check_connection()
        assert ok
        assert "qwen2.5:7b" in message

    @patch.object(httpx.Client, "get")
    def test_other_tag_same_family(self, mock_get, model):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {"models": [{"name": "qwen2.5:14b"}]}
        assert model.check_connection()[0]

    @patch.object(httpx.Client, "get")
    def test_model_missing(self, mock_get, model):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {"models": [{"name": "llama3.1:8b"}]}
        ok, message = model.check_connection()
        assert not ok
        assert "not found" in message

    @patch.object(httpx.Client, "get")
    def test_no_models(self, mock_get, model):
        mock_get.return_value = MagicMock(status_code=200)
        mock_get.return_value.json.return_value = {"models": []}
        ok, message = model.check_connection()
        assert not ok
        assert "ollama pull" in message

    @patch.object(httpx.Client, "get")
    def test_unreachable(self, mock_get, model):
        mock_get.side_effect = httpx.ConnectError("refused")
        ok, message = model.check_connection()
        assert not ok
        assert "Cannot connect" in message
