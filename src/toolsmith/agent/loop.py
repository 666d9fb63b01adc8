"""
Agentic loop for Toolsmith.

This module implements the multi-round tool-calling loop that answers one
user turn. Each round follows a complete -> dispatch -> feed back cycle:

1. The model sees the system prompt, the transcript and the tool table
2. If it requests no tools, its text is the answer
3. Otherwise every requested call is executed independently, and the
   assistant message plus ONE combined tool-results message are appended
4. Repeat, up to max_rounds

Special tools:
    - ask_user is never dispatched: its question becomes the answer, the
      turn is marked pending, and no further round runs
    - request_capability returning status "building" sets build_id; the
      caller is expected to submit the build. build_id survives every exit,
      including model errors and the round budget

Design Principles:
    - A turn never hard-fails: model errors and the round budget both end
      in a canned reply
    - One failing tool call never aborts the others in its round
    - Results are keyed to their call id and appended in request order
    - tool_start / tool_result events are the only progress signals
"""

import json
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import structlog

from toolsmith.config import LoopConfig
from toolsmith.errors import ModelError, ToolsmithError
from toolsmith.model.base import (
    ChatModel,
    ToolResultBlock,
    ToolUse,
    assistant_message,
    tool_results_message,
)
from toolsmith.schema import ToolCallRecord
from toolsmith.tools.base import ToolContext
from toolsmith.tools.builtins import ASK_USER, DEFAULT_QUESTION, REQUEST_CAPABILITY
from toolsmith.tools.dispatcher import ToolDispatcher
from toolsmith.tools.registry import ToolTable, assemble_tools

logger = structlog.get_logger(__name__)

LOOP_EXHAUSTED_TEXT = "I got a bit caught in a loop there. Let me try a different approach."
MODEL_FAILURE_TEXT = "I'm having a moment. Let me gather my thoughts."
WAITING_FOR_USER = "[Waiting for user response]"

# Upper bound on threads used for one round of tool calls
MAX_PARALLEL_CALLS = 8


@dataclass(frozen=True)
class ToolEvent:
    """
    Progress signal for one tool call.

    Attributes:
        type: "tool_start" (before execution) or "tool_result" (after)
        name: Tool name
        call_id: Id of the model's tool call
        input: Arguments (tool_start only)
        result: Result text (tool_result only)
        is_error: Whether the result is an error (tool_result only)
    """

    type: str
    name: str
    call_id: str = ""
    input: dict[str, Any] | None = None
    result: str | None = None
    is_error: bool = False


@dataclass
class LoopResult:
    """
    Outcome of one user turn.

    Attributes:
        text: Reply for the user (the pending question if one was asked)
        tool_calls: Every tool call of the turn, in execution order
        pending_question: Set when the model asked the user something
        build_id: Set when request_capability started a new build
        rounds: Number of model calls made
        status: "completed", "pending_question", "max_rounds" or "model_error"
        error: Model error message when status is "model_error"
    """

    text: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    pending_question: str | None = None
    build_id: str | None = None
    rounds: int = 0
    status: str = "completed"
    error: str | None = None


class AgenticLoop:
    """
    Runs the tool-calling loop for one turn at a time.

    Usage:
        loop = AgenticLoop(model, context, config.loop, on_event=print)
        result = loop.run(system_prompt, history)
        if result.build_id:
            build_queue.submit(...)

    Attributes:
        model: Chat model producing responses and tool calls
        context: Collaborators handed to every tool
        config: Round budget, history bound, token budget, parallelism
        on_event: Optional ToolEvent callback
    """

    def __init__(
        self,
        model: ChatModel,
        context: ToolContext,
        config: LoopConfig | None = None,
        on_event: Callable[[ToolEvent], None] | None = None,
    ):
        self.model = model
        self.context = context
        self.config = config or LoopConfig()
        self.on_event = on_event

    def run(
        self,
        system: str,
        history: Sequence[dict[str, Any]],
        table: ToolTable | None = None,
    ) -> LoopResult:
        """
        Answer one turn.

        Args:
            system: System prompt
            history: Conversation so far as {role, content} messages, ending
                     with the user's message; only the most recent
                     history_limit messages are sent
            table: Tools for this turn (assembled from the live catalog if None)

        Returns:
            LoopResult; never raises for model or tool failures
        """
        table = table if table is not None else assemble_tools(self.context.catalog.snapshot())
        dispatcher = ToolDispatcher(table)
        specs = table.specs()
        messages: list[dict[str, Any]] = list(history)[-self.config.history_limit :]
        records: list[ToolCallRecord] = []
        build_id: str | None = None

        for round_index in range(self.config.max_rounds):
            logger.debug("loop.round", round=round_index + 1, messages=len(messages))
            try:
                response = self.model.complete(
                    system, messages, specs, max_tokens=self.config.max_tokens
                )
            except ModelError as e:
                logger.warning("loop.model_error", error=e.message, round=round_index + 1)
                return LoopResult(
                    text=MODEL_FAILURE_TEXT,
                    tool_calls=records,
                    build_id=build_id,
                    rounds=round_index + 1,
                    status="model_error",
                    error=e.message,
                )

            if not response.has_tool_calls:
                return LoopResult(
                    text=response.text,
                    tool_calls=records,
                    build_id=build_id,
                    rounds=round_index + 1,
                )

            messages.append(assistant_message(response))
            outcomes = self._execute_round(response.tool_calls, dispatcher)
            messages.append(
                tool_results_message(
                    ToolResultBlock(call.id, call.name, result, is_error)
                    for call, result, is_error in outcomes
                )
            )

            pending_question: str | None = None
            for call, result, is_error in outcomes:
                records.append(
                    ToolCallRecord(name=call.name, input=call.input, result=result, is_error=is_error)
                )
                if call.name == ASK_USER:
                    pending_question = _question_of(call)
                elif call.name == REQUEST_CAPABILITY and not is_error:
                    build_id = _building_id(result) or build_id

            if pending_question is not None:
                return LoopResult(
                    text=pending_question,
                    tool_calls=records,
                    pending_question=pending_question,
                    build_id=build_id,
                    rounds=round_index + 1,
                    status="pending_question",
                )

        logger.warning("loop.max_rounds", max_rounds=self.config.max_rounds)
        return LoopResult(
            text=LOOP_EXHAUSTED_TEXT,
            tool_calls=records,
            build_id=build_id,
            rounds=self.config.max_rounds,
            status="max_rounds",
        )

    def _execute_round(
        self, calls: Sequence[ToolUse], dispatcher: ToolDispatcher
    ) -> list[tuple[ToolUse, str, bool]]:
        """Run every call of one round; results come back in request order."""
        if self.config.parallel_tool_calls and len(calls) > 1:
            workers = min(len(calls), MAX_PARALLEL_CALLS)
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tool") as pool:
                results = list(pool.map(lambda call: self._execute_call(call, dispatcher), calls))
        else:
            results = [self._execute_call(call, dispatcher) for call in calls]
        return [(call, result, is_error) for call, (result, is_error) in zip(calls, results)]

    def _execute_call(self, call: ToolUse, dispatcher: ToolDispatcher) -> tuple[str, bool]:
        """Run one call, turning any failure into an error-flagged result."""
        self._emit(ToolEvent(type="tool_start", name=call.name, call_id=call.id, input=call.input))
        is_error = False
        if call.name == ASK_USER:
            result = WAITING_FOR_USER
        else:
            try:
                result = dispatcher.execute(call.name, call.input, self.context)
            except ToolsmithError as e:
                result, is_error = e.message, True
                logger.info("loop.tool_error", tool=call.name, code=e.code, error=e.message)
            except Exception as e:  # noqa: BLE001
                result, is_error = str(e) or type(e).__name__, True
                logger.exception("loop.tool_crashed", tool=call.name)
        self._emit(
            ToolEvent(
                type="tool_result",
                name=call.name,
                call_id=call.id,
                result=result,
                is_error=is_error,
            )
        )
        return result, is_error

    def _emit(self, event: ToolEvent) -> None:
        if self.on_event is not None:
            self.on_event(event)


def _question_of(call: ToolUse) -> str:
    question = call.input.get("question")
    return question if isinstance(question, str) and question.strip() else DEFAULT_QUESTION


def _building_id(result: str) -> str | None:
    """capability_id of a request_capability result that started a build."""
    try:
        parsed = json.loads(result)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict) and parsed.get("status") == "building":
        capability_id = parsed.get("capability_id")
        return capability_id if isinstance(capability_id, str) and capability_id else None
    return None
