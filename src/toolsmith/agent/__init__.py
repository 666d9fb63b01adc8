"""
Agent module for Toolsmith.

The agentic loop that answers a user turn by calling tools over several
model rounds.
"""

from toolsmith.agent.loop import (
    LOOP_EXHAUSTED_TEXT,
    MODEL_FAILURE_TEXT,
    AgenticLoop,
    LoopResult,
    ToolEvent,
)

__all__ = [
    "LOOP_EXHAUSTED_TEXT",
    "MODEL_FAILURE_TEXT",
    "AgenticLoop",
    "LoopResult",
    "ToolEvent",
]
