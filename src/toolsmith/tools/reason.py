"""
Step-by-step reasoning tool.

Asks the chat model to work through a question as numbered steps and a
conclusion, then parses that text into structured JSON.
"""

import json
import re
from typing import Any

from toolsmith.errors import ModelError, ToolExecutionError
from toolsmith.tools.base import Tool, ToolContext

REASONING_SYSTEM = """You are a careful, step-by-step reasoning engine. When given a question or problem:

1. Break it down into numbered steps
2. Think through each step explicitly
3. Show your reasoning at each point
4. Arrive at a clear conclusion

Format your response as:
Step 1: [reasoning]
Step 2: [reasoning]
...
Conclusion: [final answer or recommendation]

Be thorough but concise. Each step should advance the reasoning meaningfully."""

REASONING_MAX_TOKENS = 2048

_STEP = re.compile(r"^\s*Step\s+(\d+):\s*(.+)", re.IGNORECASE)
_CONCLUSION = re.compile(r"^\s*Conclusion:\s*(.+)", re.IGNORECASE)


def parse_reasoning(text: str) -> tuple[list[dict[str, Any]], str]:
    """Split reasoning text into [{step, text}] and the conclusion."""
    steps: list[dict[str, Any]] = []
    conclusion = ""
    for line in text.splitlines():
        if match := _STEP.match(line):
            steps.append({"step": int(match.group(1)), "text": match.group(2).strip()})
        elif match := _CONCLUSION.match(line):
            conclusion = match.group(1).strip()
    return steps, conclusion


class ReasonTool(Tool):
    """Think through a complex question before answering."""

    @property
    def name(self) -> str:
        return "reason"

    @property
    def description(self) -> str:
        return (
            "Think through a complex question step by step before answering. Use for math, "
            "logic, planning or weighing options."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "question": {"type": "string", "description": "The question to reason about"},
                "context": {
                    "type": "string",
                    "description": "Additional context from the conversation",
                },
            },
            "required": ["question"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        if context.model is None:
            raise ToolExecutionError(tool=self.name, underlying_error="No model configured")

        question = args["question"]
        extra = args.get("context") or ""
        prompt = f"Context: {extra}\n\nQuestion: {question}" if extra else question
        try:
            response = context.model.complete(
                REASONING_SYSTEM,
                [{"role": "user", "content": prompt}],
                max_tokens=REASONING_MAX_TOKENS,
            )
        except ModelError as e:
            return json.dumps({"error": True, "message": e.message})

        steps, conclusion = parse_reasoning(response.text)
        return json.dumps({
            "question": question,
            "steps": steps,
            "conclusion": conclusion,
            "full_reasoning": response.text,
        })
