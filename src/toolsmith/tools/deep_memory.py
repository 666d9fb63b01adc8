"""
Deep memory search.

Expands a question into several keyword sets with the chat model, runs a
memory recall for each, merges the hits and asks the model for a short
synthesis. Without a model, or when the model fails, the question's own
words are the only keyword set and the raw memories are returned.
"""

import json
from typing import Any

import structlog

from toolsmith.errors import ModelError, ToolExecutionError
from toolsmith.model.json_repair import loads_lenient
from toolsmith.schema import Memory
from toolsmith.tools.base import Tool, ToolContext

logger = structlog.get_logger(__name__)

EXPAND_SYSTEM = (
    "Generate 3-5 sets of search keywords to find relevant memories about a user query. "
    "Return ONLY a JSON array of arrays of strings. "
    'Example: [["keyword1","keyword2"],["keyword3","keyword4"]]'
)
SYNTHESIS_SYSTEM = (
    "You are summarizing memories about a user. Synthesize the following memory fragments "
    "into a coherent, concise summary relevant to the query. Be factual and specific."
)
EXPAND_MAX_TOKENS = 256
SYNTHESIS_MAX_TOKENS = 512
PER_SEARCH_LIMIT = 5
MAX_MEMORIES = 10


def fallback_keywords(query: str) -> list[list[str]]:
    """A single keyword set made of the query's longer words."""
    words = [word for word in query.split() if len(word) > 2]
    return [words or [query]]


def parse_keyword_sets(text: str, query: str) -> list[list[str]]:
    """
    Parse the model's keyword sets.

    A bare string inside the outer array counts as a one-word set. Anything
    that is not a JSON array (fenced or surrounded by prose is fine) yields
    fallback_keywords(query).
    """
    start, end = text.find("["), text.rfind("]")
    parsed = loads_lenient(text[start : end + 1]) if 0 <= start < end else None
    if not isinstance(parsed, list):
        return fallback_keywords(query)
    sets: list[list[str]] = []
    for item in parsed:
        if isinstance(item, str):
            item = [item]
        if isinstance(item, list):
            words = [word.strip() for word in item if isinstance(word, str) and word.strip()]
            if words:
                sets.append(words)
    return sets or fallback_keywords(query)


def _describe(memory: Memory) -> dict[str, Any]:
    return {
        "content": memory.content,
        "tags": memory.tags,
        "tier": memory.tier.value,
        "priority": memory.priority,
    }


class DeepMemoryTool(Tool):
    """Search memories from several angles and summarize what was found."""

    @property
    def name(self) -> str:
        return "deep_memory"

    @property
    def description(self) -> str:
        return (
            "Search memories thoroughly for a question about the user. Expands the question "
            "into several searches and summarizes the findings. Use when recall_memory with "
            "simple keywords is not enough."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "What to find out about the user",
                },
            },
            "required": ["query"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        if context.memory is None:
            raise ToolExecutionError(tool=self.name, underlying_error="Memory is not available")

        query = args["query"]
        keyword_sets = self._expand(query, context)
        logger.debug("deep_memory.searching", searches=len(keyword_sets))

        seen: dict[str, Memory] = {}
        for keywords in keyword_sets:
            for memory in context.memory.relevant(keywords, limit=PER_SEARCH_LIMIT):
                seen.setdefault(memory.id, memory)
        memories = sorted(seen.values(), key=lambda m: m.priority, reverse=True)[:MAX_MEMORIES]

        if not memories:
            return json.dumps({
                "found": False,
                "message": "No relevant memories found for this query.",
            })

        result: dict[str, Any] = {"found": True, "count": len(memories)}
        synthesis = self._synthesize(query, memories, context)
        if synthesis is not None:
            result["synthesis"] = synthesis
        result["memories"] = [_describe(memory) for memory in memories]
        return json.dumps(result)

    def _expand(self, query: str, context: ToolContext) -> list[list[str]]:
        if context.model is None:
            return fallback_keywords(query)
        try:
            response = context.model.complete(
                EXPAND_SYSTEM,
                [{"role": "user", "content": query}],
                max_tokens=EXPAND_MAX_TOKENS,
            )
        except ModelError as e:
            logger.info("deep_memory.expand_failed", error=e.message)
            return fallback_keywords(query)
        return parse_keyword_sets(response.text, query)

    def _synthesize(
        self, query: str, memories: list[Memory], context: ToolContext
    ) -> str | None:
        if context.model is None:
            return None
        fragments = "\n".join(
            f"- [{m.tier.value}] {m.content} (tags: {', '.join(m.tags)})" for m in memories
        )
        try:
            response = context.model.complete(
                SYNTHESIS_SYSTEM,
                [{"role": "user", "content": f"Query: {query}\n\nMemories:\n{fragments}"}],
                max_tokens=SYNTHESIS_MAX_TOKENS,
            )
        except ModelError as e:
            logger.info("deep_memory.synthesis_failed", error=e.message)
            return None
        return response.text
