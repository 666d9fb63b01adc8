"""
Memory store.

Facts the assistant was asked to remember, scored for recall by keyword
overlap, priority and recency. Priorities decay over time; short-term
memories decay faster than long-term ones.
"""

import json
import sqlite3
from datetime import UTC, datetime

from toolsmith.schema import Memory, MemoryTier
from toolsmith.store.db import ToolsmithDB, dumps, generate_id, now_iso

# Memories at or below this priority are considered forgotten
FORGOTTEN_PRIORITY = 0.05


class MemoryStore:
    """CRUD and recall over the memories table."""

    def __init__(self, db: ToolsmithDB) -> None:
        self.db = db

    def create(
        self,
        content: str,
        tier: MemoryTier = MemoryTier.LONG_TERM,
        tags: list[str] | None = None,
        priority: float | None = None,
        decay_rate: float | None = None,
    ) -> Memory:
        """Store a new memory and return it."""
        if decay_rate is None:
            decay_rate = 0.02 if tier == MemoryTier.SHORT_TERM else 0.005
        now = now_iso()
        memory_id = generate_id()
        self.db.execute(
            """
            INSERT INTO memories (
                id, content, tier, tags, priority, decay_rate, created_at, last_accessed
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                memory_id,
                content,
                tier.value,
                dumps(tags or []),
                0.5 if priority is None else priority,
                decay_rate,
                now,
                now,
            ),
            operation="create_memory",
        )
        memory = self.get(memory_id)
        assert memory is not None
        return memory

    def get(self, memory_id: str) -> Memory | None:
        """Get a memory by id."""
        row = self.db.query_one(
            "SELECT * FROM memories WHERE id = ?", (memory_id,), operation="get_memory"
        )
        return _row_to_memory(row) if row else None

    def relevant(self, keywords: list[str], limit: int = 5) -> list[Memory]:
        """
        Return the memories most relevant to the keywords.

        Score = priority + 0.3 per keyword matching a tag + 0.2 per keyword
        found in the content + up to 0.2 for access within the last day.
        Returned memories have their last_accessed time refreshed.
        """
        rows = self.db.query(
            "SELECT * FROM memories WHERE priority > ? ORDER BY priority DESC",
            (FORGOTTEN_PRIORITY,),
            operation="relevant_memories",
        )
        now = datetime.now(UTC)
        scored: list[tuple[float, Memory]] = []
        for row in rows:
            memory = _row_to_memory(row)
            content = memory.content.lower()
            tags = [t.lower() for t in memory.tags]
            score = memory.priority
            for keyword in keywords:
                kw = keyword.lower()
                if any(kw in tag for tag in tags):
                    score += 0.3
                if kw in content:
                    score += 0.2
            age_hours = (now - memory.last_accessed).total_seconds() / 3600
            score += max(0.0, 1 - age_hours / 24) * 0.2
            scored.append((score, memory))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        selected = [memory for _score, memory in scored[:limit]]
        if selected:
            accessed = now_iso()
            with self.db.transaction():
                for memory in selected:
                    self.db.execute(
                        "UPDATE memories SET last_accessed = ? WHERE id = ?",
                        (accessed, memory.id),
                        operation="touch_memory",
                    )
        return selected

    def decay(self) -> int:
        """Apply one decay step to every memory. Returns rows touched."""
        return self.db.execute(
            "UPDATE memories SET priority = MAX(0, priority - decay_rate) WHERE priority > 0",
            operation="decay_memories",
        )


def _row_to_memory(row: sqlite3.Row) -> Memory:
    return Memory(
        id=row["id"],
        content=row["content"],
        tier=MemoryTier(row["tier"]),
        tags=json.loads(row["tags"]),
        priority=row["priority"],
        decay_rate=row["decay_rate"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_accessed=datetime.fromisoformat(row["last_accessed"]),
    )
