"""
Unit tests for the SQLite layer and the memory store.

Tests cover:
- Database initialization and schema versioning
- Transactions (commit, rollback, nesting)
- Error wrapping
- Memory creation, recall scoring and decay
"""

import sqlite3
from pathlib import Path

import pytest

from toolsmith.errors import StorageConnectionError, StorageReadError, StorageWriteError
from toolsmith.schema import MemoryTier
from toolsmith.store.db import SCHEMA_VERSION, ToolsmithDB
from toolsmith.store.memory import FORGOTTEN_PRIORITY, MemoryStore


class TestDatabaseInit:
    """Tests for database initialization."""

    def test_creates_database_file(self, temp_dir: Path) -> None:
        db_path = temp_dir / "nested" / "dir" / "test.db"
        with ToolsmithDB(db_path):
            assert db_path.exists()

    def test_creates_tables(self, db: ToolsmithDB) -> None:
        rows = db.query("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row["name"] for row in rows}
        assert {
            "schema_version",
            "capabilities",
            "relay_messages",
            "capability_secrets",
            "capability_storage",
            "memories",
        } <= tables

    def test_schema_version(self, db: ToolsmithDB) -> None:
        row = db.query_one("SELECT version FROM schema_version")
        assert row["version"] == SCHEMA_VERSION

    def test_reopen_keeps_single_version_row(self, temp_dir: Path) -> None:
        path = temp_dir / "test.db"
        ToolsmithDB(path).close()
        with ToolsmithDB(path) as db:
            assert len(db.query("SELECT * FROM schema_version")) == 1

    def test_in_memory_database(self) -> None:
        with ToolsmithDB(":memory:") as db:
            assert db.query_one("SELECT 1 AS one")["one"] == 1

    def test_closed_database_raises(self, temp_dir: Path) -> None:
        db = ToolsmithDB(temp_dir / "test.db")
        db.close()
        with pytest.raises(StorageConnectionError):
            db.query("SELECT 1")


class TestTransactions:
    """Tests for explicit transactions."""

    def _insert(self, db: ToolsmithDB, content: str) -> None:
        db.execute(
            """
            INSERT INTO memories (id, content, tier, created_at, last_accessed)
            VALUES (?, ?, 'long_term', 'now', 'now')
            """,
            (content, content),
        )

    def test_commit(self, db: ToolsmithDB) -> None:
        with db.transaction():
            self._insert(db, "a")
            self._insert(db, "b")
        assert len(db.query("SELECT * FROM memories")) == 2

    def test_rollback_on_error(self, db: ToolsmithDB) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction():
                self._insert(db, "a")
                raise RuntimeError("abort")
        assert db.query("SELECT * FROM memories") == []

    def test_nested_joins_outer(self, db: ToolsmithDB) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction():
                self._insert(db, "outer")
                with db.transaction():
                    self._insert(db, "inner")
                raise RuntimeError("abort")
        assert db.query("SELECT * FROM memories") == []

    def test_execute_returns_rowcount(self, db: ToolsmithDB) -> None:
        self._insert(db, "a")
        self._insert(db, "b")
        assert db.execute("UPDATE memories SET priority = 0.9") == 2


class TestErrorWrapping:
    """sqlite3 errors surface as StorageErrors."""

    def test_write_error(self, db: ToolsmithDB) -> None:
        with pytest.raises(StorageWriteError) as exc_info:
            db.execute("INSERT INTO no_such_table VALUES (1)", operation="bad_insert")
        assert exc_info.value.operation == "bad_insert"
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    def test_read_error(self, db: ToolsmithDB) -> None:
        with pytest.raises(StorageReadError):
            db.query("SELECT * FROM no_such_table")

    def test_constraint_violation(self, db: ToolsmithDB) -> None:
        with pytest.raises(StorageWriteError):
            db.execute(
                """
                INSERT INTO capabilities (id, name, description, status, path, created_at, updated_at)
                VALUES ('x', 'x', 'x', 'exploded', 'x', 'now', 'now')
                """
            )


class TestMemoryStore:
    """Tests for MemoryStore."""

    @pytest.fixture
    def memory(self, db: ToolsmithDB) -> MemoryStore:
        return MemoryStore(db)

    def test_create_defaults(self, memory: MemoryStore) -> None:
        mem = memory.create("User lives in Oslo", tags=["location"])
        assert mem.tier == MemoryTier.LONG_TERM
        assert mem.priority == 0.5
        assert mem.decay_rate == 0.005
        assert mem.tags == ["location"]
        assert memory.get(mem.id) == mem

    def test_short_term_decays_faster(self, memory: MemoryStore) -> None:
        mem = memory.create("Currently debugging", tier=MemoryTier.SHORT_TERM)
        assert mem.decay_rate == 0.02

    def test_get_missing(self, memory: MemoryStore) -> None:
        assert memory.get("nope") is None

    def test_relevant_prefers_keyword_matches(self, memory: MemoryStore) -> None:
        memory.create("User prefers metric units", tags=["units"])
        memory.create("User lives in Oslo", tags=["location"])
        memory.create("Favourite colour is green", tags=["colour"])
        results = memory.relevant(["oslo", "location"], limit=2)
        assert results[0].content == "User lives in Oslo"
        assert len(results) == 2

    def test_relevant_priority_breaks_ties(self, memory: MemoryStore) -> None:
        memory.create("low", priority=0.2)
        memory.create("high", priority=0.9)
        assert [m.content for m in memory.relevant([], limit=1)] == ["high"]

    def test_relevant_refreshes_last_accessed(self, memory: MemoryStore) -> None:
        mem = memory.create("User lives in Oslo")
        (hit,) = memory.relevant(["oslo"])
        assert memory.get(mem.id).last_accessed >= hit.last_accessed

    def test_forgotten_memories_excluded(self, memory: MemoryStore) -> None:
        memory.create("faded", priority=FORGOTTEN_PRIORITY)
        assert memory.relevant(["faded"]) == []

    def test_decay(self, memory: MemoryStore) -> None:
        mem = memory.create("fact", priority=0.5, decay_rate=0.1)
        assert memory.decay() == 1
        assert memory.get(mem.id).priority == pytest.approx(0.4)

    def test_decay_floors_at_zero(self, memory: MemoryStore) -> None:
        mem = memory.create("fact", priority=0.05, decay_rate=0.1)
        memory.decay()
        assert memory.get(mem.id).priority == 0
        assert memory.decay() == 0
