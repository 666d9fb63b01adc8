"""
Storage module for Toolsmith.

This module provides SQLite-based persistence shared by every component:
the capability catalog, the builder relay, per-capability secrets and
storage, and the assistant's memories.

Why SQLite?
    - Zero configuration (no server needed)
    - ACID transactions built-in
    - Durable mailbox semantics for the builder relay survive restarts
    - Perfect for local-first tools
"""

from toolsmith.store.db import ToolsmithDB, generate_id, now_iso
from toolsmith.store.memory import MemoryStore

__all__ = [
    "MemoryStore",
    "ToolsmithDB",
    "generate_id",
    "now_iso",
]
