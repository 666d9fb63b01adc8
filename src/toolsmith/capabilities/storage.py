"""
Per-capability durable scratch storage.

Capability code receives the current storage as context["storage"] and may
return {"storage": {...}} with updates. Updates are merged key by key;
keys that are not mentioned keep their previous value.
"""

import json
from typing import Any

from toolsmith.store.db import ToolsmithDB, dumps, now_iso


class CapabilityStorage:
    """Upsert-keyed (capability_id, key) JSON storage."""

    def __init__(self, db: ToolsmithDB) -> None:
        self.db = db

    def get_storage(self, capability_id: str) -> dict[str, Any]:
        """Return all stored values for a capability."""
        rows = self.db.query(
            "SELECT key, value FROM capability_storage WHERE capability_id = ?",
            (capability_id,),
            operation="get_storage",
        )
        result: dict[str, Any] = {}
        for row in rows:
            try:
                result[row["key"]] = json.loads(row["value"])
            except json.JSONDecodeError:
                result[row["key"]] = row["value"]
        return result

    def set_storage(self, capability_id: str, updates: dict[str, Any]) -> None:
        """Merge updates into the capability's storage in one transaction."""
        if not updates:
            return
        now = now_iso()
        with self.db.transaction():
            for key, value in updates.items():
                self.db.execute(
                    """
                    INSERT INTO capability_storage (capability_id, key, value, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(capability_id, key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (capability_id, str(key), dumps(value), now, now),
                    operation="set_storage",
                )

    def delete_key(self, capability_id: str, key: str) -> bool:
        """Remove one key. Returns True if it existed."""
        return self.db.execute(
            "DELETE FROM capability_storage WHERE capability_id = ? AND key = ?",
            (capability_id, key),
            operation="delete_storage_key",
        ) > 0

    def delete_all(self, capability_id: str) -> int:
        """Remove all storage of a capability."""
        return self.db.execute(
            "DELETE FROM capability_storage WHERE capability_id = ?",
            (capability_id,),
            operation="delete_all_storage",
        )
