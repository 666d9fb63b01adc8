"""
Encrypted per-capability secret store.

Values are encrypted before they touch SQLite and are only decrypted into
the ephemeral context handed to a capability run. A row that fails to
decrypt is logged and left out of the result rather than failing the call;
capability code is expected to check for missing keys.
"""

import structlog

from toolsmith.capabilities.crypto import SecretCipher
from toolsmith.errors import SecretDecryptionError
from toolsmith.store.db import ToolsmithDB, now_iso

logger = structlog.get_logger(__name__)


class SecretStore:
    """Upsert-keyed (capability_id, key) secret storage."""

    def __init__(self, db: ToolsmithDB, cipher: SecretCipher) -> None:
        self.db = db
        self.cipher = cipher

    def set_secret(self, capability_id: str, key: str, value: str) -> None:
        """Encrypt and store a secret, replacing any previous value."""
        now = now_iso()
        self.db.execute(
            """
            INSERT INTO capability_secrets (capability_id, key, encrypted_value, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(capability_id, key) DO UPDATE SET
                encrypted_value = excluded.encrypted_value,
                updated_at = excluded.updated_at
            """,
            (capability_id, key, self.cipher.encrypt(value), now, now),
            operation="set_secret",
        )
        logger.info("secrets.stored", capability_id=capability_id, key=key)

    def get_secrets(self, capability_id: str) -> dict[str, str]:
        """Decrypt every secret of a capability. Undecryptable keys are skipped."""
        rows = self.db.query(
            "SELECT key, encrypted_value FROM capability_secrets WHERE capability_id = ?",
            (capability_id,),
            operation="get_secrets",
        )
        result: dict[str, str] = {}
        for row in rows:
            try:
                result[row["key"]] = self.cipher.decrypt(row["encrypted_value"])
            except SecretDecryptionError as e:
                logger.warning(
                    "secrets.decrypt_failed",
                    capability_id=capability_id,
                    key=row["key"],
                    reason=e.reason,
                )
        return result

    def list_keys(self, capability_id: str) -> list[str]:
        """Names of the stored secrets, without decrypting them."""
        rows = self.db.query(
            "SELECT key FROM capability_secrets WHERE capability_id = ? ORDER BY key",
            (capability_id,),
            operation="list_secret_keys",
        )
        return [row["key"] for row in rows]

    def delete_secret(self, capability_id: str, key: str) -> bool:
        """Remove one secret. Returns True if it existed."""
        return self.db.execute(
            "DELETE FROM capability_secrets WHERE capability_id = ? AND key = ?",
            (capability_id, key),
            operation="delete_secret",
        ) > 0

    def delete_all(self, capability_id: str) -> int:
        """Remove every secret of a capability."""
        return self.db.execute(
            "DELETE FROM capability_secrets WHERE capability_id = ?",
            (capability_id,),
            operation="delete_all_secrets",
        )
