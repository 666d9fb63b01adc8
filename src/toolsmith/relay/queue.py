"""
Durable message relay between interactive sessions and builders.

The relay is a SQLite-backed mailbox with two queues per build:

    to_user     builder -> session   (questions, progress, completion, errors)
    to_builder  session -> builder   (answers, secret confirmations)

Guarantees:
    - Messages are immutable once pushed; only the consumed flag changes
    - poll() is a destructive read: rows are returned and marked consumed in
      one BEGIN IMMEDIATE transaction, so each message is delivered at most
      once across pollers
    - Within one (build_id, direction) queue, messages come back in push
      order; a monotonically increasing row sequence breaks timestamp ties
    - Nothing is ordered across different queues
"""

import json
import sqlite3
import time
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import structlog

from toolsmith.errors import RelayMessageError
from toolsmith.schema import RelayDirection, RelayKind, RelayMessage
from toolsmith.store.db import ToolsmithDB, dumps, generate_id, now_iso

logger = structlog.get_logger(__name__)

_SELECT_PENDING = """
    SELECT * FROM relay_messages
    WHERE build_id = ? AND direction = ? AND consumed = 0
    ORDER BY seq ASC
"""


class MessageRelay:
    """
    Push / poll / peek over the relay_messages table.

    Args:
        db: Shared database
        clock: Monotonic clock used by wait_for (injectable for tests)
        sleep: Sleep function used by wait_for (injectable for tests)
    """

    def __init__(
        self,
        db: ToolsmithDB,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db = db
        self.clock = clock
        self.sleep = sleep

    def push(
        self,
        build_id: str,
        direction: RelayDirection | str,
        kind: RelayKind | str,
        payload: dict[str, Any] | None = None,
    ) -> RelayMessage:
        """
        Append a message to a queue.

        Raises:
            RelayMessageError: Unknown direction or kind
        """
        direction = _coerce(RelayDirection, direction, "direction")
        kind = _coerce(RelayKind, kind, "kind")
        message = RelayMessage(
            id=generate_id(),
            build_id=build_id,
            direction=direction,
            kind=kind,
            payload=payload or {},
            created_at=datetime.fromisoformat(now_iso()),
        )
        self.db.execute(
            """
            INSERT INTO relay_messages (id, build_id, direction, kind, payload, consumed, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?)
            """,
            (
                message.id,
                build_id,
                direction.value,
                kind.value,
                dumps(message.payload),
                message.created_at.isoformat(),
            ),
            operation="relay_push",
        )
        logger.debug(
            "relay.pushed", build_id=build_id, direction=direction.value, kind=kind.value
        )
        return message

    def poll(self, build_id: str, direction: RelayDirection | str) -> list[RelayMessage]:
        """Return and consume every pending message of one queue, oldest first."""
        direction = _coerce(RelayDirection, direction, "direction")
        with self.db.transaction():
            rows = self.db.query(_SELECT_PENDING, (build_id, direction.value), operation="relay_poll")
            self._mark_consumed(row["seq"] for row in rows)
        return [_row_to_message(row, consumed=True) for row in rows]

    def peek(self, build_id: str, direction: RelayDirection | str) -> list[RelayMessage]:
        """Return pending messages without consuming them."""
        direction = _coerce(RelayDirection, direction, "direction")
        rows = self.db.query(_SELECT_PENDING, (build_id, direction.value), operation="relay_peek")
        return [_row_to_message(row) for row in rows]

    def history(self, build_id: str) -> list[RelayMessage]:
        """Every message of a build in both directions, consumed or not."""
        rows = self.db.query(
            "SELECT * FROM relay_messages WHERE build_id = ? ORDER BY seq ASC",
            (build_id,),
            operation="relay_history",
        )
        return [_row_to_message(row) for row in rows]

    def wait_for(
        self,
        build_id: str,
        direction: RelayDirection | str,
        kinds: Iterable[RelayKind | str],
        timeout: float,
        interval: float = 2.0,
    ) -> RelayMessage | None:
        """
        Wait until a message of one of the given kinds arrives.

        Pending messages ahead of the match are consumed and dropped; messages
        behind it stay queued. Returns None once the timeout has elapsed.
        """
        direction = _coerce(RelayDirection, direction, "direction")
        wanted = {_coerce(RelayKind, kind, "kind").value for kind in kinds}
        deadline = self.clock() + timeout
        while True:
            message = self._take_first(build_id, direction, wanted)
            if message is not None:
                return message
            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.info("relay.wait_timeout", build_id=build_id, kinds=sorted(wanted))
                return None
            self.sleep(min(interval, remaining))

    def _take_first(
        self, build_id: str, direction: RelayDirection, wanted: set[str]
    ) -> RelayMessage | None:
        with self.db.transaction():
            rows = self.db.query(
                _SELECT_PENDING, (build_id, direction.value), operation="relay_wait"
            )
            for index, row in enumerate(rows):
                if row["kind"] in wanted:
                    self._mark_consumed(r["seq"] for r in rows[: index + 1])
                    return _row_to_message(row, consumed=True)
        return None

    def _mark_consumed(self, seqs: Iterable[int]) -> None:
        for seq in seqs:
            self.db.execute(
                "UPDATE relay_messages SET consumed = 1 WHERE seq = ?",
                (seq,),
                operation="relay_consume",
            )


def _coerce(enum_type: type, value: Any, field_name: str) -> Any:
    try:
        return enum_type(value)
    except ValueError as e:
        raise RelayMessageError(field_name=field_name, value=str(value)) from e


def _row_to_message(row: sqlite3.Row, consumed: bool | None = None) -> RelayMessage:
    return RelayMessage(
        id=row["id"],
        build_id=row["build_id"],
        direction=RelayDirection(row["direction"]),
        kind=RelayKind(row["kind"]),
        payload=json.loads(row["payload"]),
        consumed=bool(row["consumed"]) if consumed is None else consumed,
        created_at=datetime.fromisoformat(row["created_at"]),
    )
