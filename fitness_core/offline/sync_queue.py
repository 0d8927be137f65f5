# =============================================================================
# fitness_core/offline/sync_queue.py
# Outbox Queue - Durable FIFO of Pending Remote Mutations
# =============================================================================
"""
OutboxQueue - table-backed log of local writes waiting for the remote backend.

Entries are ordered by enqueue timestamp, ties broken by insertion order.
A failed delivery only bumps ``attempts`` and records the error; the entry
keeps its position and is never dropped automatically.
"""

from __future__ import annotations
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union
import logging

import numpy as np
import pandas as pd

from fitness_core.errors import LocalWriteError, ValidationError, safe_execute
from fitness_core.offline.local_database import LocalDatabase
from fitness_core.offline.models import OutboxEntry, OutboxOperation
from fitness_core.utils.clock import Clock

logger = logging.getLogger(__name__)


def clean_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Make a record dict JSON-safe (datetimes, numpy scalars, NaN)."""
    clean: Dict[str, Any] = {}
    for k, v in data.items():
        if isinstance(v, (datetime, date)):
            clean[k] = v.isoformat()
        elif isinstance(v, np.integer):
            clean[k] = int(v)
        elif isinstance(v, (np.floating, Decimal)):
            clean[k] = float(v)
        elif isinstance(v, dict):
            clean[k] = clean_payload(v)
        elif isinstance(v, (list, tuple)):
            clean[k] = list(v)
        elif v is not None and pd.isna(v):
            clean[k] = None
        else:
            clean[k] = v
    return clean


class OutboxQueue:
    """
    FIFO outbox stored in the ``sync_queue`` table.

    Usage:
        queue = OutboxQueue(db, clock)
        entry_id = queue.add("create", "workout_sessions", session.to_dict())
        for entry in queue.list():
            ...
    """

    def __init__(self, db: LocalDatabase, clock: Clock):
        self._db = db
        self._clock = clock
        self._listeners: List[Callable[[OutboxEntry], None]] = []

    def add(
        self,
        operation: Union[OutboxOperation, str],
        table: str,
        payload: Dict[str, Any],
    ) -> int:
        """
        Append a mutation to the outbox.

        Args:
            operation: create, update or delete
            table: Remote table name
            payload: Row data; must contain the row's ``id``

        Returns:
            Queue-local sequence id of the new entry
        """
        try:
            operation = OutboxOperation(operation)
        except ValueError:
            raise ValidationError(
                f"Unknown outbox operation: {operation}",
                table=table, field="operation", value=operation,
            )
        if not payload or not payload.get("id"):
            raise ValidationError(
                "Outbox payload must contain the row id",
                table=table, field="id",
            )

        timestamp = self._clock.timestamp_ms()
        try:
            payload_json = json.dumps(clean_payload(payload))
        except (TypeError, ValueError) as e:
            raise LocalWriteError(
                f"Could not serialize outbox payload: {e}",
                table=table, record_id=str(payload.get("id")),
            ) from e

        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (operation, table_name, payload, timestamp, attempts)
                VALUES (?, ?, ?, ?, 0)
                """,
                [operation.value, table, payload_json, timestamp],
            )
            entry_id = cursor.lastrowid

        logger.debug(f"Queued {operation.value} on {table} (entry {entry_id})")
        entry = OutboxEntry(
            id=entry_id,
            operation=operation,
            table=table,
            payload=json.loads(payload_json),
            timestamp=timestamp,
        )
        self._notify_listeners(entry)
        return entry_id

    def list(self) -> List[OutboxEntry]:
        """Snapshot of every pending entry, oldest first."""
        rows = self._db.query("SELECT * FROM sync_queue ORDER BY timestamp ASC, id ASC")
        return [OutboxEntry.from_row(row) for row in rows]

    def get(self, entry_id: int) -> Optional[OutboxEntry]:
        row = self._db.query_one("SELECT * FROM sync_queue WHERE id = ?", [entry_id])
        return OutboxEntry.from_row(row) if row else None

    def remove(self, entry_id: int) -> None:
        """Delete a delivered entry (no-op if it is already gone)."""
        self._db.execute("DELETE FROM sync_queue WHERE id = ?", [entry_id])

    def record_failure(self, entry_id: int, error: str) -> None:
        """Bump attempts and store the error; the entry keeps its position."""
        self._db.execute(
            "UPDATE sync_queue SET attempts = attempts + 1, error = ? WHERE id = ?",
            [error, entry_id],
        )

    def clear(self) -> int:
        """Administrative wipe used by account resets only."""
        removed = self._db.execute("DELETE FROM sync_queue")
        logger.warning(f"Outbox cleared ({removed} entries discarded)")
        return removed

    def count(self) -> int:
        row = self._db.query_one("SELECT COUNT(*) AS count FROM sync_queue")
        return int(row["count"]) if row else 0

    def stuck(self, threshold: int) -> List[OutboxEntry]:
        """Entries that have failed at least ``threshold`` times (still retried)."""
        rows = self._db.query(
            "SELECT * FROM sync_queue WHERE attempts >= ? ORDER BY timestamp ASC, id ASC",
            [threshold],
        )
        return [OutboxEntry.from_row(row) for row in rows]

    def __len__(self) -> int:
        return self.count()

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def register_listener(self, listener: Callable[[OutboxEntry], None]) -> None:
        """Register a callback invoked after every add (e.g. to wake the sync loop)."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unregister_listener(self, listener: Callable[[OutboxEntry], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_listeners(self, entry: OutboxEntry) -> None:
        for listener in self._listeners:
            safe_execute(listener, entry, error_message="Error in outbox listener")
