"""
Integration event store (the outbox).

Events that could not be published are kept here until the retry task manages
to deliver them. The store is the only state the publisher and the retry task
share.

Design decisions:
- Records are kept in insertion order, so a retry pass is deterministic
- No uniqueness constraint: the same event may be stored twice if two publish
  attempts fail independently
- Optionally backed by a JSON file; every write rewrites the file through a
  temporary file and an atomic rename
- A lock makes each create and delete atomic with respect to the others
"""

import json
import logging
import os
import secrets
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from messaging.exceptions import RepositoryError

logger = logging.getLogger("event_store")

OPERATION_KEY = "__operation"
ROUTING_KEY_KEY = "__routing_key"


class StoredEvent(BaseModel):
    """
    A persisted, not yet delivered event.

    Attributes:
        id: Store-assigned identifier
        created_at: When the record was written
        record: The event wire map plus "__operation" and "__routing_key"
    """
    id: str
    created_at: datetime
    record: dict[str, Any] = Field(default_factory=dict)

    @property
    def event_name(self) -> Optional[str]:
        return self.record.get("event_name")

    @property
    def operation(self) -> Optional[str]:
        return self.record.get(OPERATION_KEY)

    @property
    def routing_key(self) -> Optional[str]:
        return self.record.get(ROUTING_KEY_KEY)


_stored_list = TypeAdapter(list[StoredEvent])


class IntegrationEventStore:
    """
    Store of events awaiting (re)publication.

    Example:
        store = IntegrationEventStore(path=Path("data/integration_events.json"))
        stored = store.create({"event_name": "UserDeleteEvent", ...,
                               "__operation": "publish",
                               "__routing_key": "users.delete"})
        for item in store.find_all():
            ...
        store.delete_by_id(stored.id)
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            path: JSON file holding the records. Memory-only when None.
        """
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._records: Optional[dict[str, StoredEvent]] = None

    # =========================================================================
    # Persistence
    # =========================================================================

    def _ensure_loaded(self) -> None:
        if self._records is not None:
            return
        records: dict[str, StoredEvent] = {}
        if self.path is not None and self.path.exists():
            try:
                with open(self.path, "r") as f:
                    loaded = _stored_list.validate_python(json.load(f))
            except (OSError, ValueError, ValidationError) as e:
                raise RepositoryError(f"Could not read event store {self.path}: {e}") from e
            for stored in loaded:
                records[stored.id] = stored
            logger.debug(f"Loaded {len(records)} pending events from {self.path}")
        self._records = records

    def _flush(self, records: dict[str, StoredEvent]) -> None:
        if self.path is None:
            return
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump([r.model_dump(mode="json") for r in records.values()], f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise RepositoryError(f"Could not write event store {self.path}: {e}") from e

    # =========================================================================
    # Operations
    # =========================================================================

    def create(self, record: dict[str, Any]) -> StoredEvent:
        """
        Insert a new record.

        Raises:
            RepositoryError: when the storage layer fails; nothing is kept
        """
        with self._lock:
            self._ensure_loaded()
            stored = StoredEvent(
                id=secrets.token_hex(12),
                created_at=datetime.now(timezone.utc),
                record=dict(record),
            )
            updated = {**self._records, stored.id: stored}
            self._flush(updated)
            self._records = updated
        logger.debug(f"Stored {stored.event_name} as {stored.id}")
        return stored

    def find_all(self) -> list[StoredEvent]:
        """Return every pending record, oldest first."""
        with self._lock:
            self._ensure_loaded()
            return list(self._records.values())

    def delete_by_id(self, record_id: str) -> bool:
        """
        Remove one record.

        Returns:
            True if it was removed, False if no record has this id
        """
        with self._lock:
            self._ensure_loaded()
            if record_id not in self._records:
                return False
            updated = {k: v for k, v in self._records.items() if k != record_id}
            self._flush(updated)
            self._records = updated
        logger.debug(f"Deleted stored event {record_id}")
        return True

    def count(self) -> int:
        with self._lock:
            self._ensure_loaded()
            return len(self._records)
