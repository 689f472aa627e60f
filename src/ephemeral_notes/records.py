"""Record store.

Durable map from message id to Record, with identifier reconciliation on
lookup and the consume (view counting) transition.

Concurrency: a process-local lock serialises writers in this process, and
``consume`` re-reads the record, checks it is not consumed and writes the
incremented count while holding that lock. Within one process a view limit
is therefore exact. Writers in other processes sharing the same files are not
excluded; two of them can both observe ``current_views < max_views`` and both
count a view, so across processes a view limit is a best-effort bound.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from ephemeral_notes.backend import KeyValueBackend
from ephemeral_notes.errors import (
    InvalidRecordError,
    RecordExpiredError,
    RecordNotFoundError,
    StorageError,
)
from ephemeral_notes.models import Clock, Record, is_consumed, utc_now
from ephemeral_notes.resolver import MIN_MATCH_LENGTH, Match, NO_MATCH, resolve

logger = logging.getLogger(__name__)

DeleteListener = Callable[[str], object]


class RecordStore:
    """Keyed store of Records on top of a KeyValueBackend.

    Example:
        >>> store = RecordStore(MemoryBackend())
        >>> store.put(Record(id="abc...", ciphertext="..."))
        >>> record = store.get("abc...")
        >>> record = store.consume(record.id)
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        clock: Clock = utc_now,
        min_match_length: int = MIN_MATCH_LENGTH,
    ):
        self._backend = backend
        self._clock = clock
        self._min_match_length = min_match_length
        self._lock = threading.RLock()
        self._delete_listeners: List[DeleteListener] = []

    def add_delete_listener(self, listener: DeleteListener) -> None:
        """Register a callback invoked with the id of every deleted record."""
        self._delete_listeners.append(listener)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def _decode(self, record_id: str, raw: object) -> Record:
        try:
            return Record.model_validate(raw)
        except ValidationError as e:
            raise StorageError(f"Corrupt record {record_id}: {e}") from e

    def _load(self, record_id: str) -> Optional[Record]:
        raw = self._backend.get(record_id)
        if raw is None:
            return None
        return self._decode(record_id, raw)

    def _save(self, record: Record) -> None:
        self._backend.put(record.id, record.model_dump(mode="json"))

    def all_records(self) -> List[Record]:
        """Load every readable record. Corrupt entries are skipped."""
        records = []
        for record_id in self._backend.keys():
            try:
                record = self._load(record_id)
            except StorageError as e:
                logger.warning(f"Skipping unreadable record: {e}")
                continue
            if record is not None:
                records.append(record)
        return records

    # -------------------------------------------------------------------------
    # Write operations
    # -------------------------------------------------------------------------

    def put(self, record: Record) -> Record:
        """Insert or replace a record by id.

        Raises:
            InvalidRecordError: If id or ciphertext is empty.
            StorageError: If the write fails.
        """
        if not record.id or not record.id.strip():
            raise InvalidRecordError("Record id is required")
        if not record.ciphertext:
            raise InvalidRecordError(f"Record {record.id} has no ciphertext")

        record = record.model_copy(update={"id": record.id.strip()})
        with self._lock:
            self._save(record)
        logger.info(
            f"Saved record {record.id} "
            f"(expires: {record.expires_at or 'never'}, max views: {record.max_views or 'unlimited'})"
        )
        return record

    def consume(self, record_id: str, expected_views: Optional[int] = None) -> Record:
        """Count one view of a record.

        The consumption check and the increment run against a fresh read under
        the store lock, so two viewers in this process can never both count
        the last allowed view.

        Args:
            record_id: Id of the record to count a view for.
            expected_views: The view count the caller observed when it
                resolved the record. When given, a record that is consumed
                by the time of the write raises instead of being returned,
                so the caller knows its view was not counted.

        Returns:
            The updated record, or the unchanged record if it was already
            consumed and ``expected_views`` was not given.

        Raises:
            RecordNotFoundError: If no record resolves for the id.
            RecordExpiredError: If ``expected_views`` was given and the record
                is already consumed.
            StorageError: If the write fails.
        """
        record = self.get(record_id)
        with self._lock:
            current = self._load(record.id)
            if current is None:
                raise RecordNotFoundError(f"Record {record.id} was deleted")
            if expected_views is not None and current.current_views != expected_views:
                logger.warning(
                    f"Concurrent view of {current.id}: expected {expected_views} views, "
                    f"found {current.current_views}"
                )
            if self.is_consumed(current):
                logger.info(f"Record {current.id} already consumed, not counting view")
                if expected_views is not None:
                    raise RecordExpiredError(
                        f"Record {current.id} was consumed at {current.current_views} views"
                    )
                return current

            updated = current.model_copy(
                update={"current_views": current.current_views + 1}
            )
            self._save(updated)
        logger.info(
            f"Counted view for {updated.id}: "
            f"{current.current_views} -> {updated.current_views}"
        )
        return updated

    def delete(self, record_id: str) -> bool:
        """Remove a record and cascade to its key entries.

        Returns:
            True if a record was removed.
        """
        with self._lock:
            removed = self._backend.delete(record_id)
        for listener in self._delete_listeners:
            listener(record_id)
        if removed:
            logger.info(f"Deleted record {record_id}")
        return removed

    def share(self, record_id: str, user_id: str) -> Record:
        """Add a user to a record's shared-with set (idempotent)."""
        record = self.get(record_id)
        if user_id in record.shared_with:
            return record
        with self._lock:
            updated = record.model_copy(update={"shared_with": record.shared_with | {user_id}})
            self._save(updated)
        logger.info(f"Shared record {record.id} with user {user_id}")
        return updated

    def sweep(self) -> int:
        """Remove every consumed record.

        Returns:
            Number of records removed.
        """
        records = self.all_records()
        expired = [r for r in records if self.is_consumed(r)]
        for record in expired:
            self.delete(record.id)
        logger.info(
            f"Swept {len(expired)} consumed records out of {len(records)} total"
        )
        return len(expired)

    # -------------------------------------------------------------------------
    # Read operations
    # -------------------------------------------------------------------------

    def is_consumed(self, record: Record) -> bool:
        return is_consumed(record, self._clock())

    def resolve(self, record_id: str) -> Match:
        """Reconcile a requested id with the stored ids."""
        record_id = record_id.strip()
        if not record_id:
            return NO_MATCH
        if self._backend.get(record_id) is not None:
            return resolve(record_id, [record_id])

        recency: Dict = {r.id: r.created_at for r in self.all_records()}
        match = resolve(
            record_id,
            list(recency.keys()),
            recency=recency,
            min_length=self._min_match_length,
        )
        if match.found:
            logger.warning(
                f"Record id {record_id} resolved by {match.kind.value} match to {match.candidate}"
            )
        return match

    def find(self, record_id: str) -> Optional[Record]:
        """Return the record for an id, or None."""
        match = self.resolve(record_id)
        if not match.found:
            return None
        return self._load(match.candidate)

    def get(self, record_id: str) -> Record:
        """Return the record for an id.

        Raises:
            RecordNotFoundError: If no stored id reconciles with the request.
        """
        record = self.find(record_id)
        if record is None:
            raise RecordNotFoundError(f"Message {record_id} not found")
        return record

    def live_ids(self) -> List[str]:
        """Ids of records that are not yet consumed."""
        return [r.id for r in self.all_records() if not self.is_consumed(r)]

    def list_owned(self, user_id: str) -> List[Record]:
        """Records created by a user, newest first."""
        owned = [r for r in self.all_records() if r.owner_id == user_id]
        return sorted(owned, key=lambda r: r.created_at, reverse=True)

    def list_shared_with(self, user_id: str) -> List[Record]:
        """Records shared with a user that the user does not own."""
        shared = [
            r
            for r in self.all_records()
            if user_id in r.shared_with and r.owner_id != user_id
        ]
        return sorted(shared, key=lambda r: r.created_at, reverse=True)

    def ids(self) -> List[str]:
        """Every stored id, readable or not."""
        return self._backend.keys()

    def count(self) -> int:
        return len(self._backend.keys())
