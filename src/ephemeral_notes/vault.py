"""Key vault.

Durable map from message id to exported root key. Keys exist only on devices
that composed a message or decrypted it once and cached the key; a missing
entry does not mean the message is invalid.

Each key is stored twice, under the full id and under a fixed-length id
prefix, so a truncated id still finds its key. Lookups only consider entries
that reconcile with a live (unconsumed) record, so stale keys are never
offered for a message that no longer exists.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from ephemeral_notes.backend import KeyValueBackend
from ephemeral_notes.errors import InvalidKeyFormatError, InvalidRecordError
from ephemeral_notes.records import RecordStore
from ephemeral_notes.resolver import (
    MIN_MATCH_LENGTH,
    Match,
    NO_MATCH,
    resolve,
    similarity,
)

logger = logging.getLogger(__name__)

DEFAULT_PREFIX_LENGTH = 20


class KeyVault:
    """Key entries scoped to live records.

    Example:
        >>> vault = KeyVault(MemoryBackend(), records)
        >>> vault.put(record.id, export_key(key))
        >>> vault.get(record.id[:20])
        'q3Jx...'
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        records: RecordStore,
        prefix_length: int = DEFAULT_PREFIX_LENGTH,
        min_match_length: int = MIN_MATCH_LENGTH,
    ):
        self._backend = backend
        self._records = records
        self.prefix_length = prefix_length
        self._min_match_length = min_match_length

    def put(self, message_id: str, key_text: str) -> None:
        """Store a key under the full id and its prefix.

        Raises:
            InvalidRecordError: If the id is empty.
            InvalidKeyFormatError: If the key is empty.
            StorageError: If the write fails.
        """
        clean_id = (message_id or "").strip()
        clean_key = (key_text or "").strip()
        if not clean_id:
            raise InvalidRecordError("Cannot store key: missing message id")
        if not clean_key:
            raise InvalidKeyFormatError(f"Cannot store empty key for {clean_id}")

        self._backend.put(clean_id, clean_key)
        short_id = clean_id[: self.prefix_length]
        if short_id != clean_id:
            self._backend.put(short_id, clean_key)
        logger.info(f"Stored key for message {clean_id} (key length {len(clean_key)})")

    def _live_index(self) -> Tuple[List[str], Dict]:
        live = [r for r in self._records.all_records() if not self._records.is_consumed(r)]
        return [r.id for r in live], {r.id: r.created_at for r in live}

    def _owner(self, entry_id: str, live_ids: List[str], recency: Dict) -> Optional[str]:
        """The live record an entry id belongs to, if any."""
        if entry_id in recency:
            return entry_id
        for live_id in live_ids:
            if live_id.startswith(entry_id) and len(entry_id) == min(self.prefix_length, len(live_id)):
                return live_id
        match = resolve(entry_id, live_ids, recency=recency, min_length=self._min_match_length)
        return match.candidate if match.found else None

    def lookup(self, message_id: str) -> Tuple[Match, Optional[str]]:
        """Resolve a message id to a key entry.

        Returns:
            ``(match, key_text)``; key_text is None when nothing matched.
        """
        clean_id = (message_id or "").strip()
        if not clean_id:
            return NO_MATCH, None

        live_ids, recency = self._live_index()
        entry_ids = self._backend.keys()
        candidates = [e for e in entry_ids if self._owner(e, live_ids, recency) is not None]

        entry_recency = {
            e: recency.get(self._owner(e, live_ids, recency)) for e in candidates
        }
        match = resolve(
            clean_id,
            candidates,
            recency=entry_recency,
            prefix_length=self.prefix_length,
            min_length=self._min_match_length,
        )
        if not match.found:
            logger.debug(f"No key found for message {clean_id}")
            return NO_MATCH, None

        if match.is_fuzzy:
            logger.warning(
                f"Key for {clean_id} found by {match.kind.value} match on {match.candidate}"
            )
        return match, self._backend.get(match.candidate)

    def get(self, message_id: str) -> Optional[str]:
        """Return the exported key for a message id, or None."""
        _match, key_text = self.lookup(message_id)
        return key_text

    def remove(self, message_id: str) -> int:
        """Delete the entry for an id plus entries that match it partially.

        Entries that belong to a different live record are kept.

        Returns:
            Number of entries removed.
        """
        clean_id = (message_id or "").strip()
        if not clean_id:
            return 0

        own = {clean_id, clean_id[: self.prefix_length]}
        live_ids, recency = self._live_index()
        protected = set()
        for live_id in live_ids:
            if live_id == clean_id:
                continue
            protected.add(live_id)
            protected.add(live_id[: self.prefix_length])
        protected -= own

        removed = 0
        for entry_id in self._backend.keys():
            if entry_id in own or entry_id.lower() == clean_id.lower():
                hit = True
            elif entry_id in protected:
                hit = False
            else:
                hit = similarity(clean_id, entry_id, self._min_match_length) > 0
            if hit and self._backend.delete(entry_id):
                removed += 1

        if removed:
            logger.info(f"Removed {removed} key entries for message {clean_id}")
        return removed

    def sweep_orphans(self) -> int:
        """Delete every key entry that has no live record.

        Returns:
            Number of entries removed.
        """
        live_ids, recency = self._live_index()
        orphans = [
            e for e in self._backend.keys() if self._owner(e, live_ids, recency) is None
        ]
        for entry_id in orphans:
            self._backend.delete(entry_id)
        if orphans:
            logger.info(f"Removed {len(orphans)} orphaned key entries")
        return len(orphans)

    def count(self) -> int:
        return len(self._backend.keys())
