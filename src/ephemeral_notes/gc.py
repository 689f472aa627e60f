"""Garbage collection of consumed records and orphaned keys.

Sweeps run at most once per interval, tracked by a timestamp marker in the
meta collection, and opportunistically at startup. Collection is
best-effort: failures are logged and never reach the viewer path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from ephemeral_notes.backend import KeyValueBackend
from ephemeral_notes.models import Clock, utc_now
from ephemeral_notes.records import RecordStore
from ephemeral_notes.vault import KeyVault

logger = logging.getLogger(__name__)

LAST_RUN_MARKER = "last_gc"
DEFAULT_INTERVAL_SECONDS = 86400  # daily


@dataclass
class SweepReport:
    """Counts from one collection pass."""

    ran_at: datetime
    expired_records: int = 0
    orphaned_keys: int = 0
    errors: List[str] = field(default_factory=list)


class GarbageCollector:
    """Throttled sweeper for a record store and its key vault."""

    def __init__(
        self,
        records: RecordStore,
        vault: KeyVault,
        meta: KeyValueBackend,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        clock: Clock = utc_now,
    ):
        self._records = records
        self._vault = vault
        self._meta = meta
        self.interval = timedelta(seconds=interval_seconds)
        self._clock = clock

    def last_run(self) -> Optional[datetime]:
        """When the last sweep completed, or None if never (or unreadable)."""
        try:
            raw = self._meta.get(LAST_RUN_MARKER)
            return datetime.fromisoformat(raw) if raw else None
        except Exception as e:
            logger.warning(f"Ignoring unreadable GC marker: {e}")
            return None

    def is_due(self) -> bool:
        last = self.last_run()
        return last is None or self._clock() - last > self.interval

    def run(self, force: bool = False) -> Optional[SweepReport]:
        """Sweep if the interval has elapsed (or when forced).

        Returns:
            SweepReport when a sweep ran, None when throttled.
        """
        if not force and not self.is_due():
            logger.debug("Skipping periodic cleanup, last cleanup was recent")
            return None

        report = SweepReport(ran_at=self._clock())
        logger.info("Performing periodic cleanup...")

        try:
            report.expired_records = self._records.sweep()
        except Exception as e:
            logger.warning(f"Record sweep failed: {e}")
            report.errors.append(f"records: {e}")

        try:
            report.orphaned_keys = self._vault.sweep_orphans()
        except Exception as e:
            logger.warning(f"Orphaned key sweep failed: {e}")
            report.errors.append(f"keys: {e}")

        try:
            self._meta.put(LAST_RUN_MARKER, report.ran_at.isoformat())
        except Exception as e:
            logger.warning(f"Could not persist GC marker: {e}")
            report.errors.append(f"marker: {e}")

        logger.info(
            f"Periodic cleanup complete. Removed {report.expired_records} expired messages "
            f"and {report.orphaned_keys} orphaned keys."
        )
        return report

    def on_startup(self) -> Optional[SweepReport]:
        """Opportunistic sweep at startup, still subject to throttling."""
        return self.run()

    def purge(self, preserve_live: bool = True) -> int:
        """Clear the local cache.

        Args:
            preserve_live: When True only consumed records and orphaned keys
                go. When False every record and key entry is removed.

        Returns:
            Number of records and key entries removed.
        """
        if preserve_live:
            report = self.run(force=True)
            return report.expired_records + report.orphaned_keys

        removed = 0
        for record_id in self._records.ids():
            if self._records.delete(record_id):
                removed += 1
        removed += self._vault.sweep_orphans()
        logger.info(f"Cleared {removed} cached records and keys")
        return removed
