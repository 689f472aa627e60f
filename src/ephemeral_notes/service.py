"""Notes service: wires storage, vault, coordinator and collector together.

Usage:
    from ephemeral_notes.service import NotesService

    notes = NotesService.from_config(NotesConfig(storage_dir=Path(".notes")))

    # Sender
    composed = notes.compose("meet at noon", preset=ExpirationPreset.VIEW_ONCE)
    print(composed.share_url)

    # Recipient
    outcome = notes.view_url(composed.share_url)
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ephemeral_notes.backend import LocalStorage
from ephemeral_notes.config import BackendType, NotesConfig
from ephemeral_notes.coordinator import LifecycleCoordinator, ViewOutcome
from ephemeral_notes.crypto import MessageCipher, export_key, generate_root_key
from ephemeral_notes.gc import GarbageCollector
from ephemeral_notes.identity import ANONYMOUS, Identity
from ephemeral_notes.locator import Locator, build_share_url
from ephemeral_notes.models import Clock, ExpirationPreset, Record, utc_now
from ephemeral_notes.records import RecordStore
from ephemeral_notes.vault import KeyVault

logger = logging.getLogger(__name__)

MESSAGE_ID_BYTES = 32  # 64 hex characters


def generate_message_id() -> str:
    """Generate a high-entropy message id."""
    return secrets.token_hex(MESSAGE_ID_BYTES)


@dataclass
class ComposedMessage:
    """What the sender gets back after composing a message."""

    record: Record
    key_text: str
    share_url: str


@dataclass
class StorageStats:
    """Counts of locally stored records and key entries."""

    messages: int
    keys: int


class NotesService:
    """Facade over one local notes workspace."""

    def __init__(
        self,
        storage: LocalStorage,
        config: Optional[NotesConfig] = None,
        identity: Identity = ANONYMOUS,
        clock: Clock = utc_now,
    ):
        self.config = config or NotesConfig(backend_type=BackendType.MEMORY)
        self.identity = identity
        self._clock = clock

        self.records = RecordStore(
            storage.records, clock=clock, min_match_length=self.config.min_match_length
        )
        self.vault = KeyVault(
            storage.keys,
            self.records,
            prefix_length=self.config.key_prefix_length,
            min_match_length=self.config.min_match_length,
        )
        self.records.add_delete_listener(self.vault.remove)

        self.coordinator = LifecycleCoordinator(
            self.records,
            self.vault,
            identity=identity,
            iterations=self.config.kdf_iterations,
            clock=clock,
        )
        self.gc = GarbageCollector(
            self.records,
            self.vault,
            storage.meta,
            interval_seconds=self.config.gc_interval_seconds,
            clock=clock,
        )

    @classmethod
    def from_config(
        cls,
        config: NotesConfig,
        identity: Identity = ANONYMOUS,
        clock: Clock = utc_now,
        run_gc: bool = True,
    ) -> "NotesService":
        """Open a workspace and run the startup sweep (throttled)."""
        if config.backend_type == BackendType.MEMORY:
            storage = LocalStorage.in_memory()
        else:
            storage = LocalStorage.on_disk(config.storage_dir)
        service = cls(storage, config=config, identity=identity, clock=clock)
        if run_gc:
            service.gc.on_startup()
        return service

    def compose(
        self,
        plaintext: str,
        preset: Optional[ExpirationPreset] = None,
        expires_at: Optional[datetime] = None,
        max_views: Optional[int] = None,
    ) -> ComposedMessage:
        """Encrypt text, persist its record and key, and build the share link.

        A preset overrides explicit expires_at/max_views.

        Raises:
            StorageError: If the record or key cannot be persisted.
        """
        now = self._clock()
        if preset is not None:
            expires_at, max_views = preset.apply(now)

        root_key = generate_root_key()
        key_text = export_key(root_key)
        cipher = MessageCipher(root_key, iterations=self.config.kdf_iterations)

        record = self.records.put(
            Record(
                id=generate_message_id(),
                ciphertext=cipher.seal(plaintext),
                created_at=now,
                expires_at=expires_at,
                max_views=max_views,
                current_views=0,
                owner_id=self.identity.current_user_id(),
            )
        )
        self.vault.put(record.id, key_text)

        share_url = build_share_url(self.config.base_url, record.id, key_text)
        return ComposedMessage(record=record, key_text=key_text, share_url=share_url)

    def view(self, message_id: str, locator: Optional[Locator] = None) -> ViewOutcome:
        return self.coordinator.view(message_id, locator=locator)

    def view_url(self, url: str) -> ViewOutcome:
        """View the message a share link points at."""
        return self.coordinator.view(locator=Locator(url))

    def share(self, message_id: str, user_id: str) -> Record:
        return self.records.share(message_id, user_id)

    def delete(self, message_id: str) -> bool:
        """Delete a message (resolving drifted ids) and its keys."""
        record = self.records.find(message_id)
        if record is None:
            return False
        return self.records.delete(record.id)

    def stats(self) -> StorageStats:
        return StorageStats(messages=self.records.count(), keys=self.vault.count())
