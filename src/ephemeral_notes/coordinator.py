"""Viewer lifecycle coordinator.

Drives one view attempt through a fixed state machine:

    IDLE -> RESOLVING -> {NOT_FOUND, EXPIRED}
                      -> RESOLVING_KEY -> {MISSING_KEY}
                      -> DECRYPTING -> {DECRYPT_FAILED}
                      -> DECRYPTED -> CONSUMING -> {DONE, EXPIRED}

Every expected failure ends in exactly one terminal state. A failed attempt is
never retried automatically; calling ``view`` again starts a fresh attempt
from RESOLVING. A view is counted only after a successful decrypt, and the
plaintext is returned only when this attempt's view was the one counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ephemeral_notes.crypto import PBKDF2_ITERATIONS, MessageCipher
from ephemeral_notes.errors import (
    CryptoError,
    DecryptionError,
    ErrorKind,
    MissingKeyError,
    NotesError,
    RecordExpiredError,
    RecordNotFoundError,
    StorageError,
)
from ephemeral_notes.identity import ANONYMOUS, Identity, has_access
from ephemeral_notes.locator import Locator
from ephemeral_notes.models import Clock, Record, describe_expiry, utc_now
from ephemeral_notes.records import RecordStore
from ephemeral_notes.vault import KeyVault

logger = logging.getLogger(__name__)


class ViewState(str, Enum):
    """States of a single view attempt."""

    IDLE = "idle"
    RESOLVING = "resolving"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    RESOLVING_KEY = "resolving_key"
    MISSING_KEY = "missing_key"
    DECRYPTING = "decrypting"
    DECRYPT_FAILED = "decrypt_failed"
    DECRYPTED = "decrypted"
    CONSUMING = "consuming"
    DONE = "done"


TERMINAL_STATES = frozenset(
    {
        ViewState.DONE,
        ViewState.NOT_FOUND,
        ViewState.EXPIRED,
        ViewState.MISSING_KEY,
        ViewState.DECRYPT_FAILED,
    }
)

USER_MESSAGES = {
    ViewState.NOT_FOUND: "Message not found. It may have been deleted or expired.",
    ViewState.EXPIRED: "This message has expired and is no longer available.",
    ViewState.MISSING_KEY: (
        "Missing decryption key. The link may be incomplete or you don't have "
        "access to this message."
    ),
    ViewState.DECRYPT_FAILED: "Failed to decrypt the message. The key may be incorrect.",
}


class KeySource(str, Enum):
    """Where the decryption key came from."""

    FRAGMENT = "fragment"
    VAULT = "vault"
    SHARED = "shared"


@dataclass
class Diagnostic:
    """One timestamped entry in the support trail."""

    timestamp: datetime
    level: str
    message: str

    def __str__(self) -> str:
        prefix = "" if self.level == "info" else f"{self.level.upper()}: "
        return f"{self.timestamp.strftime('%H:%M:%S.%f')[:-3]}: {prefix}{self.message}"


@dataclass
class ViewOutcome:
    """Result of one view attempt.

    Attributes:
        state: Terminal state reached
        message_id: Id as requested by the viewer
        plaintext: Decrypted text, only when state is DONE
        expiry_info: Remaining-views or expiry text from the post-view record
        error: User-facing error text for failure states
        error_kind: Taxonomy kind for failure states
        key_source: Which channel supplied the key, if one was found
        record: Record after the view was counted (DONE only)
        path: Every state visited, in order
        diagnostics: Support trail; never affects control flow
    """

    state: ViewState
    message_id: Optional[str] = None
    plaintext: Optional[str] = None
    expiry_info: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    key_source: Optional[KeySource] = None
    record: Optional[Record] = None
    path: List[ViewState] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is ViewState.DONE

    def raise_for_state(self) -> None:
        """Raise the taxonomy error matching a failure state; no-op on DONE."""
        if self.ok:
            return
        error_cls = _STATE_ERRORS.get(self.state, NotesError)
        raise error_cls(self.error or f"View ended in {self.state.value}")


_STATE_ERRORS = {
    ViewState.NOT_FOUND: RecordNotFoundError,
    ViewState.EXPIRED: RecordExpiredError,
    ViewState.MISSING_KEY: MissingKeyError,
    ViewState.DECRYPT_FAILED: DecryptionError,
}


class _Attempt:
    """Mutable bookkeeping for one run of the state machine."""

    def __init__(self, message_id: Optional[str], clock: Clock):
        self._clock = clock
        self.outcome = ViewOutcome(state=ViewState.IDLE, message_id=message_id)
        self.outcome.path.append(ViewState.IDLE)

    def enter(self, state: ViewState) -> None:
        self.outcome.state = state
        self.outcome.path.append(state)

    def note(self, message: str, level: str = "info") -> None:
        self.outcome.diagnostics.append(Diagnostic(self._clock(), level, message))
        logger.debug(f"[{self.outcome.message_id}] {message}")

    def fail(self, state: ViewState, kind: ErrorKind, detail: str) -> ViewOutcome:
        self.enter(state)
        self.note(detail, "error")
        self.outcome.error = USER_MESSAGES[state]
        self.outcome.error_kind = kind
        logger.info(f"View of {self.outcome.message_id} ended in {state.value}")
        return self.outcome


class LifecycleCoordinator:
    """Runs view attempts against a record store and key vault.

    Example:
        >>> coordinator = LifecycleCoordinator(records, vault)
        >>> outcome = coordinator.view(locator=Locator(share_url))
        >>> outcome.state, outcome.plaintext
        (<ViewState.DONE: 'done'>, 'meet at noon')
    """

    def __init__(
        self,
        records: RecordStore,
        vault: KeyVault,
        identity: Identity = ANONYMOUS,
        iterations: int = PBKDF2_ITERATIONS,
        clock: Clock = utc_now,
        cache_keys: bool = True,
    ):
        self._records = records
        self._vault = vault
        self._identity = identity
        self._iterations = iterations
        self._clock = clock
        self._cache_keys = cache_keys

    def view(
        self,
        message_id: Optional[str] = None,
        locator: Optional[Locator] = None,
    ) -> ViewOutcome:
        """Run one view attempt.

        Args:
            message_id: Id to view. Defaults to the locator's id.
            locator: Viewer location carrying the key fragment, if any.

        Returns:
            ViewOutcome in a terminal state.

        Raises:
            StorageError: If counting the view could not be persisted. The
                plaintext is withheld because the view was not recorded.
        """
        if message_id is None and locator is not None:
            message_id = locator.message_id
        attempt = _Attempt(message_id, self._clock)

        attempt.enter(ViewState.RESOLVING)
        if not message_id:
            return attempt.fail(ViewState.NOT_FOUND, ErrorKind.NOT_FOUND, "No message id provided")
        attempt.note(f"Starting view for message id {message_id}")

        try:
            record = self._records.get(message_id)
        except RecordNotFoundError:
            return attempt.fail(
                ViewState.NOT_FOUND, ErrorKind.NOT_FOUND, f"Message {message_id} not found in storage"
            )
        except StorageError as e:
            return attempt.fail(ViewState.NOT_FOUND, ErrorKind.STORAGE_FAILURE, f"Storage error: {e}")

        attempt.note(
            f"Message found: created {record.created_at.isoformat()}, "
            f"max_views={record.max_views}, current_views={record.current_views}, "
            f"expires_at={record.expires_at.isoformat() if record.expires_at else 'never'}"
        )

        if self._records.is_consumed(record):
            try:
                self._records.delete(record.id)
            except StorageError as e:
                attempt.note(f"Could not delete expired message: {e}", "warning")
            return attempt.fail(
                ViewState.EXPIRED, ErrorKind.EXPIRED, "Message has expired and was deleted"
            )

        attempt.enter(ViewState.RESOLVING_KEY)
        key_text, source = self._resolve_key(attempt, message_id, record, locator)
        if not key_text:
            return attempt.fail(
                ViewState.MISSING_KEY,
                ErrorKind.MISSING_KEY,
                "No decryption key found in link fragment or stored keys",
            )
        attempt.outcome.key_source = source
        attempt.note(f"Key found via {source.value}, length {len(key_text)}")

        attempt.enter(ViewState.DECRYPTING)
        try:
            cipher = MessageCipher.from_text(key_text, iterations=self._iterations)
            plaintext = cipher.open(record.ciphertext)
        except CryptoError as e:
            return attempt.fail(ViewState.DECRYPT_FAILED, e.kind, f"Decryption error: {e}")

        attempt.enter(ViewState.DECRYPTED)
        attempt.note(f"Message decrypted, length {len(plaintext)}", "success")

        attempt.enter(ViewState.CONSUMING)
        try:
            updated = self._records.consume(record.id, expected_views=record.current_views)
        except RecordNotFoundError:
            return attempt.fail(
                ViewState.NOT_FOUND, ErrorKind.NOT_FOUND, "Message was deleted while viewing"
            )
        except RecordExpiredError as e:
            # Another viewer used up the last view while this one was decrypting
            attempt.note(f"View not counted: {e}", "warning")
            try:
                self._records.delete(record.id)
            except StorageError as delete_error:
                attempt.note(f"Could not delete expired message: {delete_error}", "warning")
            return attempt.fail(
                ViewState.EXPIRED, ErrorKind.EXPIRED, "Message was consumed before this view"
            )
        except StorageError as e:
            attempt.note(f"Failed to record view: {e}", "error")
            logger.error(f"Could not record view of {record.id}: {e}")
            raise

        attempt.note(f"View count: {record.current_views} -> {updated.current_views}")

        if (
            source is KeySource.FRAGMENT
            and self._cache_keys
            and not self._records.is_consumed(updated)
        ):
            try:
                self._vault.put(record.id, key_text)
            except StorageError as e:
                attempt.note(f"Could not cache key: {e}", "warning")

        if locator is not None and locator.has_fragment:
            locator.clear_fragment()
            attempt.note("Link fragment cleared")

        attempt.enter(ViewState.DONE)
        outcome = attempt.outcome
        outcome.plaintext = plaintext
        outcome.record = updated
        outcome.expiry_info = describe_expiry(updated)
        if outcome.expiry_info:
            attempt.note(outcome.expiry_info)
        logger.info(f"Viewed message {record.id} ({updated.current_views} views)")
        return outcome

    def _resolve_key(
        self,
        attempt: _Attempt,
        message_id: str,
        record: Record,
        locator: Optional[Locator],
    ) -> tuple[Optional[str], Optional[KeySource]]:
        """Try fragment, then vault, then identity-gated vault lookup."""
        if locator is not None:
            fragment_key = locator.take_key()
            attempt.note(f"Link fragment present: {'yes' if fragment_key else 'no'}")
            if fragment_key:
                return fragment_key, KeySource.FRAGMENT

        try:
            stored = self._vault.get(message_id)
        except StorageError as e:
            attempt.note(f"Key vault unavailable: {e}", "warning")
            stored = None
        if stored:
            return stored, KeySource.VAULT

        user_id = self._identity.current_user_id()
        if not user_id:
            attempt.note("Viewer is not signed in, only the link fragment can supply a key")
            return None, None
        if not has_access(self._identity, record):
            attempt.note("Viewer is signed in but has no relation to this message", "warning")
            return None, None

        attempt.note(
            "Viewer owns this message" if record.owner_id == user_id else "Message shared with viewer"
        )
        try:
            shared = self._vault.get(record.id)
        except StorageError as e:
            attempt.note(f"Key vault unavailable: {e}", "warning")
            shared = None
        if shared:
            return shared, KeySource.SHARED
        attempt.note("Viewer has access but no stored key was found", "warning")
        return None, None
