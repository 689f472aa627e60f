"""Identity collaborator interface.

Account and session management live outside this package. The coordinator
only needs the current user id and ownership/sharing facts about a record,
consumed read-only through this protocol.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ephemeral_notes.models import Record


@runtime_checkable
class Identity(Protocol):
    """Read-only view of the signed-in user."""

    def current_user_id(self) -> Optional[str]:
        """Return the signed-in user's id, or None when anonymous."""
        ...

    def is_owner(self, record: Record, user_id: str) -> bool:
        """True if user_id created the record."""
        ...

    def is_shared_with(self, record: Record, user_id: str) -> bool:
        """True if the record was shared with user_id."""
        ...


class StaticIdentity:
    """Identity fixed at construction, answering from the record's own fields."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def is_owner(self, record: Record, user_id: str) -> bool:
        return record.owner_id is not None and record.owner_id == user_id

    def is_shared_with(self, record: Record, user_id: str) -> bool:
        return user_id in record.shared_with


ANONYMOUS = StaticIdentity(None)


def has_access(identity: Identity, record: Record) -> bool:
    """True if the current user owns the record or it was shared with them."""
    user_id = identity.current_user_id()
    if not user_id:
        return False
    return identity.is_owner(record, user_id) or identity.is_shared_with(record, user_id)
