"""Share link handling.

A message is addressed by ``<base_url>/view/<message_id>#<key>``. The key
rides in the fragment, which is never sent to storage or over the network.
The viewer reads the fragment once and clears it after a successful decrypt
so the key does not linger in history or copied links.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit, urlunsplit

VIEW_SEGMENT = "view"


def build_share_url(base_url: str, message_id: str, key_text: str) -> str:
    """Compose the link handed to a recipient."""
    return f"{base_url.rstrip('/')}/{VIEW_SEGMENT}/{message_id}#{key_text}"


class Locator:
    """The viewer's current location, with a read-once key fragment."""

    def __init__(self, url: str):
        parts = urlsplit(url.strip())
        self._scheme = parts.scheme
        self._netloc = parts.netloc
        self._path = parts.path
        self._query = parts.query
        self._fragment: Optional[str] = parts.fragment or None
        self._fragment_read = False

    @property
    def message_id(self) -> Optional[str]:
        """The id segment following ``/view/``, if present."""
        segments = [s for s in self._path.split("/") if s]
        for i, segment in enumerate(segments[:-1]):
            if segment == VIEW_SEGMENT:
                return segments[i + 1]
        return None

    @property
    def has_fragment(self) -> bool:
        return self._fragment is not None

    def take_key(self) -> Optional[str]:
        """Read the fragment key. Only the first call returns it."""
        if self._fragment_read:
            return None
        self._fragment_read = True
        return self._fragment.strip() if self._fragment else None

    def clear_fragment(self) -> None:
        """Drop the key from the visible location."""
        self._fragment = None

    @property
    def url(self) -> str:
        return urlunsplit(
            (self._scheme, self._netloc, self._path, self._query, self._fragment or "")
        )
