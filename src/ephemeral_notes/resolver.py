"""Identifier reconciliation.

Message ids can drift between storage backends (truncated, re-cased). The
resolver ranks stored ids against a requested id and reports how the winner
was found. It only picks *which* entry to try; whether the entry is right is
decided later by AEAD authentication, never by this module.

Tiers, tried in order:
1. EXACT: identical id
2. CASE_INSENSITIVE: ids equal ignoring case
3. PREFIX: the fixed-length prefix of the requested id is stored verbatim
   (only when a prefix length is given)
4. PARTIAL: similarity score, see ``similarity``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

MIN_MATCH_LENGTH = 10
BEGINNING_BONUS = 10


class MatchKind(str, Enum):
    """How a requested id was reconciled with a stored id."""

    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"
    PREFIX = "prefix"
    PARTIAL = "partial"
    NONE = "none"


@dataclass(frozen=True)
class Match:
    """Result of resolving a requested id against stored ids."""

    kind: MatchKind
    candidate: Optional[str] = None
    confidence: int = 0

    @property
    def found(self) -> bool:
        return self.kind is not MatchKind.NONE

    @property
    def is_fuzzy(self) -> bool:
        return self.kind in (MatchKind.PREFIX, MatchKind.PARTIAL)


NO_MATCH = Match(MatchKind.NONE)


def longest_common_substring(a: str, b: str) -> int:
    """Length of the longest substring shared by a and b."""
    if not a or not b:
        return 0
    best = 0
    previous = [0] * (len(b) + 1)
    for ch_a in a:
        current = [0] * (len(b) + 1)
        for j, ch_b in enumerate(b, start=1):
            if ch_a == ch_b:
                current[j] = previous[j - 1] + 1
                if current[j] > best:
                    best = current[j]
        previous = current
    return best


def similarity(query: str, candidate: str, min_length: int = MIN_MATCH_LENGTH) -> int:
    """Confidence that candidate is the id query was derived from.

    Score is the longest shared substring plus a bonus when either string
    starts with the other's first ``min_length`` characters. Returns 0 when
    the shared substring is shorter than ``min_length``.
    """
    shared = longest_common_substring(query, candidate)
    if shared < min_length:
        return 0
    head_q = query[:min_length]
    head_c = candidate[:min_length]
    beginning = candidate.startswith(head_q) or query.startswith(head_c)
    return shared + (BEGINNING_BONUS if beginning else 0)


def _newest(ids: List[str], recency: Optional[Mapping[str, datetime]]) -> str:
    if not recency or len(ids) == 1:
        return ids[0]
    return max(ids, key=lambda i: (recency.get(i) is not None, recency.get(i) or datetime.min))


def rank(
    query: str,
    candidates: Iterable[str],
    min_length: int = MIN_MATCH_LENGTH,
) -> List[Match]:
    """Score every candidate, dropping those below the threshold.

    Returns PARTIAL matches ordered by descending confidence.
    """
    scored = []
    for candidate in candidates:
        confidence = similarity(query, candidate, min_length)
        if confidence > 0:
            scored.append(Match(MatchKind.PARTIAL, candidate, confidence))
    scored.sort(key=lambda m: m.confidence, reverse=True)
    return scored


def resolve(
    query: str,
    candidates: Iterable[str],
    recency: Optional[Mapping[str, datetime]] = None,
    prefix_length: Optional[int] = None,
    min_length: int = MIN_MATCH_LENGTH,
) -> Match:
    """Resolve a requested id to the best stored candidate.

    Args:
        query: The requested id (whitespace is trimmed).
        candidates: Stored ids to consider.
        recency: Optional id -> created_at map; ties go to the newest.
        prefix_length: Enables the PREFIX tier when set.
        min_length: Minimum shared substring for a PARTIAL match.

    Returns:
        The winning Match, or NO_MATCH.
    """
    query = query.strip()
    if not query:
        return NO_MATCH

    pool = list(candidates)
    if query in pool:
        return Match(MatchKind.EXACT, query)

    lowered = query.lower()
    folded = [c for c in pool if c.lower() == lowered]
    if folded:
        return Match(MatchKind.CASE_INSENSITIVE, _newest(folded, recency))

    if prefix_length:
        prefix = query[:prefix_length]
        if prefix != query and prefix in pool:
            return Match(MatchKind.PREFIX, prefix)

    ranked = rank(query, pool, min_length)
    if not ranked:
        return NO_MATCH

    top = ranked[0].confidence
    tied = [m.candidate for m in ranked if m.confidence == top]
    winner = _newest(tied, recency)
    logger.debug(
        f"Partial id match for {query}: {winner} (confidence {top}, {len(tied)} tied)"
    )
    return Match(MatchKind.PARTIAL, winner, top)
