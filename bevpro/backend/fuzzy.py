"""Free-text name matching for voice lookups.

Transcripts rarely match catalog names exactly ("titos", "bud lite", "vod"), so
every lookup-by-voice goes through :func:`rank`. Scoring is deliberately coarse
and ordered: exact, prefix, word-prefix, substring. Callers that only want one
result take the head of the ranked list.
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")

EXACT = 1.0
PREFIX = 0.9
WORD_PREFIX = 0.8
CONTAINS = 0.7
SECONDARY_WEIGHT = 0.5
THRESHOLD = 0.6


def normalize(text: Optional[str]) -> str:
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def similarity(query: str, target: str) -> float:
    q = normalize(query)
    t = normalize(target)
    if not q or not t:
        return 0.0
    if q == t:
        return EXACT
    if t.startswith(q):
        return PREFIX
    if any(word.startswith(q) for word in t.split()):
        return WORD_PREFIX
    if q in t:
        return CONTAINS
    return 0.0


def score(query: str, primary: str, secondary: Optional[str] = None) -> float:
    best = similarity(query, primary)
    if secondary:
        best = max(best, similarity(query, secondary) * SECONDARY_WEIGHT)
    return best


@dataclass(frozen=True)
class Match(Generic[T]):
    item: T
    score: float


def rank(
    query: str,
    candidates: Iterable[T],
    *,
    name: Callable[[T], str],
    secondary: Optional[Callable[[T], Optional[str]]] = None,
    threshold: float = THRESHOLD,
) -> List[Match[T]]:
    """Score every candidate and return those above ``threshold``, best first.

    ``sorted`` is stable, so equal scores keep candidate order.
    """
    scored: List[Match[T]] = []
    for candidate in candidates:
        s = score(query, name(candidate), secondary(candidate) if secondary else None)
        if s > threshold:
            scored.append(Match(candidate, s))
    return sorted(scored, key=lambda m: m.score, reverse=True)


def best(
    query: str,
    candidates: Iterable[T],
    *,
    name: Callable[[T], str],
    secondary: Optional[Callable[[T], Optional[str]]] = None,
) -> Optional[Match[T]]:
    ranked = rank(query, candidates, name=name, secondary=secondary)
    return ranked[0] if ranked else None


__all__ = ["normalize", "similarity", "score", "rank", "best", "Match", "THRESHOLD"]
