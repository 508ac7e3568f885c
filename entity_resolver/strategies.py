"""Fuzzy matching strategies.

The resolver's control flow (SKU, exact name, preferred vendor, fuzzy,
fallback) never changes; only the fuzzy step is pluggable.
"""

from typing import Iterable, Optional, Protocol, Tuple, TypeVar

from entity_resolver.normalize import (
    calculate_token_similarity,
    normalize_name,
    tokenize_name,
)


T = TypeVar("T")


class MatchStrategy(Protocol):
    """Scores how well an extracted name matches a registry name."""

    def score(self, query: str, candidate: str) -> float:
        """Return a score in [0, 1]; 0 means no match."""
        ...


class SubstringMatchStrategy:
    """Bidirectional substring containment on normalized names.

    "acme" vs "acme corp" scores len("acme") / len("acme corp").
    """

    def score(self, query: str, candidate: str) -> float:
        q = normalize_name(query)
        c = normalize_name(candidate)
        if not q or not c:
            return 0.0
        if q == c:
            return 1.0
        if q in c or c in q:
            return min(len(q), len(c)) / max(len(q), len(c))
        return 0.0


class TokenSimilarityStrategy:
    """Token-set similarity with first-token and partial-token bonuses."""

    def __init__(self, threshold: float = 0.6):
        self.threshold = threshold

    def score(self, query: str, candidate: str) -> float:
        similarity = calculate_token_similarity(tokenize_name(query), tokenize_name(candidate))
        return similarity if similarity >= self.threshold else 0.0


def best_match(
    strategy: MatchStrategy,
    query: str,
    candidates: Iterable[T],
    name_of,
) -> Optional[Tuple[T, float]]:
    """Highest-scoring candidate, first one wins ties; None if nothing scores above 0."""
    best: Optional[Tuple[T, float]] = None
    for candidate in candidates:
        score = strategy.score(query, name_of(candidate))
        if score > 0 and (best is None or score > best[1]):
            best = (candidate, score)
    return best
