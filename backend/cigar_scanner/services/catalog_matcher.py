"""
Cigar catalog matching.

Tiered lookup used by the recognition pipeline:
1. Result cache (verified details recently looked up)
2. Exact match on the normalized (brand, name) key
3. Keyword fuzzy match, accepted only at similarity >= 0.8

Similarity is a linear score over brand equality/containment,
name equality/containment and shared keywords (see calculate_similarity).
Ties are broken by rapidfuzz token_sort_ratio on the full names,
then by lowest catalog id.
"""

import logging
from typing import Optional

from rapidfuzz import fuzz

from ..config import Config
from ..models.records import CatalogEntry, FuzzyMatch
from ..normalization import generate_search_keywords, normalize_name
from .catalog_store import CatalogStore
from .result_cache import CacheProtocol

logger = logging.getLogger(__name__)

BRAND_EXACT_POINTS = 50
BRAND_PARTIAL_POINTS = 30
NAME_EXACT_POINTS = 50
NAME_PARTIAL_POINTS = 20
KEYWORD_POINTS = 5
KEYWORD_POINTS_CAP = 20


def _contains_either(a: str, b: str) -> bool:
    # Empty strings would "contain" each other trivially
    return bool(a) and bool(b) and (a in b or b in a)


def calculate_similarity(
    input_brand: str,
    input_name: str,
    candidate: CatalogEntry,
) -> float:
    """
    Score a catalog candidate against an input (brand, name) in [0, 1].

    +50 brand equal, else +30 if one contains the other
    +50 name equal, else +20 if one contains the other
    +5 per input keyword present on the candidate, capped at +20
    """
    input_nb = normalize_name(input_brand)
    input_nn = normalize_name(input_name)
    candidate_nb = candidate.normalized_brand or normalize_name(candidate.brand)
    candidate_nn = candidate.normalized_name or normalize_name(candidate.name)

    score = 0
    if input_nb and input_nb == candidate_nb:
        score += BRAND_EXACT_POINTS
    elif _contains_either(input_nb, candidate_nb):
        score += BRAND_PARTIAL_POINTS

    if input_nn and input_nn == candidate_nn:
        score += NAME_EXACT_POINTS
    elif _contains_either(input_nn, candidate_nn):
        score += NAME_PARTIAL_POINTS

    candidate_keywords = set(candidate.search_keywords)
    matches = sum(
        1 for keyword in generate_search_keywords(input_brand, input_name)
        if keyword in candidate_keywords
    )
    score += min(matches * KEYWORD_POINTS, KEYWORD_POINTS_CAP)

    return min(score / 100.0, 1.0)


class CatalogMatcher:
    """
    Looks up catalog entries for recognized (brand, name) pairs.

    Usage:
        matcher = CatalogMatcher(store, cache)
        entry = matcher.get_details("Montecristo", "Montecristo No.2")
    """

    def __init__(
        self,
        store: CatalogStore,
        cache: Optional[CacheProtocol[CatalogEntry]] = None,
        accept_threshold: float = Config.FUZZY_ACCEPT_THRESHOLD,
    ):
        self.store = store
        self.cache = cache
        self.accept_threshold = accept_threshold

    def find_exact(self, brand: str, name: str) -> Optional[CatalogEntry]:
        """Equality lookup on normalized brand + normalized name."""
        normalized_brand = normalize_name(brand)
        normalized_name = normalize_name(name)
        if not normalized_name:
            return None
        return self.store.find_by_key(normalized_brand, normalized_name)

    def find_fuzzy(self, brand: str, name: str) -> Optional[FuzzyMatch]:
        """
        Best keyword-overlap candidate, or None if nothing shares a keyword.

        The match is returned whatever its similarity; callers decide
        whether it is good enough.
        """
        keywords = generate_search_keywords(brand, name)[:Config.FUZZY_QUERY_KEYWORDS]
        if not keywords:
            return None

        candidates = self.store.find_by_keywords(keywords, limit=Config.FUZZY_QUERY_LIMIT)
        if not candidates:
            return None

        query = f"{brand} {name}".lower()
        scored = []
        for candidate in candidates:
            similarity = calculate_similarity(brand, name, candidate)
            tie_break = fuzz.token_sort_ratio(query, f"{candidate.brand} {candidate.name}".lower())
            scored.append((similarity, tie_break, candidate))

        scored.sort(key=lambda item: (-item[0], -item[1], item[2].id or 0))
        similarity, _, best = scored[0]
        logger.debug(
            f"Fuzzy match for '{brand} / {name}': {best.name} "
            f"(similarity={similarity:.2f}, {len(candidates)} candidates)"
        )
        return FuzzyMatch(entry=best, similarity=similarity)

    def get_details(self, brand: str, name: str) -> Optional[CatalogEntry]:
        """Cache, then exact match, then fuzzy match at or above the threshold."""
        if self.cache is not None:
            cached = self.cache.get(brand, name)
            if cached is not None:
                return cached

        entry = self.find_exact(brand, name)
        if entry is not None:
            logger.info(f"Exact catalog match: {entry.brand} / {entry.name}")
            self._remember(brand, name, entry)
            return entry

        match = self.find_fuzzy(brand, name)
        if match is not None and match.similarity >= self.accept_threshold:
            logger.info(
                f"Fuzzy catalog match: {match.entry.brand} / {match.entry.name} "
                f"(similarity={match.similarity:.2f})"
            )
            self._remember(brand, name, match.entry)
            return match.entry

        return None

    def invalidate(self, brand: str, name: Optional[str] = None) -> None:
        """Drop cached lookups after a catalog change; without name, the whole brand."""
        if self.cache is not None:
            self.cache.clear(brand, name)

    def _remember(self, brand: str, name: str, entry: CatalogEntry) -> None:
        if self.cache is not None:
            self.cache.set(brand, name, entry)
