"""Title and alias based search over the in-memory recipe index."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .cancel import CancellationToken
from .config import RecipeConfig
from .index import RecipeIndex
from .models import Recipe

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalise_query(query: Optional[str]) -> str:
    """Collapse whitespace and lowercase ``query``."""

    if not query or not query.strip():
        return ""
    return _WHITESPACE.sub(" ", query.strip()).lower()


@dataclass(frozen=True)
class SearchMatch:
    recipe: Recipe
    match_score: float
    relevancy_score: float

    @property
    def final_score(self) -> float:
        # 80% model relevancy, 20% title/alias overlap
        return (self.relevancy_score / 100.0 * 0.8) + (self.match_score * 0.2)


def _is_fuzzy_match(value: str, query: str) -> bool:
    normalised = normalise_query(value)
    if not normalised:
        return False
    return query in normalised or normalised in query


def _title_alias_score(recipe: Recipe, query: str) -> float:
    """Fraction of the query words found in the recipe title or aliases."""

    if not query:
        return 0.0
    words = set(normalise_query(recipe.title).split())
    for alias in recipe.aliases:
        words.update(normalise_query(alias).split())
    query_words = query.split()
    matched = sum(1 for word in query_words if word in words)
    return matched / len(query_words)


def _relevancy_score(recipe: Recipe, query: str) -> float:
    if not recipe.relevancy:
        return 0.0
    if query in recipe.relevancy:
        return float(recipe.relevancy[query].score)
    scores = [
        result.score
        for key, result in recipe.relevancy.items()
        if normalise_query(key) == query
    ]
    return float(max(scores)) if scores else 0.0


class RecipeSearcher:
    """Find indexed recipes for a query, preferring already relevant ones."""

    def __init__(self, index: RecipeIndex, config: Optional[RecipeConfig] = None) -> None:
        self._index = index
        self._config = config or RecipeConfig()

    def search_recipes(
        self,
        query: str,
        minimum_score: Optional[int] = None,
        required_count: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[Recipe]:
        fallback_allowed = minimum_score is None or required_count is not None
        count = required_count if required_count is not None else self._config.max_search_results
        query = normalise_query(query)
        self._validate(query, minimum_score, count)

        logger.info(
            "Starting recipe search. Query='%s', MinScore=%s, RequiredCount=%s",
            query,
            minimum_score,
            count,
        )

        results: Dict[str, SearchMatch] = {}

        def _add(recipe: Recipe) -> None:
            results[recipe.id] = SearchMatch(
                recipe=recipe,
                match_score=_title_alias_score(recipe, query),
                relevancy_score=_relevancy_score(recipe, query),
            )

        def _enough() -> bool:
            if minimum_score is None:
                return False
            relevant = sum(1 for match in results.values() if match.relevancy_score >= minimum_score)
            return relevant >= count

        def _cancelled() -> bool:
            return cancellation is not None and cancellation.cancelled

        exact, found = self._index.try_get_exact_matches(query)
        if found:
            for recipe in exact.values():
                _add(recipe)

        indexed = self._index.get_all_recipes()
        distinct = list(self._distinct(matches.values() for _, matches in indexed))

        for recipe in distinct:
            if _cancelled():
                return []
            if recipe.id in results:
                continue
            if any(normalise_query(alias) == query for alias in recipe.aliases):
                _add(recipe)

        if not _enough():
            for key, matches in indexed:
                if _cancelled():
                    return []
                if not _is_fuzzy_match(key, query):
                    continue
                for recipe in matches.values():
                    if recipe.id not in results:
                        _add(recipe)
                if _enough():
                    break

        if not _enough():
            for recipe in distinct:
                if _cancelled():
                    return []
                if recipe.id in results:
                    continue
                if any(_is_fuzzy_match(alias, query) for alias in recipe.aliases):
                    _add(recipe)
                    if _enough():
                        break

        threshold = minimum_score or 0
        relevant = sorted(
            (match for match in results.values() if match.relevancy_score >= threshold),
            key=lambda match: match.final_score,
            reverse=True,
        )
        fallback = sorted(
            (match for match in results.values() if match.relevancy_score < threshold),
            key=lambda match: match.final_score,
            reverse=True,
        )

        combined = [match.recipe for match in relevant[:count]]
        if len(combined) < count and fallback_allowed:
            combined.extend(match.recipe for match in fallback[: count - len(combined)])

        logger.info(
            "Found %d total matches, returning %d (Relevant=%d, Fallback=%d)",
            len(results),
            len(combined),
            len(relevant),
            len(fallback),
        )
        return combined

    @staticmethod
    def _distinct(groups: Iterable[Iterable[Recipe]]) -> Iterable[Recipe]:
        seen = set()
        for group in groups:
            for recipe in group:
                if recipe.id in seen:
                    continue
                seen.add(recipe.id)
                yield recipe

    @staticmethod
    def _validate(query: str, minimum_score: Optional[int], required_count: int) -> None:
        if not query:
            raise ValueError("Search query cannot be empty.")
        if minimum_score is not None and not 0 < minimum_score < 100:
            raise ValueError("Minimum score must be between 1 and 99.")
        if required_count <= 0:
            raise ValueError("Required count must be greater than 0.")
