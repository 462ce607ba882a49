"""In-memory lookup of recipes by title and alias."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Tuple

from .models import Recipe

logger = logging.getLogger(__name__)


class RecipeIndex:
    """Thread-safe map of case-insensitive title/alias keys to recipes by id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._display_keys: Dict[str, str] = {}
        self._recipes: Dict[str, Dict[str, Recipe]] = {}

    @staticmethod
    def _normalise(key: str) -> str:
        return key.strip().lower()

    def add_recipe(self, recipe: Recipe) -> None:
        if not recipe.id:
            raise ValueError("Recipe ID cannot be empty")
        keys = [key for key in (recipe.title, *recipe.aliases) if key and key.strip()]
        if not keys and recipe.index_title:
            keys = [recipe.index_title]
        if not keys:
            raise ValueError("Recipe has no title or alias to index under")
        if not recipe.title:
            logger.warning("Indexing untitled recipe %s (%s) under %s", recipe.id, recipe.recipe_url, keys)

        with self._lock:
            for key in keys:
                normalised = self._normalise(key)
                self._display_keys.setdefault(normalised, key.strip())
                self._recipes.setdefault(normalised, {})[recipe.id] = recipe
        logger.debug("Indexed recipe %s under %d keys", recipe.id, len(keys))

    def try_get_exact_matches(self, key: str) -> Tuple[Optional[Dict[str, Recipe]], bool]:
        with self._lock:
            matches = self._recipes.get(self._normalise(key))
            if matches is None:
                return None, False
            return dict(matches), True

    def get_all_recipes(self) -> List[Tuple[str, Dict[str, Recipe]]]:
        with self._lock:
            return [
                (self._display_keys[normalised], dict(matches))
                for normalised, matches in self._recipes.items()
            ]

    def contains_recipe(self, recipe_id: str) -> bool:
        with self._lock:
            return any(recipe_id in matches for matches in self._recipes.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._recipes)
