"""File backed recipe store with background cleaning, naming and merging."""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional

from .background import BackgroundWorker
from .cancel import CancellationToken
from .config import RecipeConfig
from .index import RecipeIndex
from .llm import ContentFilterError, LlmService
from .models import CleanedRecipe, Recipe, RenamerResult
from .parallel import parallel_for_each
from .prompts import CleanRecipePrompt, RecipeNamerPrompt
from .searcher import RecipeSearcher
from .storage import FileService, sanitize_file_name
from .webscraper import generate_url_fingerprint

logger = logging.getLogger(__name__)


def merge_recipes(existing: List[Recipe], incoming: List[Recipe]) -> List[Recipe]:
    """Merge ``incoming`` into ``existing`` by recipe id.

    A single incoming relevancy entry is spliced into the stored map, while a
    recipe carrying several entries replaces it. Cleaned content replaces
    uncleaned content. Unknown recipes are appended.
    """

    merged: Dict[str, Recipe] = {}
    for recipe in existing:
        if recipe.id:
            merged[recipe.id] = recipe

    for recipe in incoming:
        current = merged.get(recipe.id)
        if current is None:
            merged[recipe.id] = recipe
            continue

        if len(recipe.relevancy) == 1:
            current.relevancy.update(recipe.relevancy)
        elif len(recipe.relevancy) > 1:
            current.relevancy = dict(recipe.relevancy)

        if not current.cleaned and recipe.cleaned:
            current.copy_content_from(recipe)
            current.cleaned = True

    return list(merged.values())


class RecipeFileRepository:
    """Recipe store persisting one JSON batch per index title."""

    def __init__(
        self,
        llm: LlmService,
        config: Optional[RecipeConfig] = None,
        file_service: Optional[FileService] = None,
        index: Optional[RecipeIndex] = None,
        searcher: Optional[RecipeSearcher] = None,
        worker: Optional[BackgroundWorker] = None,
        clean_prompt: Optional[CleanRecipePrompt] = None,
        namer_prompt: Optional[RecipeNamerPrompt] = None,
    ) -> None:
        self._llm = llm
        self._config = config or RecipeConfig()
        self._files = file_service or FileService()
        self._index = index or RecipeIndex()
        self._searcher = searcher or RecipeSearcher(self._index, self._config)
        self._worker = worker or BackgroundWorker()
        self._clean_prompt = clean_prompt or CleanRecipePrompt()
        self._namer_prompt = namer_prompt or RecipeNamerPrompt()
        self._initialized = False
        self._init_lock = threading.Lock()
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._file_locks_guard = threading.Lock()

    @property
    def index(self) -> RecipeIndex:
        return self._index

    def initialize(self) -> None:
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            logger.info("Initializing recipe repository from %s", self._config.output_directory)
            self._load_recipes()
            self._initialized = True
            logger.info("Recipe repository initialized with %d keys", len(self._index))

    def _load_recipes(self) -> None:
        try:
            paths = self._files.list_files(self._config.output_directory)
        except Exception:
            logger.exception("Error loading recipes")
            raise
        logger.info("Found %d recipe files.", len(paths))

        for path in paths:
            try:
                payload = self._files.read_path(path)
                for record in payload or []:
                    self._add_to_index(Recipe.from_record(record))
            except Exception:  # pylint: disable=broad-except
                logger.exception("Error loading recipes from file: %s", path.name)

    def _add_to_index(self, recipe: Recipe) -> bool:
        if not recipe.id:
            if not recipe.recipe_url:
                logger.warning("Recipe with missing ID and URL cannot be added.")
                return False
            recipe.id = generate_url_fingerprint(recipe.recipe_url)
        self._index.add_recipe(recipe)
        return True

    def search_recipes(
        self,
        query: str,
        minimum_score: Optional[int] = None,
        required_count: Optional[int] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[Recipe]:
        if not self._initialized:
            logger.warning("Attempting to search before initialization. Initializing now.")
            self.initialize()
        return self._searcher.search_recipes(query, minimum_score, required_count, cancellation)

    def contains_recipe(self, recipe_id: str) -> bool:
        return self._index.contains_recipe(recipe_id)

    def contains_recipe_url(self, url: str) -> bool:
        return self.contains_recipe(generate_url_fingerprint(url))

    def add_update_recipes(self, recipes: List[Recipe]) -> None:
        """Queue cleaning, naming and persistence of ``recipes``.

        The job works on snapshots taken here, so callers may keep ranking
        the recipes they passed in while the write is pending.
        """

        batch = [recipe.snapshot() for recipe in recipes]
        if not batch:
            return
        self._worker.queue_background_work(lambda token: self._process_batch(batch, token))

    def wait_for_pending_work(self, timeout: Optional[float] = None) -> bool:
        return self._worker.wait_until_idle(timeout)

    def _process_batch(self, recipes: List[Recipe], token: CancellationToken) -> None:
        uncleaned = [recipe for recipe in recipes if not recipe.cleaned]
        if uncleaned:
            parallel_for_each(uncleaned, self._clean_recipe, self._config.max_parallel_tasks, token)

        unnamed = [recipe for recipe in recipes if not recipe.index_title]
        if unnamed:
            parallel_for_each(unnamed, self._name_recipe, self._config.max_parallel_tasks, token)

        groups: Dict[str, List[Recipe]] = defaultdict(list)
        for recipe in recipes:
            if recipe.index_title:
                groups[recipe.index_title].append(recipe)
            else:
                logger.warning("Skipping recipe %s without an index title", recipe.id)

        parallel_for_each(
            list(groups.items()), self._write_group, self._config.max_parallel_tasks, token
        )

    def _clean_recipe(self, recipe: Recipe, token: CancellationToken) -> None:
        if token.cancelled or recipe.cleaned:
            return
        prompt = self._clean_prompt
        try:
            result = self._llm.call_function(
                prompt.system_prompt,
                prompt.get_user_prompt(recipe),
                prompt.get_function(),
                retry_count=0,
            )
        except ContentFilterError as exc:
            logger.warning(
                "Unable to clean recipe %s; flagged by content filtering: %s", recipe.id, exc
            )
            return
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error cleaning recipe with id: %s", recipe.id)
            return

        recipe.apply_cleaned(CleanedRecipe.from_record(result.data))
        logger.info("Cleaned recipe %s", recipe.id)

    def _name_recipe(self, recipe: Recipe, token: CancellationToken) -> None:
        if token.cancelled or recipe.index_title:
            return
        prompt = self._namer_prompt
        try:
            result = self._llm.call_function(
                prompt.system_prompt,
                prompt.get_user_prompt(recipe),
                prompt.get_function(),
            )
            named = RenamerResult.from_record(result.data)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error naming recipe %s", recipe.id)
            return

        if not named.index_title:
            logger.warning("Namer returned no index title for recipe %s", recipe.id)
            return
        logger.info("Recipe %s indexed as %s", recipe.title, named.index_title)
        recipe.set_aliases(named.aliases)
        recipe.index_title = named.index_title
        if recipe.title:
            recipe.title = recipe.title.strip()

    def _lock_for(self, index_title: str) -> threading.Lock:
        # titles that sanitize to the same file name share a lock
        with self._file_locks_guard:
            return self._file_locks[sanitize_file_name(index_title)]

    def _write_group(self, group: tuple, token: CancellationToken) -> None:
        index_title, candidates = group
        recipes: List[Recipe] = []
        for recipe in candidates:
            try:
                if self._add_to_index(recipe):
                    recipes.append(recipe)
            except ValueError as exc:
                logger.warning("Skipping recipe %s (%s): %s", recipe.id, recipe.recipe_url, exc)
        if not recipes:
            return

        try:
            with self._lock_for(index_title):
                stored = self._files.read_from_file(self._config.output_directory, index_title) or []
                existing = [Recipe.from_record(record) for record in stored]
                combined = merge_recipes(existing, recipes)
                self._files.write_to_file(
                    self._config.output_directory,
                    index_title,
                    [recipe.as_record() for recipe in combined],
                )
            logger.info("Wrote %d recipes to %s", len(combined), index_title)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error writing recipes to file: %s", index_title)
