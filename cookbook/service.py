"""Recipe retrieval orchestration: local search, ranking, scraping and synthesis."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Sequence

from .agents import CritiqueAgent, DraftingAgent, SynthesisSession
from .cancel import CancellationToken
from .config import RecipeConfig
from .llm import LlmService
from .models import AlternativeQueryResult, Recipe, RelevancyResult, SynthesizedRecipe
from .parallel import parallel_for_each
from .prompts import AlternativeQueryPrompt, OrderDetails, RankRecipePrompt
from .repository import RecipeFileRepository
from .searcher import normalise_query
from .webscraper import WebScraperService

logger = logging.getLogger(__name__)

RELAXATION_STEP = 5


class NoRecipeError(RuntimeError):
    """Raised when every search attempt for a recipe came back empty."""

    def __init__(self, previous_attempts: List[str]) -> None:
        super().__init__("No recipes found")
        self.previous_attempts = list(previous_attempts)


def _score(recipe: Recipe, query: str) -> int:
    score = recipe.relevancy_score(query)
    return score if score is not None else 0


class RecipeService:
    """Finds qualifying recipes for a query and synthesizes new ones."""

    def __init__(
        self,
        repository: RecipeFileRepository,
        webscraper: WebScraperService,
        llm: LlmService,
        config: Optional[RecipeConfig] = None,
        rank_prompt: Optional[RankRecipePrompt] = None,
        alternative_query_prompt: Optional[AlternativeQueryPrompt] = None,
        drafting_agent_factory: Optional[Callable[[], DraftingAgent]] = None,
        critique_agent_factory: Optional[Callable[[], CritiqueAgent]] = None,
    ) -> None:
        self._repository = repository
        self._webscraper = webscraper
        self._llm = llm
        self._config = config or RecipeConfig()
        self._rank_prompt = rank_prompt or RankRecipePrompt()
        self._alternative_query_prompt = alternative_query_prompt or AlternativeQueryPrompt()
        self._drafting_agent_factory = drafting_agent_factory or (lambda: DraftingAgent(llm))
        self._critique_agent_factory = critique_agent_factory or (lambda: CritiqueAgent(llm))

    def get_recipes_by_name(
        self,
        requested_recipe_name: str,
        acceptable_score: Optional[int] = None,
        conversation_id: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[Recipe]:
        """Search for ``requested_recipe_name``, relaxing and rephrasing on misses."""

        search_query = normalise_query(requested_recipe_name)
        score = self._config.acceptable_score_threshold if acceptable_score is None else acceptable_score

        recipes = self.get_recipes(
            search_query,
            scrape=True,
            acceptable_score=score,
            requested_recipe_name=requested_recipe_name,
            cancellation=cancellation,
        )

        previous_attempts: List[str] = []
        while not recipes:
            previous_attempts.append(search_query)
            logger.warning(
                "[%s] - No recipes found using '%s'", requested_recipe_name, search_query
            )

            if len(previous_attempts) + 1 > self._config.max_new_recipe_name_attempts:
                logger.error(
                    "[%s] - Aborting recipe searching after %d attempts",
                    requested_recipe_name,
                    len(previous_attempts),
                )
                raise NoRecipeError(previous_attempts)

            score -= RELAXATION_STEP
            recipes = self.get_recipes(
                search_query,
                scrape=False,
                acceptable_score=score,
                requested_recipe_name=requested_recipe_name,
                cancellation=cancellation,
            )
            if recipes:
                break

            search_query = normalise_query(
                self._alternative_query(requested_recipe_name, previous_attempts, conversation_id)
            ) or normalise_query(requested_recipe_name)
            logger.info(
                "[%s] - Attempting an alternative search query: '%s'. Acceptable score of %d.",
                requested_recipe_name,
                search_query,
                score,
            )
            recipes = self.get_recipes(
                search_query,
                scrape=True,
                acceptable_score=score,
                requested_recipe_name=requested_recipe_name,
                cancellation=cancellation,
            )

        return recipes

    def _alternative_query(
        self, recipe_name: str, previous_attempts: List[str], conversation_id: Optional[str]
    ) -> str:
        if not conversation_id:
            logger.warning(
                "[%s] - Cannot continue conversation without a conversation id", recipe_name
            )
            return recipe_name

        prompt = self._alternative_query_prompt
        result = self._llm.call_function(
            prompt.system_prompt,
            prompt.get_user_prompt(recipe_name, previous_attempts),
            prompt.get_function(),
            conversation_id=conversation_id,
        )
        return AlternativeQueryResult.from_record(result.data).new_query.strip()

    def get_recipes(
        self,
        query: str,
        scrape: bool = True,
        acceptable_score: Optional[int] = None,
        required_count: Optional[int] = None,
        requested_recipe_name: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[Recipe]:
        query = normalise_query(query)
        score = self._config.acceptable_score_threshold if acceptable_score is None else acceptable_score
        needed = required_count or self._config.recipes_to_return_per_retrieval
        to_retrieve = max(needed, self._config.max_search_results)

        recipes = self._repository.search_recipes(query, score, to_retrieve, cancellation)
        if recipes:
            logger.info("Retrieved %d cached recipes for query '%s'.", len(recipes), query)

        cached = sorted(
            (recipe for recipe in recipes if recipe.is_relevant(query, score)),
            key=lambda recipe: _score(recipe, query),
            reverse=True,
        )
        if len(cached) >= needed:
            return cached[:needed]

        self._rank_unranked(recipes, query, score, requested_recipe_name, cancellation)

        qualifying = sum(1 for recipe in recipes if recipe.is_relevant(query, score))
        if scrape and qualifying < needed:
            scraped = self._webscraper.scrape_for_recipes(
                query, score, needed, cancellation=cancellation
            )
            known = {recipe.id for recipe in recipes}
            new_recipes = [
                Recipe.from_scraped(item)
                for item in scraped
                if item.id not in known and not self._repository.contains_recipe(item.id)
            ]
            logger.info("Adding %d scraped recipes for query '%s'", len(new_recipes), query)
            self._rank_unranked(new_recipes, query, score, requested_recipe_name, cancellation)
            recipes.extend(new_recipes)
            recipes.sort(key=lambda recipe: _score(recipe, query), reverse=True)

        if recipes:
            self._repository.add_update_recipes(recipes)

        return [recipe for recipe in recipes if recipe.is_relevant(query, score)][:needed]

    def _rank_unranked(
        self,
        recipes: List[Recipe],
        query: str,
        acceptable_score: int,
        requested_recipe_name: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        """Rank recipes without a score for ``query`` and sort ``recipes`` in place."""

        unranked = [recipe for recipe in recipes if recipe.relevancy_score(query) is None]
        if unranked:
            self.rank_recipes(unranked, query, acceptable_score, requested_recipe_name, cancellation)
        recipes.sort(key=lambda recipe: _score(recipe, query), reverse=True)

    def rank_recipes(
        self,
        recipes: Sequence[Recipe],
        query: str,
        acceptable_score: Optional[int] = None,
        requested_recipe_name: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        """Score ``recipes`` for ``query``, stopping once enough of them qualify.

        Ranking errors propagate to the caller.
        """

        query = normalise_query(query)
        threshold = self._config.acceptable_score_threshold if acceptable_score is None else acceptable_score
        token = CancellationToken.linked(cancellation)
        qualified: List[Recipe] = []
        lock = threading.Lock()

        def _rank(recipe: Recipe, item_token: CancellationToken) -> None:
            if item_token.cancelled:
                return
            if recipe.is_relevant(query, threshold):
                return
            try:
                recipe.relevancy[query] = self._rank_recipe(recipe, query, requested_recipe_name)
            except Exception:
                logger.exception("Error ranking recipe: %s", recipe.id)
                raise
            if recipe.relevancy[query].score < threshold:
                return
            with lock:
                qualified.append(recipe)
                if len(qualified) >= self._config.recipes_to_return_per_retrieval:
                    token.request_cancel()

        parallel_for_each(list(recipes), _rank, self._config.max_parallel_tasks, token)

    def _rank_recipe(
        self, recipe: Recipe, query: str, requested_recipe_name: Optional[str]
    ) -> RelevancyResult:
        prompt = self._rank_prompt
        result = self._llm.call_function(
            prompt.system_prompt,
            prompt.get_user_prompt(recipe, query, requested_recipe_name),
            prompt.get_function(),
        )
        relevancy = RelevancyResult.from_record(result.data)
        relevancy.query = query
        logger.info("Relevancy of %s for '%s': %d", recipe.id, query, relevancy.score)
        return relevancy

    def synthesize_recipe(
        self,
        recipes: List[Recipe],
        order: OrderDetails,
        recipe_name: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> SynthesizedRecipe:
        logger.info("[%s] Synthesizing using %d recipes", recipe_name, len(recipes))
        session = SynthesisSession(
            self._drafting_agent_factory(),
            self._critique_agent_factory(),
            quality_threshold=self._config.synthesis_quality_threshold,
            max_attempts=self._config.max_synthesis_attempts,
            cancellation=cancellation,
        )
        recipe = session.run(recipe_name, recipes, order)
        recipe.image_urls = self._image_urls(recipes, recipe.inspired_by)
        return recipe

    @staticmethod
    def _image_urls(recipes: Sequence[Recipe], inspired_by: Sequence[str]) -> List[str]:
        sources = [recipe for recipe in recipes if recipe.recipe_url in inspired_by] or list(recipes)
        urls: List[str] = []
        for recipe in sources:
            if recipe.image_url and recipe.image_url not in urls:
                urls.append(recipe.image_url)
        return urls
