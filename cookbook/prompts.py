"""Prompt definitions for the recipe model calls."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .llm import FunctionDefinition
from .models import Recipe, SynthesizedRecipe


class OrderDetails(Protocol):
    """Anything describing a cookbook order well enough to render it."""

    def to_markdown(self) -> str:
        ...


def _object_schema(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

RELEVANCY_SCALE = """
    - 0: The recipe is for something else entirely.
    - 1-29: Not relevant.
    - 30-49: Somewhat relevant to the query.
    - 50-69: Similar enough.
    - 70-79: Relevant.
    - 80-99: Expected to be a top search result.
    - 100: Perfect match, exactly the same.
"""


class PromptBase:
    name = ""
    description = ""
    model: Optional[str] = None
    system_prompt = ""

    def get_function(self) -> FunctionDefinition:
        raise NotImplementedError


class RankRecipePrompt(PromptBase):
    name = "Rank Recipe"
    description = "Score how relevant a recipe is for a search query"
    system_prompt = (
        "You are a culinary search assistant. Given a search query and a recipe, "
        "score from 0 to 100 how well the recipe satisfies the query using this scale:\n"
        f"{RELEVANCY_SCALE}\n"
        "Judge by the dish itself: title, ingredients and directions. Ignore formatting."
    )

    def get_user_prompt(
        self, recipe: Recipe, query: str, requested_recipe_name: Optional[str] = None
    ) -> str:
        requested = ""
        if requested_recipe_name and requested_recipe_name.strip().lower() != query:
            requested = f"Originally requested recipe: '{requested_recipe_name}'\n"
        return (
            f"Query: '{query}'\n{requested}\n"
            "Recipe:\n```json\n"
            f"{json.dumps(recipe.as_source_record(), ensure_ascii=False)}\n```"
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="RankRecipe",
            description="Score the relevancy of the recipe for the query",
            parameters=_object_schema(
                {"score": {"type": "integer", "description": "Relevancy from 0 to 100"}}
            ),
            strict=True,
        )


class CleanRecipePrompt(PromptBase):
    name = "Clean Recipe"
    description = "Normalize scraped recipe content"
    system_prompt = (
        "You clean up recipe data scraped from websites. Fix encoding problems, strip "
        "advertising, navigation text and author commentary, keep one ingredient per "
        "entry and one step per direction without numbering. Express timings such as "
        "'15 minutes' and servings as a short phrase. Never invent content: use an empty "
        "string when a field is unknown."
    )

    def get_user_prompt(self, recipe: Recipe) -> str:
        return (
            "Recipe data:\n```json\n"
            f"{json.dumps(recipe.as_source_record(), ensure_ascii=False)}\n```"
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="CleanRecipe",
            description="Return the cleaned recipe fields",
            parameters=_object_schema(
                {
                    "title": _STRING,
                    "description": _STRING,
                    "servings": _STRING,
                    "prep_time": _STRING,
                    "cook_time": _STRING,
                    "total_time": _STRING,
                    "ingredients": _STRING_LIST,
                    "directions": _STRING_LIST,
                    "notes": _STRING,
                }
            ),
            strict=True,
        )


class RecipeNamerPrompt(PromptBase):
    name = "Recipe Namer"
    description = "Assign a canonical index title and aliases to a recipe"
    system_prompt = (
        "You organize a recipe library. Give the recipe a short, generic index title "
        "naming the dish (for example 'Chicken Curry' rather than 'Mom's Best Weeknight "
        "Chicken Curry') so variants of the same dish share it. Also list common "
        "alternative names people would search for."
    )

    def get_user_prompt(self, recipe: Recipe) -> str:
        return (
            f"Title: '{recipe.title or ''}'\n"
            f"Description: '{recipe.description or ''}'\n"
            f"Ingredients: {json.dumps(recipe.ingredients, ensure_ascii=False)}"
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="NameRecipe",
            description="Provide the index title and aliases of the recipe",
            parameters=_object_schema({"index_title": _STRING, "aliases": _STRING_LIST}),
            strict=True,
        )


class ChooseRecipesPrompt(PromptBase):
    name = "Choose Recipes"
    description = "Select the most relevant recipe URLs from search results"
    system_prompt = (
        "You select the most relevant recipe URLs from search results.\n"
        "1. Analyze the query to understand the recipe requirements.\n"
        "2. Evaluate each URL using any context it carries.\n"
        "3. Prefer the most relevant URLs and leave out irrelevant ones.\n"
        "4. When URLs carry no meaningful context (only ids), select the first ones.\n"
        "5. Select at most the number of URLs requested in the user prompt.\n"
        "Use this relevancy scale:\n"
        f"{RELEVANCY_SCALE}\n"
        "Respond with the indices of the selected URLs ranked by relevancy."
    )

    def get_user_prompt(
        self, query: str, urls: Sequence[str], count: int, acceptable_score: int
    ) -> str:
        url_list = "\n".join(f"{index}. {url}" for index, url in enumerate(urls, start=1))
        return (
            f"Query: '{query}'\n"
            f"Acceptable Score: '{acceptable_score}'\n\n"
            f"URLs:\n{url_list}\n\n"
            f"Select the top {count} most relevant URLs and exclude anything seemingly irrelevant."
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="SelectTopRecipes",
            description="Select the indices of the most relevant recipe URLs",
            parameters=_object_schema(
                {
                    "selected_indices": {
                        "type": "array",
                        "items": {"type": "integer"},
                        "description": "1-based indices of the selected URLs ranked by relevancy",
                    }
                }
            ),
            strict=True,
        )


class AlternativeQueryPrompt(PromptBase):
    name = "Alternative Query Generator"
    description = "Suggest a broader search query after failed recipe searches"
    system_prompt = (
        "You help refine recipe search queries. Earlier searches for the requested "
        "recipe found nothing. Generate ONE new, more generic query likely to find "
        "relevant recipes: keep the core dish, drop adjectives, brand names and "
        "cooking methods unless essential, and make it broader than the previous attempts.\n\n"
        "Example: 'Grandma's Best Old-Fashioned Apple Pie' -> 'Apple Pie'\n"
        "Example: 'Luigi's Veggie Power-Up Pizza' -> 'Vegetable Pizza'"
    )

    def get_user_prompt(self, recipe_name: str, previous_attempts: List[str]) -> str:
        if previous_attempts:
            attempts = "Previous attempts were: '" + "', '".join(previous_attempts) + "'"
        else:
            attempts = "This is the first attempt"
        return (
            f"Original recipe name: '{recipe_name}'. {attempts}. "
            "Please provide a more generic search query."
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="GenerateAlternativeQuery",
            description="Provide a single, more generic search query",
            parameters=_object_schema({"new_query": _STRING}),
            strict=True,
        )


class SynthesizeRecipePrompt(PromptBase):
    name = "Recipe Maker"
    description = "Synthesize a new recipe from existing recipes and a cookbook order"
    system_prompt = (
        "You create customized recipes for a personalized cookbook.\n"
        "1. Review the cookbook order: dietary restrictions, allergies, skill level and goals.\n"
        "2. Use the provided web sourced recipes as inspiration, mixing and matching elements.\n"
        "3. Blend them into the requested recipe, scaling ingredients to the desired servings.\n"
        "4. Always adapt the recipe to the user's allergies and offer substitutions where "
        "sources conflict with dietary restrictions.\n"
        "5. Fill out every field. Do not number directions with the word 'Step'.\n"
        "6. List in inspired_by the URLs of the source recipes that contributed.\n"
        "7. The recipe will be reviewed; when given suggestions, submit a new revision."
    )

    def get_user_prompt(
        self, recipe_name: str, recipes: Sequence[Recipe], order: OrderDetails
    ) -> str:
        sources = [recipe.as_source_record() for recipe in recipes]
        return (
            f"Cookbook Order:\n```md\n{order.to_markdown()}\n```\n\n"
            f"Recipe data:\n```json\n{json.dumps(sources, ensure_ascii=False)}\n```\n\n"
            f"Please synthesize a personalized recipe for '{recipe_name}'. Thank you."
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="SynthesizeRecipe",
            description="Submit the synthesized recipe",
            parameters=_object_schema(
                {
                    "title": {"type": "string", "description": "The requested recipe name."},
                    "description": {"type": "string", "description": "A preface to the recipe."},
                    "servings": _STRING,
                    "prep_time": _STRING,
                    "cook_time": _STRING,
                    "total_time": _STRING,
                    "ingredients": _STRING_LIST,
                    "directions": _STRING_LIST,
                    "inspired_by": _STRING_LIST,
                    "notes": _STRING,
                }
            ),
            strict=True,
        )

    @staticmethod
    def revision_request(analysis: Dict[str, Any]) -> str:
        return (
            "A new revision is required. Refer to the QA analysis:\n"
            f"```json\n{json.dumps(analysis, ensure_ascii=False)}\n```"
        )


class AnalyzeRecipePrompt(PromptBase):
    name = "Recipe Analyzer"
    description = "Review a synthesized recipe against the cookbook order"
    system_prompt = (
        "You rigorously review synthesized recipes for a personalized cookbook and work "
        "iteratively with the recipe synthesizer until the recipe is good enough.\n"
        "Score each recipe from 0 to 100:\n"
        "    - 0-50: Significant issues or misalignment with requirements\n"
        "    - 51-70: Notable problems, some alignment\n"
        "    - 71-85: Generally good, minor issues\n"
        "    - 86-100: Excellent, fully aligned\n"
        "Prioritize dietary restrictions and allergies, then theme, skill level and time "
        "constraints. Provide a strict analysis and clear, actionable suggestions. On each "
        "revision compare against the previous version."
    )

    def get_user_prompt(
        self, recipe: SynthesizedRecipe, order: OrderDetails, recipe_name: str
    ) -> str:
        return (
            f"<requested-recipe-name>{recipe_name}</requested-recipe-name>\n"
            "<recipe-data>\n```json\n"
            f"{json.dumps(recipe.as_record(), ensure_ascii=False)}\n```\n</recipe-data>\n"
            f"<cookbook-order>\n```md\n{order.to_markdown()}\n```\n</cookbook-order>\n"
            "<goal>Analyze the recipe and provide feedback on its quality and relevancy</goal>"
        )

    def get_function(self) -> FunctionDefinition:
        return FunctionDefinition(
            name="AnalyzeRecipe",
            description="Submit the quality assessment of the synthesized recipe",
            parameters=_object_schema(
                {
                    "quality_score": {
                        "type": "integer",
                        "description": "Overall quality from 0 to 100",
                    },
                    "analysis": _STRING,
                    "suggestions": _STRING,
                }
            ),
            strict=True,
        )
