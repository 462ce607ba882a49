"""Recipe retrieval, web discovery and synthesis services."""

from .config import AppConfig, LlmConfig, RecipeConfig, WebscraperConfig
from .models import Recipe, ScrapedRecipe, SynthesizedRecipe
from .repository import RecipeFileRepository
from .service import NoRecipeError, RecipeService
from .webscraper import WebScraperService, generate_url_fingerprint

__all__ = [
    "AppConfig",
    "LlmConfig",
    "NoRecipeError",
    "Recipe",
    "RecipeConfig",
    "RecipeFileRepository",
    "RecipeService",
    "ScrapedRecipe",
    "SynthesizedRecipe",
    "WebScraperService",
    "WebscraperConfig",
    "generate_url_fingerprint",
]
