"""Command line interface for recipe retrieval."""
from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from .config import AppConfig
from .env_loader import load_dotenv_if_available
from .llm import LlmService
from .models import Recipe
from .repository import RecipeFileRepository
from .searcher import normalise_query
from .service import NoRecipeError, RecipeService
from .webscraper import SiteSelectorLoader, WebScraperService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find, rank and scrape recipes")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    parser.add_argument(
        "--selectors",
        type=Path,
        default=None,
        help="Path to the site selectors JSON file.",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory holding the recipe JSON batches.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Retrieve recipes for a recipe name.")
    search.add_argument("name", help="Recipe name to look up.")
    search.add_argument("--score", type=int, default=None, help="Acceptable relevancy score.")
    search.add_argument(
        "--no-scrape",
        action="store_true",
        help="Only use recipes already stored locally.",
    )

    scrape = subparsers.add_parser("scrape", help="Scrape recipe sites for a query.")
    scrape.add_argument("query", help="Search query sent to the recipe sites.")
    scrape.add_argument("--site", default=None, help="Restrict scraping to one configured site.")
    scrape.add_argument("--count", type=int, default=None, help="Number of recipes wanted.")
    return parser.parse_args(argv)


class _ContextDefaultsFilter(logging.Filter):
    """Ensure log records contain query/recipe attributes for formatting."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        if not hasattr(record, "query"):
            record.query = "-"
        if not hasattr(record, "recipe"):
            record.recipe = "-"
        return True


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    logging.getLogger("cookbook").setLevel(numeric_level)
    for noisy in ("httpx", "openai", "urllib3"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    root_logger = logging.getLogger()
    if not any(getattr(handler, "_cookbook_warning_handler", False) for handler in root_logger.handlers):
        log_dir = Path("logs")
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "cookbook-warnings.log")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s query=%(query)s recipe=%(recipe)s - %(message)s"
            )
        )
        file_handler.addFilter(_ContextDefaultsFilter())
        file_handler._cookbook_warning_handler = True  # type: ignore[attr-defined]
        root_logger.addHandler(file_handler)


def build_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig.from_env()
    if args.output_dir:
        config = dataclasses.replace(
            config, recipes=dataclasses.replace(config.recipes, output_directory=args.output_dir)
        )
    if args.selectors:
        config = dataclasses.replace(
            config, scraper=dataclasses.replace(config.scraper, selectors_path=str(args.selectors))
        )
    return config


def _print_recipes(recipes: List[Recipe], query: str) -> None:
    if not recipes:
        print("No recipes found.")
        return
    for recipe in recipes:
        score = recipe.relevancy_score(query)
        label = "-" if score is None else str(score)
        print(f"[{label:>3}] {recipe.title or 'Untitled'} - {recipe.recipe_url or ''}")


def main(argv: Optional[Iterable[str]] = None) -> int:
    load_dotenv_if_available()
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = build_config(args)

    llm = LlmService(config.llm)
    repository = RecipeFileRepository(llm, config.recipes)
    webscraper = WebScraperService(
        llm,
        repository,
        config=config.scraper,
        recipe_config=config.recipes,
        selector_loader=SiteSelectorLoader(config.scraper.selectors_path),
    )

    try:
        if args.command == "scrape":
            scraped = webscraper.scrape_for_recipes(
                args.query, recipes_needed=args.count, target_site=args.site
            )
            recipes = [Recipe.from_scraped(item) for item in scraped]
            _print_recipes(recipes, args.query)
            if recipes:
                repository.add_update_recipes(recipes)
        else:
            service = RecipeService(repository, webscraper, llm, config.recipes)
            if args.no_scrape:
                recipes = service.get_recipes(
                    args.name, scrape=False, acceptable_score=args.score
                )
            else:
                recipes = service.get_recipes_by_name(args.name, acceptable_score=args.score)
            _print_recipes(recipes, normalise_query(args.name))
    except NoRecipeError as exc:
        logger.error("No recipes found after trying: %s", ", ".join(exc.previous_attempts))
        return 1
    finally:
        repository.wait_for_pending_work()

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
