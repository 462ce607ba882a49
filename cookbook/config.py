"""Configuration objects for the recipe services."""
from __future__ import annotations

import os
from dataclasses import dataclass


def _strtobool(value: str) -> bool:
    """Return ``True`` when *value* represents a truthy string."""

    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


@dataclass(frozen=True)
class RecipeConfig:
    """Retrieval, ranking and synthesis settings."""

    max_search_results: int = 8
    recipes_to_return_per_retrieval: int = 3
    acceptable_score_threshold: int = 70
    synthesis_quality_threshold: int = 80
    max_new_recipe_name_attempts: int = 6
    max_synthesis_attempts: int = 10
    max_parallel_tasks: int = 5
    output_directory: str = "data/recipes"

    @classmethod
    def from_env(cls, prefix: str = "RECIPE_") -> "RecipeConfig":
        """Create a configuration from environment variables."""

        return cls(
            max_search_results=int(
                os.getenv(f"{prefix}MAX_SEARCH_RESULTS", cls.max_search_results)
            ),
            recipes_to_return_per_retrieval=int(
                os.getenv(
                    f"{prefix}RECIPES_PER_RETRIEVAL", cls.recipes_to_return_per_retrieval
                )
            ),
            acceptable_score_threshold=int(
                os.getenv(f"{prefix}ACCEPTABLE_SCORE", cls.acceptable_score_threshold)
            ),
            synthesis_quality_threshold=int(
                os.getenv(f"{prefix}SYNTHESIS_QUALITY", cls.synthesis_quality_threshold)
            ),
            max_new_recipe_name_attempts=int(
                os.getenv(f"{prefix}MAX_NAME_ATTEMPTS", cls.max_new_recipe_name_attempts)
            ),
            max_synthesis_attempts=int(
                os.getenv(f"{prefix}MAX_SYNTHESIS_ATTEMPTS", cls.max_synthesis_attempts)
            ),
            max_parallel_tasks=int(
                os.getenv(f"{prefix}MAX_PARALLEL_TASKS", cls.max_parallel_tasks)
            ),
            output_directory=os.getenv(f"{prefix}OUTPUT_DIRECTORY", cls.output_directory),
        )


@dataclass(frozen=True)
class WebscraperConfig:
    """Settings for live recipe discovery."""

    max_num_results_per_query: int = 3
    max_parallel_tasks: int = 5
    max_parallel_sites: int = 5
    error_buffer: int = 5
    request_timeout: int = 30
    selectors_path: str = "config/site_selectors.json"

    @classmethod
    def from_env(cls, prefix: str = "SCRAPER_") -> "WebscraperConfig":
        """Create a configuration from environment variables."""

        return cls(
            max_num_results_per_query=int(
                os.getenv(f"{prefix}MAX_RESULTS_PER_QUERY", cls.max_num_results_per_query)
            ),
            max_parallel_tasks=int(
                os.getenv(f"{prefix}MAX_PARALLEL_TASKS", cls.max_parallel_tasks)
            ),
            max_parallel_sites=int(
                os.getenv(f"{prefix}MAX_PARALLEL_SITES", cls.max_parallel_sites)
            ),
            error_buffer=int(os.getenv(f"{prefix}ERROR_BUFFER", cls.error_buffer)),
            request_timeout=int(os.getenv(f"{prefix}REQUEST_TIMEOUT", cls.request_timeout)),
            selectors_path=os.getenv(f"{prefix}SELECTORS_PATH", cls.selectors_path),
        )


@dataclass(frozen=True)
class LlmConfig:
    """Connection details for the OpenAI compatible model endpoint."""

    api_key: str | None = None
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    retry_attempts: int = 5
    timeout: float = 60.0
    run_poll_interval: float = 1.0
    strict_functions: bool = True
    max_conversations: int = 256

    @classmethod
    def from_env(cls, prefix: str = "OPENAI_") -> "LlmConfig":
        """Create a configuration from environment variables."""

        return cls(
            api_key=os.getenv(f"{prefix}API_KEY"),
            base_url=os.getenv(f"{prefix}BASE_URL"),
            model=os.getenv(f"{prefix}MODEL", cls.model),
            retry_attempts=int(os.getenv(f"{prefix}RETRY_ATTEMPTS", cls.retry_attempts)),
            timeout=float(os.getenv(f"{prefix}TIMEOUT", cls.timeout)),
            run_poll_interval=float(
                os.getenv(f"{prefix}RUN_POLL_INTERVAL", cls.run_poll_interval)
            ),
            strict_functions=_strtobool(os.getenv(f"{prefix}STRICT_FUNCTIONS", "true")),
            max_conversations=int(
                os.getenv(f"{prefix}MAX_CONVERSATIONS", cls.max_conversations)
            ),
        )


@dataclass(frozen=True)
class AppConfig:
    """Top level configuration."""

    recipes: RecipeConfig = RecipeConfig()
    scraper: WebscraperConfig = WebscraperConfig()
    llm: LlmConfig = LlmConfig()

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create the configuration from environment variables."""

        return cls(
            recipes=RecipeConfig.from_env(),
            scraper=WebscraperConfig.from_env(),
            llm=LlmConfig.from_env(),
        )
