"""Live recipe discovery across configured recipe sites."""
from __future__ import annotations

import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup

from .browser import BrowserClient
from .cancel import CancellationToken
from .config import RecipeConfig, WebscraperConfig
from .http_client import HttpClient
from .llm import LlmService
from .models import ScrapedRecipe, SearchResult, SiteSelectors
from .parallel import parallel_for_each
from .prompts import ChooseRecipesPrompt
from .storage import FileService

logger = logging.getLogger(__name__)

SiteRules = Dict[str, str]
SiteUrl = Tuple[str, str]

TEXT_FIELDS = (
    "title",
    "description",
    "servings",
    "prep_time",
    "cook_time",
    "total_time",
    "notes",
)
IMAGE_ATTRIBUTES = ("data-lazy-src", "src", "srcset")


class SelectorConfigError(RuntimeError):
    """Raised when the site selector document is inconsistent."""


class RecipeExtractionError(RuntimeError):
    """Raised when a recipe page lacks its core content."""


class KnownRecipes(Protocol):
    def contains_recipe_url(self, url: str) -> bool:
        ...


def generate_url_fingerprint(url: str) -> str:
    """Return the lowercase SHA-256 hex digest of ``url``."""

    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def _clean_text(value: str) -> str:
    return " ".join(value.strip().split())


def _extract_text_list(soup: BeautifulSoup, selector: Optional[str]) -> List[str]:
    if not selector:
        return []
    values: List[str] = []
    for element in soup.select(selector):
        text = _clean_text(element.get_text(separator=" "))
        if text:
            values.append(text)
    return values


def _extract_first_text(soup: BeautifulSoup, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    element = soup.select_one(selector)
    if element is None:
        return None
    text = _clean_text(element.get_text(separator=" "))
    if text:
        return text
    if element.has_attr("content"):
        return _clean_text(str(element["content"])) or None
    return None


def _extract_image(soup: BeautifulSoup, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    element = soup.select_one(selector)
    if element is None:
        return None
    for attribute in IMAGE_ATTRIBUTES:
        candidate = str(element.get(attribute) or "").strip()
        if not candidate:
            continue
        if attribute == "srcset":
            return candidate.split()[0]
        return candidate
    return None


def _absolute_url(url: str, base_url: str) -> str:
    cleaned = url.strip()
    if cleaned.startswith(("https://", "http://")):
        return cleaned
    if cleaned.startswith("//"):
        return f"https:{cleaned}"
    return urljoin(base_url.rstrip("/") + "/", cleaned.lstrip("/"))


def build_search_url(site: str, rules: SiteRules, query: str) -> str:
    """Combine ``base_url`` and ``search_page`` with the escaped ``query``."""

    search_page = rules.get("search_page")
    if not search_page:
        raise SelectorConfigError(f"Site {site} has no search_page selector")
    base_url = rules.get("base_url") or f"https://{site}.com"
    escaped = quote(query, safe="")
    if "{query}" in search_page:
        search_page = search_page.replace("{query}", escaped)
    else:
        search_page = f"{search_page}{escaped}"
    return f"{base_url}{search_page}"


class SiteSelectorLoader:
    """Loads the selector document once and resolves template references."""

    def __init__(
        self,
        path: Path | str = "config/site_selectors.json",
        file_service: Optional[FileService] = None,
        selectors: Optional[SiteSelectors] = None,
    ) -> None:
        self._path = Path(path)
        self._file_service = file_service or FileService()
        self._raw = selectors
        self._resolved: Optional[Dict[str, SiteRules]] = None
        self._lock = threading.Lock()

    def load(self) -> Dict[str, SiteRules]:
        if self._resolved is not None:
            return self._resolved
        with self._lock:
            if self._resolved is None:
                raw = self._raw or self._read()
                self._resolved = self.resolve(raw)
                logger.info("Loaded selectors for %d sites", len(self._resolved))
        return self._resolved

    def _read(self) -> SiteSelectors:
        payload = self._file_service.read_path(self._path)
        if not isinstance(payload, dict):
            raise SelectorConfigError(f"Selector file {self._path} must hold an object")
        return SiteSelectors(
            sites=dict(payload.get("sites") or {}),
            templates=dict(payload.get("templates") or {}),
        )

    @staticmethod
    def resolve(selectors: SiteSelectors) -> Dict[str, SiteRules]:
        resolved: Dict[str, SiteRules] = {}
        for site, rules in selectors.sites.items():
            template_name = rules.get("use_template")
            if not template_name:
                resolved[site] = dict(rules)
                continue
            template = selectors.templates.get(template_name)
            if template is None:
                raise SelectorConfigError(f"Template {template_name} not found for site {site}")
            merged = dict(template)
            merged.update(rules)
            resolved[site] = merged
        return resolved


class WebScraperService:
    """Searches recipe sites, picks promising links and extracts recipes."""

    def __init__(
        self,
        llm: LlmService,
        repository: KnownRecipes,
        config: Optional[WebscraperConfig] = None,
        recipe_config: Optional[RecipeConfig] = None,
        selector_loader: Optional[SiteSelectorLoader] = None,
        http_client: Optional[HttpClient] = None,
        browser: Optional[BrowserClient] = None,
        choose_prompt: Optional[ChooseRecipesPrompt] = None,
    ) -> None:
        self._llm = llm
        self._repository = repository
        self._config = config or WebscraperConfig()
        self._recipe_config = recipe_config or RecipeConfig()
        self._selectors = selector_loader or SiteSelectorLoader(self._config.selectors_path)
        self._http = http_client or HttpClient.from_config(self._config)
        self._browser = browser
        self._choose_prompt = choose_prompt or ChooseRecipesPrompt()

    def scrape_for_recipes(
        self,
        query: str,
        acceptable_score: Optional[int] = None,
        recipes_needed: Optional[int] = None,
        target_site: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[ScrapedRecipe]:
        selectors = self._selectors.load()
        sites = [
            (site, rules)
            for site, rules in selectors.items()
            if not target_site or site == target_site
        ]
        if not sites:
            logger.warning("No configured sites match %s", target_site)
            return []

        candidates = self._collect_urls(sites, query, cancellation)
        candidates = [
            (site, url) for site, url in candidates if not self._repository.contains_recipe_url(url)
        ]
        if not candidates:
            logger.info("No new recipe URLs found for query: %s", query)
            return []

        ranked = self._select_most_relevant_urls(candidates, query, acceptable_score, recipes_needed)
        recipes = self._extract_in_parallel(ranked, selectors, query, recipes_needed, cancellation)
        logger.info("Web scraped a total of %d recipes for %s", len(recipes), query)
        return recipes

    def _collect_urls(
        self,
        sites: Sequence[Tuple[str, SiteRules]],
        query: str,
        cancellation: Optional[CancellationToken],
    ) -> List[SiteUrl]:
        found: Dict[str, List[str]] = {}
        lock = threading.Lock()

        def _search(item: Tuple[str, SiteRules], token: CancellationToken) -> None:
            site, rules = item
            try:
                urls = self.search_site_for_recipe_urls(site, rules, query, token)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Error collecting URLs from site: %s", site)
                return
            with lock:
                found[site] = urls

        parallel_for_each(sites, _search, self._config.max_parallel_sites, cancellation)

        combined: List[SiteUrl] = []
        seen = set()
        for site, _ in sites:
            for url in found.get(site, []):
                if url in seen:
                    continue
                seen.add(url)
                combined.append((site, url))
        return combined

    def search_site_for_recipe_urls(
        self,
        site: str,
        rules: SiteRules,
        query: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[str]:
        search_url = build_search_url(site, rules, query)
        selector = rules.get("search_results")
        if not selector:
            raise SelectorConfigError(f"Site {site} has no search_results selector")

        if rules.get("stream_search", "").lower() == "true":
            if self._browser is None:
                logger.warning("Site %s requires a browser but none is configured", site)
                return []
            links = self._browser.get_content(search_url, selector, cancellation)
        else:
            links = self._extract_links(search_url, selector)

        base_url = rules.get("base_url") or f"https://{site}.com"
        urls: List[str] = []
        for link in links:
            if not link:
                continue
            absolute = _absolute_url(link, base_url)
            if absolute not in urls:
                urls.append(absolute)

        if not urls:
            logger.info("No search results found for '%s' on site %s", query, site)
        else:
            logger.info("Returned %d search results for '%s' on site %s", len(urls), query, site)
        return urls

    def _extract_links(self, url: str, selector: str) -> List[str]:
        logger.info("Running GET request for URL: %s", url)
        soup = BeautifulSoup(self._http.get_html(url), "html.parser")
        links: List[str] = []
        for element in soup.select(selector.replace('\\"', '"')):
            href = element.get("href")
            if href and href not in links:
                links.append(str(href))
        return links

    def _select_most_relevant_urls(
        self,
        candidates: List[SiteUrl],
        query: str,
        acceptable_score: Optional[int],
        recipes_needed: Optional[int],
    ) -> List[SiteUrl]:
        max_results = recipes_needed or self._config.max_num_results_per_query
        if len(candidates) <= max_results:
            return candidates

        limit = max_results + self._config.error_buffer
        prompt = self._choose_prompt
        try:
            result = self._llm.call_function(
                prompt.system_prompt,
                prompt.get_user_prompt(
                    query,
                    [url for _, url in candidates],
                    limit,
                    acceptable_score or self._recipe_config.acceptable_score_threshold,
                ),
                prompt.get_function(),
            )
            selection = SearchResult.from_record(result.data)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error selecting URLs for %s", query)
            return candidates

        selected: List[SiteUrl] = []
        for index in selection.selected_indices:
            if not 1 <= index <= len(candidates):
                continue
            item = candidates[index - 1]
            if item in selected:
                continue
            selected.append(item)
            if len(selected) >= limit:
                break

        if not selected:
            logger.warning(
                "URL selection for %s returned no usable indices %s; using all %d URLs",
                query,
                selection.selected_indices,
                len(candidates),
            )
            return candidates

        logger.info("Selected %d URLs for %s", len(selected), query)
        return selected

    def _extract_in_parallel(
        self,
        ranked: List[SiteUrl],
        selectors: Dict[str, SiteRules],
        query: str,
        recipes_needed: Optional[int],
        cancellation: Optional[CancellationToken],
    ) -> List[ScrapedRecipe]:
        needed = recipes_needed or len(ranked)
        token = CancellationToken.linked(cancellation)
        results: Dict[int, ScrapedRecipe] = {}
        lock = threading.Lock()

        def _scrape(item: Tuple[int, SiteUrl], item_token: CancellationToken) -> None:
            position, (site, url) = item
            if item_token.cancelled:
                return
            logger.info("Scraping %s recipe from %s", query, url)
            try:
                recipe = self.parse_recipe(url, selectors[site])
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Error parsing recipe from URL %s: %s", url, exc)
                return
            with lock:
                results[position] = recipe
                if len(results) >= needed:
                    token.request_cancel()

        parallel_for_each(list(enumerate(ranked)), _scrape, self._config.max_parallel_tasks, token)
        if token.cancelled:
            logger.info("Recipe scraping stopped after collecting %d recipes", len(results))
        return [results[position] for position in sorted(results)]

    def parse_recipe(self, url: str, rules: SiteRules) -> ScrapedRecipe:
        html = self._http.get_html(url)
        if not html:
            raise RecipeExtractionError(f"Failed to retrieve HTML content for {url}")
        return self.parse_recipe_html(url, html, rules)

    @staticmethod
    def parse_recipe_html(url: str, html: str, rules: SiteRules) -> ScrapedRecipe:
        soup = BeautifulSoup(html, "html.parser")

        ingredients = _extract_text_list(soup, rules.get("ingredients"))
        if not ingredients:
            raise RecipeExtractionError(f"No ingredients found at {url}")
        directions = _extract_text_list(soup, rules.get("directions"))
        if not directions:
            raise RecipeExtractionError(f"No directions found at {url}")

        recipe = ScrapedRecipe(
            id=generate_url_fingerprint(url),
            recipe_url=url,
            image_url=_extract_image(soup, rules.get("image")),
            ingredients=ingredients,
            directions=directions,
        )
        for name in TEXT_FIELDS:
            setattr(recipe, name, _extract_first_text(soup, rules.get(name)))
        return recipe
