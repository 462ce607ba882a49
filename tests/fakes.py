"""Hand-written collaborators shared by the test modules."""
from __future__ import annotations

import itertools
import threading
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from cookbook.llm import REQUIRES_ACTION, FunctionDefinition, LlmResult
from cookbook.models import Recipe, RelevancyResult, ScrapedRecipe
from cookbook.webscraper import generate_url_fingerprint

Handler = Union[Dict[str, Any], Callable[[str], Dict[str, Any]], Exception]


def make_recipe(
    title: str,
    url: Optional[str] = None,
    scores: Optional[Dict[str, int]] = None,
    **fields: Any,
) -> Recipe:
    url = url or f"https://recipes.example/{title.lower().replace(' ', '-')}"
    recipe = Recipe(
        id=generate_url_fingerprint(url),
        title=title,
        recipe_url=url,
        ingredients=fields.pop("ingredients", ["1 cup flour"]),
        directions=fields.pop("directions", ["Mix everything."]),
        **fields,
    )
    for query, score in (scores or {}).items():
        recipe.relevancy[query] = RelevancyResult(query=query, score=score)
    return recipe


class FakeLlmService:
    """Answers function calls from per-function handlers and records them."""

    run_poll_interval = 0.0

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None) -> None:
        self.handlers: Dict[str, Handler] = dict(handlers or {})
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def calls_to(self, function_name: str) -> List[Tuple[str, str, Dict[str, Any]]]:
        return [call for call in self.calls if call[0] == function_name]

    def call_function(
        self,
        system_prompt: str,
        user_prompt: str,
        function: FunctionDefinition,
        conversation_id: Optional[str] = None,
        retry_count: Optional[int] = None,
        model: Optional[str] = None,
    ) -> LlmResult[Dict[str, Any]]:
        with self._lock:
            self.calls.append(
                (
                    function.name,
                    user_prompt,
                    {"conversation_id": conversation_id, "retry_count": retry_count},
                )
            )
        handler = self.handlers[function.name]
        if isinstance(handler, Exception):
            raise handler
        data = handler(user_prompt) if callable(handler) else dict(handler)
        return LlmResult(data=data, conversation_id=conversation_id or "conversation")


class FakeAssistantLlm(FakeLlmService):
    """Scripted assistants API: drafts on request, analysis scores from a list."""

    def __init__(
        self,
        scores: Sequence[int],
        suggestions: Optional[Sequence[str]] = None,
        finished_threads: Sequence[str] = (),
    ) -> None:
        super().__init__()
        self._scores = list(scores)
        self._suggestions = list(suggestions or [])
        self._finished_threads = set(finished_threads)
        self._ids = itertools.count(1)
        self._drafts = 0
        self._analyses = 0
        self._polled: Counter = Counter()
        self.assistants: Dict[str, str] = {}
        self.threads: List[str] = []
        self.messages: List[Tuple[str, str]] = []
        self.runs: Dict[str, str] = {}
        self.tool_outputs: List[Tuple[str, str]] = []
        self.cancelled: List[Tuple[Optional[str], Optional[str]]] = []
        self.deleted_assistants: List[Optional[str]] = []
        self.deleted_threads: List[Optional[str]] = []

    def create_assistant(self, name, description, instructions, function, model=None) -> str:
        assistant_id = f"asst-{next(self._ids)}"
        self.assistants[assistant_id] = function.name
        return assistant_id

    def create_thread(self) -> str:
        thread_id = f"thread-{next(self._ids)}"
        self.threads.append(thread_id)
        return thread_id

    def create_message(self, thread_id: str, content: str, role: str = "user") -> None:
        self.messages.append((thread_id, content))

    def create_run(self, thread_id: str, assistant_id: str, requires_tool_call: bool = True) -> str:
        run_id = f"run-{next(self._ids)}"
        self.runs[run_id] = self.assistants[assistant_id]
        return run_id

    def get_run(self, thread_id: str, run_id: str) -> Tuple[bool, str]:
        if thread_id in self._finished_threads:
            return True, "completed"
        self._polled[run_id] += 1
        # every other poll reports progress so the polling loop is exercised
        if self._polled[run_id] % 2:
            return False, "in_progress"
        return False, REQUIRES_ACTION

    def get_run_action(self, thread_id: str, run_id: str, function_name: str):
        call_id = f"call-{next(self._ids)}"
        if function_name == "SynthesizeRecipe":
            self._drafts += 1
            return call_id, {
                "title": f"Draft {self._drafts}",
                "ingredients": ["2 cups rice"],
                "directions": ["Cook the rice."],
                "inspired_by": ["https://recipes.example/rice"],
            }
        score = self._scores[min(self._analyses, len(self._scores) - 1)]
        suggestion = (
            self._suggestions[self._analyses]
            if self._analyses < len(self._suggestions)
            else "Add more seasoning."
        )
        self._analyses += 1
        return call_id, {"quality_score": score, "analysis": "Reviewed.", "suggestions": suggestion}

    def submit_tool_output_to_run(self, thread_id, run_id, tool_call_id, output) -> None:
        self.tool_outputs.append((self.runs[run_id], output))

    def cancel_run(self, thread_id, run_id) -> str:
        self.cancelled.append((thread_id, run_id))
        return "cancelled"

    def delete_assistant(self, assistant_id) -> None:
        self.deleted_assistants.append(assistant_id)

    def delete_thread(self, thread_id) -> None:
        self.deleted_threads.append(thread_id)


class DummyHttpClient:
    def __init__(self, pages: Dict[str, str]) -> None:
        self._pages = pages
        self.requested: List[str] = []
        self._lock = threading.Lock()

    def get_html(self, url: str) -> str:
        with self._lock:
            self.requested.append(url)
        if url not in self._pages:
            raise RuntimeError(f"404 for {url}")
        return self._pages[url]


class FakeBrowser:
    def __init__(self, links: List[str]) -> None:
        self._links = links
        self.requests: List[Tuple[str, str]] = []

    def get_content(self, url, selector, cancellation=None) -> List[str]:
        self.requests.append((url, selector))
        return list(self._links)


class FakeRepository:
    def __init__(self, recipes: Optional[List[Recipe]] = None) -> None:
        self.recipes = list(recipes or [])
        self.searches: List[Tuple[str, Optional[int], Optional[int]]] = []
        self.saved: List[List[Recipe]] = []

    def search_recipes(self, query, minimum_score=None, required_count=None, cancellation=None):
        self.searches.append((query, minimum_score, required_count))
        return list(self.recipes)

    def contains_recipe(self, recipe_id: str) -> bool:
        return any(recipe.id == recipe_id for recipe in self.recipes)

    def contains_recipe_url(self, url: str) -> bool:
        return self.contains_recipe(generate_url_fingerprint(url))

    def add_update_recipes(self, recipes: List[Recipe]) -> None:
        self.saved.append(list(recipes))


class FakeWebScraper:
    def __init__(self, results: Optional[List[ScrapedRecipe]] = None) -> None:
        self.results = list(results or [])
        self.calls: List[Tuple[str, Optional[int], Optional[int]]] = []

    def scrape_for_recipes(
        self, query, acceptable_score=None, recipes_needed=None, target_site=None, cancellation=None
    ) -> List[ScrapedRecipe]:
        self.calls.append((query, acceptable_score, recipes_needed))
        return list(self.results)


class MarkdownOrder:
    def __init__(self, text: str = "# Order\n- Vegetarian") -> None:
        self._text = text

    def to_markdown(self) -> str:
        return self._text
