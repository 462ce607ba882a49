"""Assistant backed drafting and critique agents plus the refinement loop."""
from __future__ import annotations

import enum
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from .cancel import CancellationToken
from .llm import REQUIRES_ACTION, LlmService
from .models import Recipe, RecipeAnalysis, SynthesizedRecipe
from .prompts import AnalyzeRecipePrompt, OrderDetails, PromptBase, SynthesizeRecipePrompt

logger = logging.getLogger(__name__)

FALLBACK_SUGGESTIONS = (
    "Please pay attention to what is desired from the cookbook order and synthesize another one."
)
FALLBACK_ANALYSIS = "The recipe is not suitable enough for the cookbook order."


class SynthesisProtocolError(RuntimeError):
    """Raised when an assistant run finishes without the expected tool call."""


class SynthesisAttemptsExceededError(RuntimeError):
    """Raised when no draft reaches the quality threshold within the attempt cap."""

    def __init__(self, attempts: int, last_draft: Optional[SynthesizedRecipe] = None) -> None:
        super().__init__(f"No acceptable recipe after {attempts} synthesis attempts")
        self.attempts = attempts
        self.last_draft = last_draft


class SynthesisState(enum.Enum):
    SYNTHESIZING = "synthesizing"
    AWAITING_TOOL_CALL = "awaiting_tool_call"
    START_ANALYSIS = "start_analysis"
    SUBMIT_REVISION = "submit_revision"
    ANALYZING = "analyzing"
    AWAITING_ANALYSIS_RESULT = "awaiting_analysis_result"
    DECIDE = "decide"
    DONE = "done"


class AssistantAgent:
    """One assistant with its own thread and at most one open run."""

    incomplete_message = "Run completed without producing a tool call"

    def __init__(self, llm: LlmService, prompt: PromptBase) -> None:
        self._llm = llm
        self._prompt = prompt
        self._function = prompt.get_function()
        self.assistant_id: Optional[str] = None
        self.thread_id: Optional[str] = None
        self.run_id: Optional[str] = None
        self._tool_call_id: Optional[str] = None

    def open(self) -> None:
        self.assistant_id = self._llm.create_assistant(
            self._prompt.name,
            self._prompt.description,
            self._prompt.system_prompt,
            self._function,
            model=self._prompt.model,
        )
        self.thread_id = self._llm.create_thread()

    def start_run(self, message: str) -> None:
        self._llm.create_message(self.thread_id, message)
        self.run_id = self._llm.create_run(self.thread_id, self.assistant_id)

    def submit_output(self, output: str) -> None:
        if self._tool_call_id is None:
            raise SynthesisProtocolError(f"{self._prompt.name} has no pending tool call")
        self._llm.submit_tool_output_to_run(self.thread_id, self.run_id, self._tool_call_id, output)
        self._tool_call_id = None

    def await_tool_call(self, cancellation: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """Poll the open run until it asks for the agent's function."""

        while True:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            is_terminal, status = self._llm.get_run(self.thread_id, self.run_id)
            if is_terminal:
                raise SynthesisProtocolError(self.incomplete_message)
            if status == REQUIRES_ACTION:
                tool_call_id, arguments = self._llm.get_run_action(
                    self.thread_id, self.run_id, self._function.name
                )
                self._tool_call_id = tool_call_id
                return arguments
            time.sleep(self._llm.run_poll_interval)

    def close(self) -> None:
        self._llm.cancel_run(self.thread_id, self.run_id)
        self._llm.delete_assistant(self.assistant_id)
        self._llm.delete_thread(self.thread_id)


class DraftingAgent(AssistantAgent):
    incomplete_message = "Synthesis run completed without producing a recipe"

    def __init__(self, llm: LlmService, prompt: Optional[SynthesizeRecipePrompt] = None) -> None:
        super().__init__(llm, prompt or SynthesizeRecipePrompt())

    def request_draft(self, recipe_name: str, recipes: Sequence[Recipe], order: OrderDetails) -> None:
        self.start_run(self._prompt.get_user_prompt(recipe_name, recipes, order))

    def request_revision(self, analysis: RecipeAnalysis) -> None:
        self.submit_output(SynthesizeRecipePrompt.revision_request(analysis.as_record()))

    def receive_draft(self, cancellation: Optional[CancellationToken] = None) -> SynthesizedRecipe:
        return SynthesizedRecipe.from_record(self.await_tool_call(cancellation))


class CritiqueAgent(AssistantAgent):
    incomplete_message = "Analysis run completed without producing a result"

    def __init__(self, llm: LlmService, prompt: Optional[AnalyzeRecipePrompt] = None) -> None:
        super().__init__(llm, prompt or AnalyzeRecipePrompt())

    def start_review(self, recipe: SynthesizedRecipe, order: OrderDetails, recipe_name: str) -> None:
        self.start_run(self._prompt.get_user_prompt(recipe, order, recipe_name))

    def submit_revision(self, recipe: SynthesizedRecipe) -> None:
        self.submit_output(json.dumps(recipe.as_record(), ensure_ascii=False))

    def receive_analysis(self, cancellation: Optional[CancellationToken] = None) -> RecipeAnalysis:
        return RecipeAnalysis.from_record(self.await_tool_call(cancellation))


class SynthesisSession:
    """Drives a drafting agent and a critique agent until a draft is accepted.

    Each pass moves through the states of :class:`SynthesisState`. Both
    agents are closed when the session ends, whatever the outcome.
    """

    def __init__(
        self,
        drafter: DraftingAgent,
        critic: CritiqueAgent,
        quality_threshold: int,
        max_attempts: int,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        self._drafter = drafter
        self._critic = critic
        self._threshold = quality_threshold
        self._max_attempts = max_attempts
        self._cancellation = cancellation
        self.state = SynthesisState.SYNTHESIZING

    def run(self, recipe_name: str, recipes: Sequence[Recipe], order: OrderDetails) -> SynthesizedRecipe:
        history: List[SynthesizedRecipe] = []
        draft: Optional[SynthesizedRecipe] = None
        analysis: Optional[RecipeAnalysis] = None
        attempt = 0

        try:
            self._drafter.open()
            self._critic.open()
            self._drafter.request_draft(recipe_name, recipes, order)

            while self.state is not SynthesisState.DONE:
                if self.state is SynthesisState.SYNTHESIZING:
                    if attempt >= self._max_attempts:
                        raise SynthesisAttemptsExceededError(attempt, draft)
                    attempt += 1
                    self.state = SynthesisState.AWAITING_TOOL_CALL

                elif self.state is SynthesisState.AWAITING_TOOL_CALL:
                    draft = self._drafter.receive_draft(self._cancellation)
                    draft.attempt_count = attempt
                    draft.revisions = list(history)
                    logger.info("[%s - Run %d] Synthesized recipe: %s", recipe_name, attempt, draft.title)
                    self.state = (
                        SynthesisState.START_ANALYSIS if attempt == 1 else SynthesisState.SUBMIT_REVISION
                    )

                elif self.state is SynthesisState.START_ANALYSIS:
                    self._critic.start_review(draft, order, recipe_name)
                    self.state = SynthesisState.ANALYZING

                elif self.state is SynthesisState.SUBMIT_REVISION:
                    self._critic.submit_revision(draft)
                    self.state = SynthesisState.ANALYZING

                elif self.state is SynthesisState.ANALYZING:
                    self.state = SynthesisState.AWAITING_ANALYSIS_RESULT

                elif self.state is SynthesisState.AWAITING_ANALYSIS_RESULT:
                    analysis = self._critic.receive_analysis(self._cancellation)
                    logger.info(
                        "[%s - Run %d] Analysis score %d", recipe_name, attempt, analysis.quality_score
                    )
                    draft.add_analysis_result(analysis)
                    self.state = SynthesisState.DECIDE

                elif self.state is SynthesisState.DECIDE:
                    if analysis.quality_score >= self._threshold:
                        self.state = SynthesisState.DONE
                        continue
                    if not (analysis.suggestions or "").strip():
                        analysis.suggestions = FALLBACK_SUGGESTIONS
                    if not analysis.analysis:
                        analysis.analysis = FALLBACK_ANALYSIS
                    draft.add_analysis_result(analysis)
                    history.append(draft.snapshot())
                    self._drafter.request_revision(analysis)
                    self.state = SynthesisState.SYNTHESIZING

            logger.info("[%s] Synthesized after %d attempts", recipe_name, attempt)
            return draft
        except Exception:
            logger.exception(
                "[%s] Error synthesizing recipe in state %s. Drafting thread %s run %s, "
                "critique thread %s run %s",
                recipe_name,
                self.state.value,
                self._drafter.thread_id,
                self._drafter.run_id,
                self._critic.thread_id,
                self._critic.run_id,
            )
            raise
        finally:
            self._critic.close()
            self._drafter.close()
