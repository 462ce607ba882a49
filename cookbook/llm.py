"""OpenAI backed function calling and assistant run helpers."""
from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

import openai
from openai import OpenAI

from .config import LlmConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRES_ACTION = "requires_action"
TERMINAL_RUN_STATUSES = frozenset({"completed", "cancelled", "failed", "expired", "incomplete"})


class LlmResponseError(RuntimeError):
    """Raised when the model response does not contain the expected function call."""


class ContentFilterError(RuntimeError):
    """Raised when the provider refuses a request through its content filter."""


@dataclass(frozen=True)
class FunctionDefinition:
    """JSON schema description of a function the model must call."""

    name: str
    description: str
    parameters: Dict[str, Any]
    strict: bool = False

    def as_tool(self, allow_strict: bool = True) -> Dict[str, Any]:
        function: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }
        if self.strict and allow_strict:
            function["strict"] = True
        return {"type": "function", "function": function}


@dataclass(frozen=True)
class LlmResult(Generic[T]):
    """Function call arguments together with the conversation they belong to."""

    data: T
    conversation_id: Optional[str]


@dataclass
class _RunOutputs:
    outputs: List[Tuple[str, str]] = field(default_factory=list)


class LlmService:
    """Thin orchestration layer over the OpenAI SDK.

    Chat function calls are stateless unless a ``conversation_id`` is given,
    in which case the prior exchanges of that conversation are replayed.
    Assistant, thread and run helpers map one-to-one onto the assistants API.
    """

    def __init__(self, config: Optional[LlmConfig] = None, client: Optional[OpenAI] = None) -> None:
        self._config = config or LlmConfig()
        self._client = client or OpenAI(
            api_key=self._config.api_key,
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            max_retries=self._config.retry_attempts,
        )
        self._lock = threading.Lock()
        self._conversations: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
        self._run_outputs: Dict[str, _RunOutputs] = {}

    @property
    def run_poll_interval(self) -> float:
        return self._config.run_poll_interval

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------
    def call_function(
        self,
        system_prompt: str,
        user_prompt: str,
        function: FunctionDefinition,
        conversation_id: Optional[str] = None,
        retry_count: Optional[int] = None,
        model: Optional[str] = None,
    ) -> LlmResult[Dict[str, Any]]:
        """Force a call to ``function`` and return its decoded arguments.

        Only calls that name a ``conversation_id`` are remembered; the oldest
        conversations are evicted beyond ``LlmConfig.max_conversations``.
        """

        history: List[Dict[str, Any]] = []
        if conversation_id:
            with self._lock:
                history = list(self._conversations.get(conversation_id, []))

        user_message = {"role": "user", "content": user_prompt}
        messages = [{"role": "system", "content": system_prompt}, *history, user_message]

        retries = self._config.retry_attempts if retry_count is None else retry_count
        client = self._client.with_options(max_retries=max(retries, 0))
        try:
            response = client.chat.completions.create(
                model=model or self._config.model,
                messages=messages,
                tools=[function.as_tool(self._config.strict_functions)],
                tool_choice={"type": "function", "function": {"name": function.name}},
            )
        except openai.BadRequestError as exc:
            if getattr(exc, "code", None) == "content_filter":
                raise ContentFilterError(str(exc)) from exc
            raise

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentFilterError(f"Content filter blocked call to {function.name}")

        tool_calls = choice.message.tool_calls or []
        call = next((item for item in tool_calls if item.function.name == function.name), None)
        if call is None:
            raise LlmResponseError(f"Model did not call function {function.name}")

        arguments = self._decode_arguments(call.function.arguments, function.name)

        if conversation_id:
            self._remember(
                conversation_id,
                user_message,
                {"role": "assistant", "content": call.function.arguments},
            )

        logger.debug("Function %s returned %s", function.name, arguments)
        return LlmResult(data=arguments, conversation_id=conversation_id)

    def _remember(self, conversation_id: str, *messages: Dict[str, Any]) -> None:
        with self._lock:
            stored = self._conversations.setdefault(conversation_id, [])
            stored.extend(messages)
            self._conversations.move_to_end(conversation_id)
            while len(self._conversations) > self._config.max_conversations:
                evicted, _ = self._conversations.popitem(last=False)
                logger.debug("Evicted conversation %s", evicted)

    @staticmethod
    def _decode_arguments(raw: str, function_name: str) -> Dict[str, Any]:
        try:
            payload = json.loads(raw or "{}")
        except json.JSONDecodeError as exc:
            raise LlmResponseError(f"Invalid arguments for {function_name}: {exc}") from exc
        if not isinstance(payload, dict):
            raise LlmResponseError(f"Arguments for {function_name} must be an object")
        return payload

    # ------------------------------------------------------------------
    # Assistants
    # ------------------------------------------------------------------
    def create_assistant(
        self,
        name: str,
        description: str,
        instructions: str,
        function: FunctionDefinition,
        model: Optional[str] = None,
    ) -> str:
        try:
            assistant = self._client.beta.assistants.create(
                model=model or self._config.model,
                name=name,
                description=description,
                instructions=instructions,
                tools=[function.as_tool(self._config.strict_functions)],
            )
        except Exception:
            logger.exception("Error occurred while creating assistant %s", name)
            raise
        return assistant.id

    def create_thread(self) -> str:
        try:
            return self._client.beta.threads.create().id
        except Exception:
            logger.exception("Error occurred while creating thread")
            raise

    def create_message(self, thread_id: str, content: str, role: str = "user") -> None:
        logger.info("Creating message for thread %s", thread_id)
        try:
            self._client.beta.threads.messages.create(thread_id, role=role, content=content)
        except Exception:
            logger.exception("Error occurred while creating message for thread %s", thread_id)
            raise

    def create_run(self, thread_id: str, assistant_id: str, requires_tool_call: bool = True) -> str:
        try:
            run = self._client.beta.threads.runs.create(
                thread_id=thread_id,
                assistant_id=assistant_id,
                tool_choice="required" if requires_tool_call else "none",
                parallel_tool_calls=False,
            )
        except Exception:
            logger.exception(
                "Error occurred while creating run for thread %s, assistant %s",
                thread_id,
                assistant_id,
            )
            raise
        return run.id

    def _retrieve_run(self, thread_id: str, run_id: str) -> Any:
        try:
            return self._client.beta.threads.runs.retrieve(run_id, thread_id=thread_id)
        except Exception:
            logger.exception("Error occurred while getting run %s for thread %s", run_id, thread_id)
            raise

    def get_run(self, thread_id: str, run_id: str) -> Tuple[bool, str]:
        """Return ``(is_terminal, status)`` for the run."""

        run = self._retrieve_run(thread_id, run_id)
        is_terminal = run.status in TERMINAL_RUN_STATUSES
        if is_terminal:
            with self._lock:
                self._run_outputs.pop(run_id, None)
        return is_terminal, run.status

    def get_run_action(
        self, thread_id: str, run_id: str, function_name: str
    ) -> Tuple[str, Dict[str, Any]]:
        """Return the tool call id and decoded arguments the run is waiting on."""

        run = self._retrieve_run(thread_id, run_id)
        required = getattr(run, "required_action", None)
        tool_calls = required.submit_tool_outputs.tool_calls if required else []
        for call in tool_calls:
            if call.function.name == function_name:
                return call.id, self._decode_arguments(call.function.arguments, function_name)
        raise LlmResponseError(f"Run {run_id} is not waiting on function {function_name}")

    def submit_tool_output_to_run(
        self, thread_id: str, run_id: str, tool_call_id: str, output: str
    ) -> None:
        logger.info(
            "Submitting tool output for run %s, thread %s, tool call %s",
            run_id,
            thread_id,
            tool_call_id,
        )
        try:
            run = self._retrieve_run(thread_id, run_id)
            required = getattr(run, "required_action", None)
            required_ids = (
                {call.id for call in required.submit_tool_outputs.tool_calls} if required else set()
            )
            with self._lock:
                stash = self._run_outputs.setdefault(run_id, _RunOutputs())
                stash.outputs.append((tool_call_id, output))
                to_submit = [
                    {"tool_call_id": call_id, "output": value}
                    for call_id, value in stash.outputs
                    if call_id in required_ids
                ]
            self._client.beta.threads.runs.submit_tool_outputs(
                run_id, thread_id=thread_id, tool_outputs=to_submit
            )
        except Exception:
            logger.exception(
                "Error occurred while submitting tool outputs for run %s, thread %s",
                run_id,
                thread_id,
            )
            raise

    def cancel_run(self, thread_id: Optional[str], run_id: Optional[str]) -> str:
        """Cancel the run unless it already finished; never raises."""

        if not thread_id or not run_id:
            return "No run to cancel."
        logger.info("Cancelling run %s for thread %s", run_id, thread_id)
        try:
            is_terminal, _ = self.get_run(thread_id, run_id)
            if is_terminal:
                return "Run is already complete."
            run = self._client.beta.threads.runs.cancel(run_id, thread_id=thread_id)
            return str(run.status)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error occurred while cancelling run %s for thread %s", run_id, thread_id)
            return "Failed to cancel run."
        finally:
            with self._lock:
                self._run_outputs.pop(run_id, None)

    def delete_assistant(self, assistant_id: Optional[str]) -> None:
        if not assistant_id:
            return
        try:
            self._client.beta.assistants.delete(assistant_id)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error occurred while deleting assistant %s", assistant_id)

    def delete_thread(self, thread_id: Optional[str]) -> None:
        if not thread_id:
            return
        try:
            self._client.beta.threads.delete(thread_id)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error occurred while deleting thread %s", thread_id)
