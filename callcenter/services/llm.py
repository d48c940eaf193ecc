"""LLM text-generation capability used by the classifier and the handlers.

``LLMClient.generate_text(prompt, temperature=..., max_tokens=..., history=...)``
returns plain text or raises one of two errors, both of which callers treat
as "use the deterministic path":

* ``UpstreamUnavailable`` — no API key, timeout, connection failure, or a
  5xx that persisted through every attempt.
* ``UpstreamError`` — any other failure: a 4xx, an empty reply, or an
  unexpected exception from the SDK.

Each request carries a bounded timeout; timeouts, connection errors and
5xx responses are retried with exponential backoff up to
``LLM_MAX_ATTEMPTS`` in total, so a turn can never hang on the backend.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from callcenter import config
from callcenter.prompts import SYSTEM_PROMPT
from callcenter.services.metrics import metrics
from callcenter.session import Turn

logger = logging.getLogger(__name__)

INITIAL_BACKOFF_SECONDS = 0.5


class UpstreamError(Exception):
    """The LLM backend returned an error or an unusable reply."""


class UpstreamUnavailable(UpstreamError):
    """The LLM backend could not be reached in time."""


def _build_chat_model(
    model: str,
    temperature: float,
    max_tokens: int,
) -> ChatAnthropic:
    """Build a ChatAnthropic client with retries disabled (we retry ourselves)."""
    return ChatAnthropic(
        model=model,
        api_key=config.ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=config.LLM_TIMEOUT_SECONDS,
        max_retries=0,
    )


def _content_text(content: Any) -> str:
    """Flatten an AIMessage ``content`` (str or list of blocks) to text."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or ():
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def history_messages(history: Sequence[Turn] | None, limit: int) -> list[BaseMessage]:
    """Convert the last ``limit`` turns into chat messages.

    The window is trimmed so that it starts with a user turn; the Messages
    API rejects conversations that open with the assistant.
    """
    window = list(history or ())[-limit:] if limit > 0 else []
    while window and window[0].role != "user":
        window.pop(0)
    messages: list[BaseMessage] = []
    for turn in window:
        if turn.role == "user":
            messages.append(HumanMessage(content=turn.content))
        else:
            messages.append(AIMessage(content=turn.content))
    return messages


class LLMClient:
    """Thin wrapper around ChatAnthropic with timeout, retry and error mapping."""

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key_configured: bool | None = None,
        max_attempts: int | None = None,
        history_turns: int | None = None,
    ) -> None:
        self._model = model or config.MODEL_NAME
        self._enabled = (
            bool(config.ANTHROPIC_API_KEY) if api_key_configured is None else api_key_configured
        )
        self._max_attempts = max_attempts or config.LLM_MAX_ATTEMPTS
        self._history_turns = config.LLM_HISTORY_TURNS if history_turns is None else history_turns
        # (model, temperature, max_tokens) → client, built once per shape
        self._models: dict[tuple[str, float, int], ChatAnthropic] = {}

    def _chat_model(self, model: str, temperature: float, max_tokens: int) -> ChatAnthropic:
        key = (model, temperature, max_tokens)
        if key not in self._models:
            self._models[key] = _build_chat_model(model, temperature, max_tokens)
        return self._models[key]

    def generate_text(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        history: Sequence[Turn] | None = None,
        model: str | None = None,
        operation: str = "generate",
    ) -> str:
        """Generate a reply to ``prompt`` with the conversation ``history``."""
        if not self._enabled:
            raise UpstreamUnavailable("LLM API key is not configured")

        chat_model = self._chat_model(model or self._model, temperature, max_tokens)
        messages: list[BaseMessage] = [SystemMessage(content=SYSTEM_PROMPT)]
        messages.extend(history_messages(history, self._history_turns))
        messages.append(HumanMessage(content=prompt))

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            t0 = time.perf_counter()
            try:
                response = chat_model.invoke(messages)
            except (anthropic.APITimeoutError, anthropic.APIConnectionError) as exc:
                last_error = exc
                self._record_failure(operation, exc, t0)
                logger.warning(
                    "LLM attempt %d/%d failed (%s)",
                    attempt, self._max_attempts, type(exc).__name__,
                )
            except anthropic.APIStatusError as exc:
                self._record_failure(operation, exc, t0)
                if exc.status_code < 500:
                    raise UpstreamError(f"LLM rejected the request ({exc.status_code})") from exc
                last_error = exc
                logger.warning(
                    "LLM server error %d on attempt %d/%d",
                    exc.status_code, attempt, self._max_attempts,
                )
            except Exception as exc:
                self._record_failure(operation, exc, t0)
                raise UpstreamError(f"LLM call failed: {type(exc).__name__}") from exc
            else:
                elapsed = (time.perf_counter() - t0) * 1000
                text = _content_text(response.content).strip()
                if not text:
                    metrics.record_failure("anthropic", operation, "EmptyReply", latency_ms=elapsed)
                    raise UpstreamError("LLM returned an empty reply")
                metrics.record_success("anthropic", operation, latency_ms=elapsed)
                logger.debug("LLM %s responded in %.0fms", operation, elapsed)
                return text

            if attempt < self._max_attempts:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise UpstreamUnavailable(
            f"LLM unavailable after {self._max_attempts} attempts: {last_error}"
        ) from last_error

    @staticmethod
    def _record_failure(operation: str, exc: Exception, t0: float) -> None:
        metrics.record_failure(
            "anthropic", operation,
            error_type=type(exc).__name__,
            latency_ms=(time.perf_counter() - t0) * 1000,
        )
