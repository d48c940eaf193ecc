"""Shared handler plumbing: the response envelope and ``BaseHandler``.

A handler reads the session, decides a sub-intent, builds a prompt, asks
the LLM for text and returns a ``ResponseEnvelope``.  It never writes the
session; its ``context_patch`` is merged by the dispatcher.

When the LLM fails (any exception from ``generate_text`` or an empty
reply) the handler answers with its canned reply and flags
``error: True`` in the patch.  Other exceptions propagate to the
dispatcher, which turns them into the generic apology.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from callcenter.services.hospital_data import AppointmentSlot
from callcenter.services.llm import UpstreamError
from callcenter.services.metrics import metrics
from callcenter.session import Session

logger = logging.getLogger(__name__)


@dataclass
class ResponseEnvelope:
    """What a handler (and the dispatcher) hands back for one turn."""

    message: str
    agent: str
    context_patch: dict[str, Any] = field(default_factory=dict)
    slots: list[AppointmentSlot] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return bool(self.context_patch.get("error"))

    def payload(self) -> str | dict[str, Any]:
        """Plain text, or ``{text, slots}`` when bookable options are attached."""
        if not self.slots:
            return self.message
        return {"text": self.message, "slots": [s.to_dict() for s in self.slots]}


class BaseHandler:
    """Common behaviour of the five handlers.

    Subclasses set ``label`` and ``canned_reply`` and implement ``_handle``.
    """

    label: str = ""
    canned_reply: str = ""

    def __init__(self, llm) -> None:
        self._llm = llm

    def handle(self, message: str, session: Session, **options: Any) -> ResponseEnvelope:
        try:
            envelope = self._handle(message, session, **options)
        except UpstreamError as exc:
            logger.warning("%s handler: LLM unavailable (%s); using canned reply", self.label, exc)
            envelope = self.canned(session, **options)
        envelope.context_patch.setdefault("error", False)
        return envelope

    def _handle(self, message: str, session: Session, **options: Any) -> ResponseEnvelope:
        raise NotImplementedError

    def canned(self, session: Session, **options: Any) -> ResponseEnvelope:
        """Envelope carrying the static reply used when the LLM is down."""
        metrics.record_canned_reply(self.label)
        return ResponseEnvelope(self.canned_reply, self.label, {"error": True})

    def _generate(
        self,
        prompt: str,
        session: Session,
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Ask the LLM for text; every failure surfaces as ``UpstreamError``."""
        try:
            text = self._llm.generate_text(
                prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                history=session.history,
                operation=self.label,
            )
        except UpstreamError:
            raise
        except Exception as exc:
            raise UpstreamError(f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(text, str) or not text.strip():
            raise UpstreamError("empty reply")
        return text.strip()

    def _envelope(self, text: str, **context: Any) -> ResponseEnvelope:
        return ResponseEnvelope(text, self.label, dict(context))


def summarize_activity(context: dict[str, Any]) -> str:
    """One-line summary of what happened so far, from the context flags."""
    topics: list[str] = []
    if context.get("booking_confirmed") or context.get("last_booking"):
        topics.append("appointment booked")
    elif context.get("booking_in_progress") or context.get("appointment_slots_provided"):
        topics.append("appointment scheduling")
    if context.get("cancellation_requested"):
        topics.append("appointment cancellation")
    if context.get("query_type"):
        topics.append(f"HR assistance ({str(context['query_type']).replace('_', ' ')})")
    if not topics:
        return "General assistance provided"
    return "Assistance provided with: " + ", ".join(topics)
