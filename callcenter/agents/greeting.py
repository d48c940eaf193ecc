"""Greeting handler: first-contact welcome and mid-conversation re-greetings."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from callcenter.agents import GREETING
from callcenter.agents.base import BaseHandler, ResponseEnvelope
from callcenter.prompts import (
    GREETING_CANNED,
    GREETING_RETURN_CANNED,
    GREETING_RETURN_PROMPT,
    GREETING_WELCOME_PROMPT,
    HOSPITAL_NAME,
    SERVICE_MENU,
)
from callcenter.session import Session

logger = logging.getLogger(__name__)

WELCOME_TEMPERATURE = 0.8
WELCOME_MAX_TOKENS = 200
RETURN_MAX_TOKENS = 120


class GreetingHandler(BaseHandler):
    """Welcomes the caller.

    Whether this is the opening turn is decided once by the dispatcher and
    passed in as ``first_turn``; the handler does not re-derive it from the
    history.
    """

    label = GREETING
    canned_reply = GREETING_CANNED

    def _handle(self, message: str, session: Session, *, first_turn: bool = False, **_: Any) -> ResponseEnvelope:
        if first_turn:
            logger.info("Welcoming new session %s", session.id)
            prompt = GREETING_WELCOME_PROMPT.format(
                message=message, hospital=HOSPITAL_NAME, services=SERVICE_MENU
            )
            text = self._generate(
                prompt, session, temperature=WELCOME_TEMPERATURE, max_tokens=WELCOME_MAX_TOKENS
            )
            # The opening reply must always carry the service overview
            if "appointment" not in text.lower():
                text = f"{text}\n\n{SERVICE_MENU}"
            return self._envelope(text, **_greeting_patch("welcome"))

        prompt = GREETING_RETURN_PROMPT.format(message=message)
        text = self._generate(
            prompt, session, temperature=WELCOME_TEMPERATURE, max_tokens=RETURN_MAX_TOKENS
        )
        return self._envelope(text, **_greeting_patch("re_greeting"))

    def canned(self, session: Session, *, first_turn: bool = False, **_: Any) -> ResponseEnvelope:
        envelope = super().canned(session)
        kind = "welcome" if first_turn else "re_greeting"
        if not first_turn:
            envelope.message = GREETING_RETURN_CANNED
        envelope.context_patch.update(_greeting_patch(kind))
        return envelope


def _greeting_patch(kind: str) -> dict[str, Any]:
    return {
        "greeted": True,
        "greeting_type": kind,
        "greeted_at": datetime.now(UTC).isoformat(),
    }
