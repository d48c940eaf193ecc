"""Closing handler: goodbyes, thanks and end-of-conversation check-ins."""

from __future__ import annotations

import logging
from typing import Any

from callcenter.agents import CLOSING
from callcenter.agents.base import BaseHandler, ResponseEnvelope, summarize_activity
from callcenter.agents.keywords import Rule, any_of, first_match
from callcenter.prompts import CLOSING_CANNED, CLOSING_PROMPTS, HOSPITAL_NAME, MAIN_PHONE
from callcenter.session import Session

logger = logging.getLogger(__name__)

GOODBYE_TEMPERATURE = 0.8
CLOSING_TEMPERATURE = 0.7
GOODBYE_MAX_TOKENS = 150
CLOSING_MAX_TOKENS = 200

# History length above which an unmarked closing asks for feedback
FEEDBACK_AFTER_TURNS = 8

CLOSING_RULES: tuple[Rule, ...] = (
    (any_of("bye", "goodbye", "see you", "have a good", "farewell"), "final_goodbye"),
    (any_of("thank", "thanks", "thank you", "thx"), "offer_additional_help"),
    (any_of("done", "that's all", "finished", "nothing else", "all set"), "satisfaction_check"),
)


def classify_closing(message: str, session: Session) -> str:
    kind = first_match(CLOSING_RULES, message, default="")
    if kind:
        return kind
    if len(session.history) > FEEDBACK_AFTER_TURNS:
        return "feedback_request"
    return "general_closing"


class ClosingHandler(BaseHandler):
    label = CLOSING
    canned_reply = CLOSING_CANNED

    def _handle(self, message: str, session: Session, **_: Any) -> ResponseEnvelope:
        kind = classify_closing(message, session)
        prompt = CLOSING_PROMPTS[kind].format(
            message=message,
            hospital=HOSPITAL_NAME,
            summary=summarize_activity(session.context),
            phone=MAIN_PHONE,
        )
        if kind == "final_goodbye":
            text = self._generate(prompt, session, temperature=GOODBYE_TEMPERATURE, max_tokens=GOODBYE_MAX_TOKENS)
        else:
            text = self._generate(prompt, session, temperature=CLOSING_TEMPERATURE, max_tokens=CLOSING_MAX_TOKENS)
        logger.info("Closing conversation %s as %s", session.id, kind)
        return self._envelope(text, closing_type=kind, conversation_ending=True)

    def canned(self, session: Session, **options: Any) -> ResponseEnvelope:
        envelope = super().canned(session)
        envelope.context_patch["conversation_ending"] = True
        return envelope
