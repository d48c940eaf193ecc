"""Fallback handler: unclear, unsupported or off-topic messages.

Before its own sub-intents it checks for medical vocabulary; a message
about doctors, symptoms or departments was mis-routed and is handed to the
appointment handler instead of getting a catch-all reply.
"""

from __future__ import annotations

import logging
from typing import Any

from callcenter.agents import FALLBACK
from callcenter.agents.appointment import AppointmentHandler
from callcenter.agents.base import BaseHandler, ResponseEnvelope, summarize_activity
from callcenter.agents.keywords import Rule, any_of, contains_any, first_match, is_unclear, normalize
from callcenter.prompts import CONTACT_BLOCK, FALLBACK_CANNED, FALLBACK_PROMPTS, LANGUAGE_BARRIER_REPLY
from callcenter.session import Session

logger = logging.getLogger(__name__)

FALLBACK_TEMPERATURE = 0.7
FALLBACK_MAX_TOKENS = 200

MEDICAL_KEYWORDS: tuple[str, ...] = (
    "doctor", "doctors", "appointment", "appointments", "booking", "bookings",
    "booked", "slots", "scheduling", "hospital", "medical", "health", "sick", "pain",
    "symptom", "symptoms", "medicine", "prescription", "clinic", "surgery",
    "diabetes", "blood", "heart", "cancer", "fever", "headache", "injury",
    "treatment", "therapy", "diagnosis", "specialist", "cardiology", "neurology",
    "pediatrics", "orthopedics", "dermatology", "checkup",
)

FOREIGN_GREETINGS: tuple[str, ...] = (
    "hola", "bonjour", "guten tag", "ciao", "konnichiwa", "namaste", "ola", "salut",
)

UNSUPPORTED_KEYWORDS: tuple[str, ...] = (
    "billing", "payment", "invoice", "account balance", "technical support",
    "it help", "password reset", "product return", "shipping", "delivery",
    "legal advice", "financial advice", "emergency", "urgent medical", "911",
)


def looks_non_english(text: str) -> bool:
    """Non-ASCII letters or a common foreign greeting."""
    normalized = normalize(text)
    if any(ord(ch) > 127 and ch.isalpha() for ch in normalized):
        return True
    return contains_any(normalized, FOREIGN_GREETINGS)


def is_medical_query(text: str) -> bool:
    return contains_any(normalize(text), MEDICAL_KEYWORDS)


FALLBACK_RULES: tuple[Rule, ...] = (
    (any_of("error", "bug", "not working", "broken", "crash", "glitch"), "technical_issue"),
    (any_of(
        "human", "person", "representative", "manager", "speak to someone",
        "talk to someone", "operator", "agent",
    ), "redirect_to_human"),
    (is_unclear, "unclear_request"),
    (looks_non_english, "language_barrier"),
    (any_of(*UNSUPPORTED_KEYWORDS), "unsupported_service"),
)


def classify_fallback(message: str) -> str:
    # Short or letterless messages are unclear before any keyword can match
    if is_unclear(message):
        return "unclear_request"
    return first_match(FALLBACK_RULES, message, default="general_fallback")


class FallbackHandler(BaseHandler):
    label = FALLBACK
    canned_reply = FALLBACK_CANNED

    def __init__(self, llm, appointments: AppointmentHandler) -> None:
        super().__init__(llm)
        self._appointments = appointments

    def _handle(self, message: str, session: Session, **_: Any) -> ResponseEnvelope:
        if not is_unclear(message) and is_medical_query(message):
            logger.info("Fallback received a medical query; handing it to %s", self._appointments.label)
            envelope = self._appointments.handle(message, session)
            envelope.context_patch["rerouted_from"] = self.label
            return envelope

        kind = classify_fallback(message)
        patch = {"fallback_type": kind, "fallback_handled": True}
        if kind == "language_barrier":
            return self._envelope(LANGUAGE_BARRIER_REPLY, **patch)

        prompt = FALLBACK_PROMPTS[kind].format(
            message=message,
            contacts=CONTACT_BLOCK,
            summary=summarize_activity(session.context),
        )
        text = self._generate(prompt, session, temperature=FALLBACK_TEMPERATURE, max_tokens=FALLBACK_MAX_TOKENS)
        logger.info("Fallback reply of type %s", kind)
        return self._envelope(text, **patch)

    def canned(self, session: Session, **options: Any) -> ResponseEnvelope:
        envelope = super().canned(session)
        envelope.context_patch["fallback_handled"] = True
        return envelope
