"""Intent classifier: picks the agent that answers each message.

LLM first, rules second.  The router model is asked for a one-line JSON
decision at temperature 0; its reply goes through the tiered parser in
``parsing.py`` and the label is checked against the closed catalog.  If
the reply is unusable (``ClassificationAmbiguous``) or the LLM call fails
in any way, the decision is recomputed by ``rule_based_route``, which
covers every input and has no side effects.  ``classify`` never raises.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from callcenter import config
from callcenter.agents import (
    AGENT_CATALOG,
    AGENT_LABELS,
    APPOINTMENT,
    CLOSING,
    FALLBACK,
    GREETING,
    HR,
)
from callcenter.agents.keywords import Rule, any_of, first_match, is_unclear
from callcenter.agents.parsing import ParseResult, ParseTier, parse_routing_reply
from callcenter.prompts import ROUTER_PROMPT
from callcenter.services.metrics import metrics
from callcenter.session import Session

logger = logging.getLogger(__name__)

CONTEXT_TURNS = 4
MAX_TURN_CHARS = 200
ROUTER_TEMPERATURE = 0.0
ROUTER_MAX_TOKENS = 100


class ClassificationAmbiguous(Exception):
    """The router reply could not be turned into a valid agent label."""


@dataclass(frozen=True)
class RoutingDecision:
    route_to: str
    reason: str  # logged, never shown to the caller
    tier: str


# ── Rule-based routing ───────────────────────────────────────────────

ROUTING_RULES: tuple[Rule, ...] = (
    (any_of(
        "appointment", "appointments", "doctor", "doctors", "schedule", "scheduled",
        "scheduling", "reschedule", "book", "booking", "bookings", "booked",
        "available", "availability", "slot", "slots", "medical", "visit", "visits",
        "consultation", "consultations", "dr.", "physician", "physicians",
    ), APPOINTMENT),
    (any_of(
        "hr", "human resources", "policy", "policies", "leave", "vacation",
        "vacations", "sick day", "sick days", "benefit", "benefits", "insurance",
        "timesheet", "timesheets", "payroll", "employee", "employees", "handbook",
    ), HR),
    (any_of(
        "bye", "goodbye", "thank you", "thanks", "done", "finished", "end",
        "that's all", "have a good",
    ), CLOSING),
    (any_of(
        "hello", "hi", "hey", "good morning", "good afternoon", "help", "start",
        "greetings",
    ), GREETING),
)


def rule_based_route(message: str, context: Mapping[str, Any] | None = None) -> RoutingDecision:
    """Deterministic routing by ordered keyword groups.

    A pure function of ``message`` and the context snapshot: when no group
    matches but a booking is in progress, the caller is most likely
    answering the booking flow, so the message goes to appointments.
    """
    label = first_match(ROUTING_RULES, message, default="")
    if label:
        return RoutingDecision(label, f"{label} keywords detected", "rules")
    if context and context.get("booking_in_progress"):
        return RoutingDecision(APPOINTMENT, "booking flow in progress", "rules")
    return RoutingDecision(FALLBACK, "no clear intent detected", "rules")


# ── Prompt ───────────────────────────────────────────────────────────


def _clip(text: str) -> str:
    return text if len(text) <= MAX_TURN_CHARS else text[:MAX_TURN_CHARS] + "…"


def build_conversation_context(session: Session) -> str:
    """Render the last few turns, the active agent and the context flags."""
    recent = session.recent(CONTEXT_TURNS)
    if not recent:
        return "This is the first message in the conversation.\n"

    lines = ["Recent conversation:"]
    lines.extend(f'  {turn.role}: "{_clip(turn.content)}"' for turn in recent)
    lines.append(f"Current agent: {session.active_agent or 'none'}")
    lines.append(f"Session context: {_clip(json.dumps(session.context, default=str))}")
    lines.append("")
    return "\n".join(lines)


def build_routing_prompt(message: str, session: Session) -> str:
    catalog = "\n".join(f'- "{label}": {desc}' for label, desc in AGENT_CATALOG.items())
    return ROUTER_PROMPT.format(
        catalog=catalog,
        conversation=build_conversation_context(session),
        message=message,
    )


# ── Classifier ───────────────────────────────────────────────────────


class IntentClassifier:
    """Routes a message to one of the five agents."""

    def __init__(self, llm, *, model: str | None = None) -> None:
        self._llm = llm
        self._model = model or config.ROUTER_MODEL_NAME

    def classify(self, message: str, session: Session) -> RoutingDecision:
        if is_unclear(message):
            decision = RoutingDecision(FALLBACK, "message too short or has no letters", "guard")
            metrics.record_route(decision.route_to, decision.tier)
            return decision

        try:
            reply = self._llm.generate_text(
                build_routing_prompt(message, session),
                temperature=ROUTER_TEMPERATURE,
                max_tokens=ROUTER_MAX_TOKENS,
                model=self._model,
                operation="classify",
            )
            decision = self._validate(parse_routing_reply(reply))
        except ClassificationAmbiguous as exc:
            logger.info("Router reply unusable (%s); using rule-based routing", exc)
            decision = rule_based_route(message, session.context)
        except Exception as exc:
            logger.warning("Router LLM failed (%s); using rule-based routing", exc)
            decision = rule_based_route(message, session.context)

        metrics.record_route(decision.route_to, decision.tier)
        logger.info("Router decision: %s via %s (%s)", decision.route_to, decision.tier, decision.reason)
        return decision

    @staticmethod
    def _validate(result: ParseResult) -> RoutingDecision:
        if result.tier is ParseTier.UNCLASSIFIED or result.route_to is None:
            raise ClassificationAmbiguous(result.reason)
        if result.route_to not in AGENT_LABELS:
            raise ClassificationAmbiguous(f"unknown agent {result.route_to!r}")
        reason = result.reason or f"routed to {result.route_to}"
        return RoutingDecision(result.route_to, reason, result.tier.value)
