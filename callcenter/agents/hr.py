"""HR handler: staff questions answered from the handbook."""

from __future__ import annotations

import logging
from typing import Any

from callcenter import knowledge
from callcenter.agents import HR
from callcenter.agents.base import BaseHandler, ResponseEnvelope
from callcenter.agents.keywords import Rule, any_of, first_match, normalize
from callcenter.prompts import HR_CANNED, HR_CONTACT_BLOCK, HR_PROMPTS
from callcenter.session import Session

logger = logging.getLogger(__name__)

HR_TEMPERATURE = 0.6
GENERAL_TEMPERATURE = 0.7

QUERY_RULES: tuple[Rule, ...] = (
    (any_of("leave", "vacation", "sick day", "sick days", "time off", "pto", "parental leave"), "leave_policy"),
    (any_of("benefits", "insurance", "401k", "health", "dental", "retirement"), "benefits"),
    (any_of("timesheet", "timesheets", "hours", "overtime", "time tracking"), "timesheet"),
    (any_of("policy", "policies", "handbook", "dress code", "remote work", "harassment", "training"), "company_policy"),
    (any_of("contact hr", "speak to hr", "hr department", "hr representative", "talk to hr"), "contact_hr"),
)

# Query type -> handbook topic
QUERY_TOPICS: dict[str, str] = {
    "leave_policy": "Leave",
    "benefits": "Benefits",
    "timesheet": "Timesheets",
    "company_policy": "Workplace Policies",
}

# Handbook topic -> (predicate, section heading) rows; every matching row is used
SECTION_RULES: dict[str, tuple[Rule, ...]] = {
    "Leave": (
        (any_of("vacation", "pto", "holiday"), "Vacation Leave"),
        (any_of("sick"), "Sick Leave"),
        (any_of("personal"), "Personal Days"),
        (any_of("parental", "maternity", "paternity"), "Parental Leave"),
    ),
    "Benefits": (
        (any_of("health", "medical", "dental", "vision"), "Health Insurance"),
        (any_of("401k", "retirement", "pension"), "Retirement Plan"),
        (any_of("life insurance"), "Life Insurance"),
        (any_of("disability"), "Disability Insurance"),
    ),
    "Timesheets": (
        (any_of("submit", "submission", "deadline", "due"), "Submission"),
        (any_of("overtime"), "Overtime"),
        (any_of("remote", "home"), "Remote Hours"),
    ),
    "Workplace Policies": (
        (any_of("dress", "attire", "uniform"), "Dress Code"),
        (any_of("remote", "work from home"), "Remote Work"),
        (any_of("harassment"), "Harassment"),
        (any_of("training"), "Training"),
    ),
}

MAX_TOKENS: dict[str, int] = {
    "leave_policy": 300,
    "benefits": 300,
    "company_policy": 300,
    "timesheet": 250,
    "contact_hr": 200,
    "general_hr": 200,
}


def classify_query(message: str) -> str:
    return first_match(QUERY_RULES, message, default="general_hr")


def matching_sections(topic: str, message: str) -> list[str]:
    normalized = normalize(message)
    return [heading for predicate, heading in SECTION_RULES.get(topic, ()) if predicate(normalized)]


def policy_for(query_type: str, message: str) -> str:
    """Handbook text (or contact block) to ground the reply in."""
    if query_type == "contact_hr":
        return HR_CONTACT_BLOCK
    topic = QUERY_TOPICS.get(query_type)
    if topic is None:
        return ""
    return knowledge.policy_text(topic, matching_sections(topic, message))


class HRHandler(BaseHandler):
    label = HR
    canned_reply = HR_CANNED

    def _handle(self, message: str, session: Session, **_: Any) -> ResponseEnvelope:
        query_type = classify_query(message)
        prompt = HR_PROMPTS[query_type].format(message=message, policy=policy_for(query_type, message))
        temperature = GENERAL_TEMPERATURE if query_type == "general_hr" else HR_TEMPERATURE
        text = self._generate(prompt, session, temperature=temperature, max_tokens=MAX_TOKENS[query_type])
        logger.info("HR query handled as %s", query_type)
        return self._envelope(text, query_type=query_type, information_provided=True)

    def canned(self, session: Session, **options: Any) -> ResponseEnvelope:
        envelope = super().canned(session)
        envelope.context_patch["information_provided"] = False
        return envelope
