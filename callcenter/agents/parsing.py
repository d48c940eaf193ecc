"""Tagged-result parser for router replies.

The router LLM is asked for ``{"route_to": ..., "message": ...}`` but may
wrap it in prose or code fences, or ignore the format.  Parsing tries, in
order:

1. ``strict_parse``    — the whole reply is the JSON object   → PARSED
2. ``recover_parse``   — a fenced or embedded JSON object      → RECOVERED
3. ``heuristic_parse`` — agent keywords in plain text          → HEURISTIC
4. nothing worked                                              → UNCLASSIFIED

Each tier is a pure function so it can be tested on its own.  None of them
check the label against the agent catalog; the classifier does that.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from callcenter.agents.keywords import any_of, first_match


class ParseTier(str, Enum):
    PARSED = "parsed"
    RECOVERED = "recovered"
    HEURISTIC = "heuristic"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class ParseResult:
    tier: ParseTier
    route_to: str | None = None
    reason: str = ""


_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT = re.compile(r"\{[^{}]*\}", re.DOTALL)

# Words in a free-text reply that reveal the intended agent
_REPLY_KEYWORDS = (
    (any_of("appointment", "booking", "schedule"), "appointment"),
    (any_of("hr", "policy", "benefits", "leave"), "hr"),
    (any_of("closing", "bye", "goodbye", "farewell"), "closing"),
    (any_of("greeting", "hello", "welcome"), "greeting"),
    (any_of("fallback", "unclear"), "fallback"),
)


def _route_from(obj: Any) -> tuple[str, str] | None:
    if not isinstance(obj, dict):
        return None
    route = obj.get("route_to")
    if not isinstance(route, str) or not route.strip():
        return None
    reason = obj.get("message")
    return route.strip().lower(), reason if isinstance(reason, str) else ""


def strict_parse(reply: str) -> ParseResult | None:
    try:
        found = _route_from(json.loads(reply.strip()))
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    if found is None:
        return None
    return ParseResult(ParseTier.PARSED, found[0], found[1])


def recover_parse(reply: str) -> ParseResult | None:
    candidates = [m.group(1) for m in _FENCED.finditer(reply)]
    candidates += [m.group(0) for m in _OBJECT.finditer(reply)]
    for candidate in candidates:
        try:
            found = _route_from(json.loads(candidate.strip()))
        except (json.JSONDecodeError, ValueError):
            continue
        if found is not None:
            return ParseResult(ParseTier.RECOVERED, found[0], found[1])
    return None


def heuristic_parse(reply: str) -> ParseResult | None:
    label = first_match(_REPLY_KEYWORDS, reply, default="")
    if not label:
        return None
    return ParseResult(ParseTier.HEURISTIC, label, "keyword found in router reply")


def parse_routing_reply(reply: str) -> ParseResult:
    """Run the parse tiers in order and return the first hit."""
    for tier in (strict_parse, recover_parse, heuristic_parse):
        result = tier(reply)
        if result is not None:
            return result
    return ParseResult(ParseTier.UNCLASSIFIED, None, "router reply not understood")
