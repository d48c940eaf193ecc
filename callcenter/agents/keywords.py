"""Keyword predicates and declarative first-match tables.

Every sub-intent decision in the handlers, and the rule-based router, is a
table of ``(predicate, label)`` rows evaluated in order against normalised
text; the first predicate that holds wins.  Keywords match on word
boundaries, so ``"hr"`` does not fire inside ``"three"``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from functools import lru_cache

Predicate = Callable[[str], bool]
Rule = tuple[Predicate, str]


def normalize(text: str) -> str:
    """Lower-case, straighten curly apostrophes and collapse whitespace."""
    return " ".join(text.replace("’", "'").lower().split())


@lru_cache(maxsize=1024)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)")


def contains_keyword(text: str, keyword: str) -> bool:
    return _keyword_pattern(keyword).search(text) is not None


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(contains_keyword(text, k) for k in keywords)


def any_of(*keywords: str) -> Predicate:
    """Predicate that holds when the text contains any of ``keywords``."""
    return lambda text: contains_any(text, keywords)


def first_match(rules: Sequence[Rule], text: str, default: str) -> str:
    """Evaluate ``rules`` in order against ``normalize(text)``."""
    normalized = normalize(text)
    for predicate, label in rules:
        if predicate(normalized):
            return label
    return default


def is_unclear(text: str) -> bool:
    """Too short (under 3 chars) or without a single letter."""
    stripped = text.strip()
    return len(stripped) < 3 or not any(ch.isalpha() for ch in stripped)
