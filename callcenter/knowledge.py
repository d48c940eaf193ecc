"""HR handbook knowledge base.

Loads ``data/hr_policies.md`` once at import time and splits it into
topics (``## Leave``) and sections (``### Vacation Leave``).  The HR
Handler asks for the sections of one topic that match the staff member's
message, or the whole topic when nothing specific matches.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_HANDBOOK_PATH = Path(__file__).resolve().parent / "data" / "hr_policies.md"


def _load_handbook() -> str:
    """Read the full handbook file."""
    try:
        return _HANDBOOK_PATH.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.error("HR handbook not found at %s", _HANDBOOK_PATH)
        return ""


def split_handbook(content: str) -> dict[str, dict[str, str]]:
    """Split the markdown handbook into ``{topic: {heading: body}}``.

    Text before the first ``##`` heading (the preamble) is dropped.
    """
    topics: dict[str, dict[str, str]] = {}
    # parts[0] is the preamble, then alternating topic/body pairs
    parts = re.split(r"^##\s+(.+?)\s*$", content, flags=re.MULTILINE)
    for i in range(1, len(parts), 2):
        topic = parts[i].strip()
        body = parts[i + 1] if i + 1 < len(parts) else ""
        sections: dict[str, str] = {}
        chunks = re.split(r"^###\s+(.+?)\s*$", body, flags=re.MULTILINE)
        for j in range(1, len(chunks), 2):
            heading = chunks[j].strip()
            text = chunks[j + 1].strip() if j + 1 < len(chunks) else ""
            sections[heading] = text
        topics[topic] = sections
    return topics


_HANDBOOK: dict[str, dict[str, str]] = split_handbook(_load_handbook())


def topics() -> list[str]:
    return list(_HANDBOOK)


def topic_sections(topic: str) -> dict[str, str]:
    """All sections of ``topic`` (empty when the topic is unknown)."""
    return dict(_HANDBOOK.get(topic, {}))


def format_sections(sections: dict[str, str]) -> str:
    return "\n\n".join(f"{heading}: {body}" for heading, body in sections.items())


def policy_text(topic: str, headings: list[str] | None = None) -> str:
    """Render the requested sections of ``topic``, or all of them.

    Unknown headings are ignored; if none of ``headings`` exist the whole
    topic is returned.
    """
    sections = topic_sections(topic)
    if headings:
        chosen = {h: sections[h] for h in headings if h in sections}
        if chosen:
            return format_sections(chosen)
    return format_sections(sections)
