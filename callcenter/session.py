"""Per-conversation state: history, last active agent and accumulated context.

Only the dispatcher mutates a ``Session``.  Handlers and the classifier read
it and return context patches, which the dispatcher folds in with
``merge_context`` (shallow merge, last write per key wins).
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]

VALID_ROLES: frozenset[str] = frozenset({"user", "assistant"})

# Fields a ``last_booking`` context record must carry
BOOKING_RECORD_FIELDS: tuple[str, ...] = ("booking_id", "slot_id", "doctor_name", "patient_name")


class SessionCorruption(Exception):
    """A context patch would leave the session in an invalid state."""


@dataclass(frozen=True)
class Turn:
    """One message in the conversation history."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Session:
    """One ongoing conversation, keyed by an opaque session id."""

    id: str
    history: list[Turn] = field(default_factory=list)
    active_agent: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def is_new(self) -> bool:
        """``True`` until the router has answered at least once."""
        return self.active_agent is None

    def recent(self, limit: int) -> list[Turn]:
        """Return the last ``limit`` turns (oldest first)."""
        if limit <= 0:
            return []
        return self.history[-limit:]

    def recent_user_text(self, limit: int) -> list[str]:
        """Content of the user turns among the last ``limit`` turns."""
        return [t.content for t in self.recent(limit) if t.role == "user"]

    def append_exchange(self, user_message: str, assistant_message: str) -> None:
        """Append the user turn then the assistant turn, in that order."""
        self.history.append(Turn("user", user_message))
        self.history.append(Turn("assistant", assistant_message))

    def snapshot(self) -> Session:
        """Deep copy handed to handlers so they cannot mutate live state."""
        return Session(
            id=self.id,
            history=list(self.history),
            active_agent=self.active_agent,
            context=copy.deepcopy(self.context),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "history": [t.to_dict() for t in self.history],
            "active_agent": self.active_agent,
            "context": dict(self.context),
        }


def turns_from_dicts(raw: Iterable[Any] | None) -> list[Turn]:
    """Build turns from caller-supplied ``{role, content}`` dicts.

    Entries with an unknown role or non-string content are skipped rather
    than rejected; the caller's history is advisory.
    """
    turns: list[Turn] = []
    for item in raw or ():
        if not isinstance(item, Mapping):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in VALID_ROLES and isinstance(content, str) and content.strip():
            turns.append(Turn(role, content))
    return turns


def merge_context(context: Mapping[str, Any], patch: Mapping[str, Any] | None) -> dict[str, Any]:
    """Shallow-merge ``patch`` over ``context`` and validate the result.

    Returns a new dict; ``context`` is never modified.  Raises
    ``SessionCorruption`` when the patch is not a string-keyed mapping or
    the merged ``last_booking`` record is missing required fields.
    """
    if patch is None:
        return dict(context)
    if not isinstance(patch, Mapping):
        raise SessionCorruption(f"context patch must be a mapping, got {type(patch).__name__}")

    bad_keys = [k for k in patch if not isinstance(k, str)]
    if bad_keys:
        raise SessionCorruption(f"context patch has non-string keys: {bad_keys!r}")

    merged = {**context, **patch}

    booking = merged.get("last_booking")
    if booking is not None:
        if not isinstance(booking, Mapping):
            raise SessionCorruption("last_booking must be a mapping")
        missing = [f for f in BOOKING_RECORD_FIELDS if not booking.get(f)]
        if missing:
            raise SessionCorruption(f"last_booking is missing {', '.join(missing)}")

    return merged
