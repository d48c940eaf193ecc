"""Dispatch loop: one conversation turn from message to response.

Architecture:
  Each turn runs a small LangGraph ``StateGraph`` over a snapshot of the
  session:

      START → (first turn?) → greeting → END
      START → (otherwise)   → classify → <agent> → END

  ``classify`` is the Intent Classifier; ``<agent>`` is one of the five
  handlers.  A label outside the catalog goes to ``fallback``.

  Sessions:
    The dispatcher is the only writer of sessions.  It holds the per-key
    lock for the whole turn, so turns for one session apply in arrival
    order while other sessions proceed in parallel.  Handlers see a deep
    copy and return context patches, which are validated and merged here.

  Failures:
    Nothing raises out of ``turn()``.  Handlers already fall back to their
    canned replies when the LLM fails; anything else is caught here and
    answered with the generic apology, flagged ``error: True``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from callcenter import config
from callcenter.agents import AGENT_CATALOG, AGENT_LABELS, APPOINTMENT, CLOSING, FALLBACK, GREETING, HR
from callcenter.agents.appointment import AppointmentHandler
from callcenter.agents.base import BaseHandler, ResponseEnvelope
from callcenter.agents.classifier import IntentClassifier
from callcenter.agents.closing import ClosingHandler
from callcenter.agents.fallback import FallbackHandler
from callcenter.agents.greeting import GreetingHandler
from callcenter.agents.hr import HRHandler
from callcenter.prompts import GENERIC_APOLOGY
from callcenter.services.hospital_data import BookingResult, HospitalDataStore
from callcenter.services.llm import LLMClient
from callcenter.services.metrics import metrics
from callcenter.services.session_store import InMemorySessionStore, KeyedLocks, SessionStore
from callcenter.session import Session, SessionCorruption, merge_context, turns_from_dicts

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"
ROUTING_METHOD = "llm_with_rule_fallback"


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """State flowing through the turn graph.

    ``session`` is a snapshot; nodes never write to the live session.
    ``route_to`` is set by the classify node and read by its conditional
    edge.  ``envelope`` is the handler's answer.
    """

    message: str
    session: Session
    first_turn: bool
    route_to: str
    reason: str
    envelope: ResponseEnvelope


@dataclass
class TurnResult:
    """What ``turn()`` hands back to its caller."""

    message: str
    agent: str
    session_id: str
    context: dict[str, Any] = field(default_factory=dict)
    slots: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "agent": self.agent,
            "session_id": self.session_id,
            "context": self.context,
            "slots": self.slots,
        }


# ── Conditional edges ────────────────────────────────────────────────


def route_entry(state: TurnState) -> str:
    """Bootstrapping turns go straight to the greeting."""
    return GREETING if state.get("first_turn") else "classify"


def route_by_label(state: TurnState) -> str:
    label = state.get("route_to", FALLBACK)
    if label not in AGENT_LABELS:
        logger.error("Classifier returned unknown agent %r; using fallback", label)
        return FALLBACK
    return label


# ── Dispatcher ───────────────────────────────────────────────────────


class Dispatcher:
    """Coordinates sessions, the classifier and the handlers."""

    def __init__(
        self,
        llm,
        data: HospitalDataStore,
        store: SessionStore,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.data = data
        self._store = store
        self._locks = locks or KeyedLocks()
        self._classifier = IntentClassifier(llm)

        appointments = AppointmentHandler(llm, data)
        self._appointments = appointments
        self._handlers: dict[str, BaseHandler] = {
            GREETING: GreetingHandler(llm),
            APPOINTMENT: appointments,
            HR: HRHandler(llm),
            CLOSING: ClosingHandler(llm),
            FALLBACK: FallbackHandler(llm, appointments),
        }
        self._graph = self._build_graph()

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(TurnState)
        graph.add_node("classify", self._classify_node)
        for label, handler in self._handlers.items():
            graph.add_node(label, self._make_handler_node(handler))
            graph.add_edge(label, END)

        graph.add_conditional_edges(
            START, route_entry, {GREETING: GREETING, "classify": "classify"},
        )
        graph.add_conditional_edges(
            "classify", route_by_label, {label: label for label in self._handlers},
        )
        compiled = graph.compile()
        logger.debug("Turn graph compiled with %d handlers", len(self._handlers))
        return compiled

    def _classify_node(self, state: TurnState) -> dict:
        decision = self._classifier.classify(state["message"], state["session"])
        return {"route_to": decision.route_to, "reason": decision.reason}

    @staticmethod
    def _make_handler_node(handler: BaseHandler):
        def handler_node(state: TurnState) -> dict:
            envelope = handler.handle(
                state["message"], state["session"], first_turn=state.get("first_turn", False)
            )
            return {"envelope": envelope}

        handler_node.__name__ = f"{handler.label}_node"
        return handler_node

    # ── Turns ────────────────────────────────────────────────────────

    def turn(
        self,
        message: str,
        session_id: str | None = None,
        client_history: list[dict[str, Any]] | None = None,
    ) -> TurnResult:
        """Process one message and return the reply.  Never raises."""
        session_id = session_id or DEFAULT_SESSION_ID
        t0 = time.perf_counter()
        with self._locks.hold(session_id):
            session = self._load(session_id, client_history)
            envelope = self._run(message, session)
            self._store.set(session)
            result = TurnResult(
                message=envelope.message,
                agent=envelope.agent,
                session_id=session_id,
                context=dict(session.context),
                slots=[s.to_dict() for s in envelope.slots],
            )
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_turn(envelope.agent, elapsed, error=envelope.is_error)
        logger.info(
            "Turn for session %s answered by %s in %.0fms", session_id, envelope.agent, elapsed
        )
        return result

    def _load(self, session_id: str, client_history: list[dict[str, Any]] | None) -> Session:
        session = self._store.get(session_id)
        if session is not None:
            return session
        history = turns_from_dicts(client_history)
        logger.info("New session %s (%d seeded turns)", session_id, len(history))
        return Session(id=session_id, history=history)

    def _run(self, message: str, session: Session) -> ResponseEnvelope:
        """Run the graph and fold its envelope into ``session``."""
        try:
            state = self._graph.invoke(
                {"message": message, "session": session.snapshot(), "first_turn": session.is_new}
            )
            envelope = state["envelope"]
            if not envelope.message or not envelope.message.strip():
                raise ValueError(f"{envelope.agent} handler returned an empty message")
        except Exception:
            logger.exception("Turn failed for session %s", session.id)
            envelope = _apology()

        try:
            context = merge_context(session.context, envelope.context_patch)
        except SessionCorruption as exc:
            logger.error("Discarding context patch from %s: %s", envelope.agent, exc)
            envelope = _apology()
            context = {**session.context, **envelope.context_patch}

        session.append_exchange(message, envelope.message)
        session.active_agent = envelope.agent
        session.context = context
        return envelope

    # ── Session access ───────────────────────────────────────────────

    def get_session(self, session_id: str) -> Session | None:
        """A copy of the stored session, or ``None``."""
        with self._locks.hold(session_id):
            session = self._store.get(session_id)
            return session.snapshot() if session is not None else None

    def reset_session(self, session_id: str) -> bool:
        with self._locks.hold(session_id):
            existed = self._store.delete(session_id)
        logger.info("Session %s reset (existed=%s)", session_id, existed)
        return existed

    # ── Booking outside the chat ─────────────────────────────────────

    def book(
        self,
        doctor_name: str,
        slot_id: str,
        patient_name: str,
        session_id: str | None = None,
    ) -> BookingResult:
        """Book an exact doctor/slot pair and remember it on the session."""
        result = self._appointments.book_selection(doctor_name, slot_id, patient_name)
        if result.success and session_id:
            self.record_booking(session_id, result)
        return result

    def record_booking(self, session_id: str, result: BookingResult) -> None:
        """Store a completed booking as ``last_booking`` in the session context."""
        record = result.booking.to_record()
        with self._locks.hold(session_id):
            session = self._store.get(session_id) or Session(id=session_id)
            session.context = merge_context(
                session.context, {"last_booking": record, "booking_confirmed": True}
            )
            self._store.set(session)
        logger.info("Booking %s recorded on session %s", record["booking_id"], session_id)

    # ── Introspection ────────────────────────────────────────────────

    @staticmethod
    def routing_info() -> dict[str, Any]:
        return {
            "agents": [{"name": label, "description": desc} for label, desc in AGENT_CATALOG.items()],
            "routing_method": ROUTING_METHOD,
            "router_model": config.ROUTER_MODEL_NAME,
            "default_agent": FALLBACK,
        }


def _apology() -> ResponseEnvelope:
    return ResponseEnvelope(GENERIC_APOLOGY, FALLBACK, {"error": True})


def create_dispatcher(
    llm=None,
    data: HospitalDataStore | None = None,
    store: SessionStore | None = None,
) -> Dispatcher:
    """Build a dispatcher wired to the configured LLM, data and session store."""
    dispatcher = Dispatcher(
        llm if llm is not None else LLMClient(),
        data if data is not None else HospitalDataStore(),
        store if store is not None else InMemorySessionStore(
            config.SESSION_TTL_SECONDS, config.SESSION_MAX_ENTRIES
        ),
    )
    logger.debug(
        "Dispatcher ready: router %s, handlers %s", config.ROUTER_MODEL_NAME, config.MODEL_NAME
    )
    return dispatcher
