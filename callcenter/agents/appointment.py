"""Appointment handler: availability, booking, cancellation and rescheduling.

Slots are surfaced only when the department is known AND either the
conversation already has some context (two or more recent turns) or the
message is a direct booking request.  Booking needs an exact doctor name
plus slot reference pair; an unknown doctor, a slot that belongs to another
doctor or a slot that is no longer free is rejected with a reason, never
silently swapped for something else.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Any

from callcenter.agents import APPOINTMENT
from callcenter.agents.base import BaseHandler, ResponseEnvelope
from callcenter.agents.keywords import Rule, any_of, contains_any, contains_keyword, first_match, normalize
from callcenter.prompts import (
    APPOINTMENT_CANNED,
    APPOINTMENT_PROMPTS,
    BOOKING_CONFIRMATION_PROMPT,
    MAIN_PHONE,
    SLOT_CONFLICT_NO_ALTERNATIVES_REPLY,
    SLOT_CONFLICT_REPLY,
)
from callcenter.services.hospital_data import (
    SLOT_ID_PATTERN,
    AppointmentSlot,
    BookingResult,
    Doctor,
    HospitalDataStore,
    SlotFilter,
)
from callcenter.services.llm import UpstreamError
from callcenter.services.metrics import metrics
from callcenter.session import Session

logger = logging.getLogger(__name__)

MAX_SLOTS = 5
CONTEXT_TURNS = 4
MIN_CONTEXT_TURNS = 2
DEPARTMENT_LOOKBACK_TURNS = 6

LISTING_TEMPERATURE = 0.5
LISTING_MAX_TOKENS = 300
CONFIRMATION_TEMPERATURE = 0.3
CONFIRMATION_MAX_TOKENS = 150

_SLOT_ID = re.compile(SLOT_ID_PATTERN)
_PATIENT_NAME = re.compile(
    r"(?:my name is|name is|patient name is|patient:|name:)\s*"
    r"([a-z][a-z'\-]*(?:\s+[a-z][a-z'\-]*){0,3})",
    re.IGNORECASE,
)
# Words that end a name captured by ``_PATIENT_NAME``
_NAME_STOP_WORDS = frozenset({"and", "please", "for", "with", "at", "on", "i", "the", "thanks", "thank"})
_DOCTOR_TITLE = re.compile(r"\bdr\.?\s+([a-z][a-z'\-]*(?:\s+[a-z][a-z'\-]*)?)", re.IGNORECASE)


# ── Department detection ─────────────────────────────────────────────

# Department key -> department names, specialist titles and symptom words
DEPARTMENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "cardiology": (
        "cardiology", "cardiologist", "cardiac", "heart", "chest pain",
        "blood pressure", "palpitations",
    ),
    "neurology": (
        "neurology", "neurologist", "headache", "headaches", "migraine",
        "seizure", "seizures", "stroke", "brain", "dizziness", "numbness",
    ),
    "orthopedics": (
        "orthopedics", "orthopedic", "orthopaedic", "bone", "bones", "joint",
        "joints", "knee", "back pain", "fracture", "sprain", "shoulder",
    ),
    "pediatrics": (
        "pediatrics", "pediatrician", "paediatrician", "child", "children",
        "kid", "kids", "baby", "infant", "son", "daughter",
    ),
    "dermatology": (
        "dermatology", "dermatologist", "skin", "rash", "acne", "mole",
        "eczema",
    ),
    "general_practice": (
        "general practice", "general practitioner", "gp", "family doctor",
        "check-up", "checkup", "physical", "flu", "cold",
    ),
}


def detect_department(text: str) -> str | None:
    """Department key named or implied by ``text``, first table hit wins."""
    normalized = normalize(text)
    for key, words in DEPARTMENT_KEYWORDS.items():
        if contains_any(normalized, words):
            return key
    return None


# ── Sub-intents ──────────────────────────────────────────────────────


def has_slot_reference(text: str) -> bool:
    return _SLOT_ID.search(text) is not None


SUB_INTENT_RULES: tuple[Rule, ...] = (
    (has_slot_reference, "book_selection"),
    (any_of("available", "availability", "slots", "free", "open", "openings"), "check_availability"),
    (any_of("book", "schedule", "make appointment", "make an appointment", "reserve"), "book_appointment"),
    (any_of("cancel", "delete"), "cancel_appointment"),
    (any_of("reschedule", "change", "move"), "reschedule_appointment"),
)

DIRECT_REQUEST = any_of(
    "book", "booking", "schedule", "appointment", "appointments", "see a doctor", "reserve",
)

# Sub-intents that may show bookable slots
SLOT_INTENTS = frozenset({"check_availability", "book_appointment", "reschedule_appointment", "general_query"})

TIME_OF_DAY_RULES: tuple[Rule, ...] = (
    (any_of("morning"), "morning"),
    (any_of("afternoon"), "afternoon"),
    (any_of("evening", "tonight"), "evening"),
)


def classify_request(message: str) -> str:
    return first_match(SUB_INTENT_RULES, message, default="general_query")


def extract_slot_id(message: str) -> str | None:
    match = _SLOT_ID.search(message)
    return match.group(0).upper() if match else None


def extract_patient_name(message: str) -> str | None:
    """Name following "my name is" / "name is", title-cased when typed lower."""
    match = _PATIENT_NAME.search(message)
    if not match:
        return None
    words: list[str] = []
    for word in match.group(1).split():
        if word.lower() in _NAME_STOP_WORDS:
            break
        words.append(word)
    if not words:
        return None
    name = " ".join(words)
    return name.title() if name.islower() else name


def extract_doctor_title(message: str) -> str | None:
    """Doctor named as "Dr. <name>" in ``message``, whether or not on staff."""
    match = _DOCTOR_TITLE.search(message)
    if not match:
        return None
    words = []
    for word in match.group(1).split():
        if word.lower() in _NAME_STOP_WORDS:
            break
        words.append(word.capitalize())
    return f"Dr. {' '.join(words)}" if words else None


def should_surface_slots(message: str, session: Session, department: str | None) -> bool:
    """Slot gate: known department AND (enough context OR direct request)."""
    if department is None:
        return False
    has_context = len(session.recent(CONTEXT_TURNS)) >= MIN_CONTEXT_TURNS
    return has_context or DIRECT_REQUEST(normalize(message))


class AppointmentHandler(BaseHandler):
    label = APPOINTMENT
    canned_reply = APPOINTMENT_CANNED

    def __init__(self, llm, data: HospitalDataStore) -> None:
        super().__init__(llm)
        self._data = data

    # ── Entry point ──────────────────────────────────────────────────

    def _handle(self, message: str, session: Session, **_: Any) -> ResponseEnvelope:
        if self._continues_booking(message, session):
            return self._booking_flow(message, session)

        request_type = classify_request(message)
        if request_type == "book_selection":
            return self._booking_flow(message, session)

        department = self.resolve_department(message, session)
        slots: list[AppointmentSlot] = []
        if request_type in SLOT_INTENTS and should_surface_slots(message, session, department):
            slots = self.find_slots(message, department)

        patch: dict[str, Any] = {
            "appointment_request_type": request_type,
            "appointment_slots_provided": bool(slots),
        }
        if department:
            patch["preferred_department"] = department
        if request_type == "cancel_appointment":
            patch["cancellation_requested"] = True
        elif request_type == "reschedule_appointment":
            patch["reschedule_requested"] = True

        prompt = APPOINTMENT_PROMPTS[request_type].format(
            message=message,
            slot_section=self._slot_section(slots, department),
            departments=", ".join(d.name for d in self._data.departments()),
        )
        try:
            text = self._generate(
                prompt, session, temperature=LISTING_TEMPERATURE, max_tokens=LISTING_MAX_TOKENS
            )
        except UpstreamError:
            if not slots:
                raise
            # Slots came from the data store, so they can still be listed
            logger.warning("Appointment listing without LLM text for %d slots", len(slots))
            metrics.record_canned_reply(self.label)
            text = _plain_listing(slots)
            patch["error"] = True

        logger.info(
            "Appointment request %s (department=%s, slots=%d)", request_type, department, len(slots)
        )
        envelope = self._envelope(text, **patch)
        envelope.slots = slots
        return envelope

    # ── Department and slots ─────────────────────────────────────────

    def resolve_department(self, message: str, session: Session) -> str | None:
        """Message first, then the remembered department, then recent user turns."""
        found = detect_department(message)
        if found:
            return found
        doctor = self._doctor_mentioned(message)
        if doctor is not None:
            dept = self._data.find_department(doctor.department)
            if dept is not None:
                return dept.key
        remembered = session.context.get("preferred_department")
        if isinstance(remembered, str) and self._data.find_department(remembered):
            return remembered
        for text in reversed(session.recent_user_text(DEPARTMENT_LOOKBACK_TURNS)):
            found = detect_department(text)
            if found:
                return found
        return None

    def find_slots(self, message: str, department: str | None) -> list[AppointmentSlot]:
        """Up to ``MAX_SLOTS`` free slots, narrowed by day and time of day when asked.

        When the narrowed query finds nothing, the department-wide list is
        offered instead.
        """
        normalized = normalize(message)
        doctor = self._doctor_mentioned(message)
        time_preference = first_match(TIME_OF_DAY_RULES, normalized, default="") or None
        days = self.requested_dates(normalized)

        slot_filter = SlotFilter(
            department=department,
            doctor_name=doctor.name if doctor else None,
            date_from=days[0] if days else None,
            date_to=days[1] if days else None,
            time_preference=time_preference,
        )
        slots = self._data.query_availability(slot_filter)
        if not slots and (days or time_preference or doctor):
            slots = self._data.query_availability(SlotFilter(department=department))
        return slots[:MAX_SLOTS]

    def requested_dates(self, normalized: str) -> tuple[date, date] | None:
        """Inclusive date range asked for: today, tomorrow, this week or next week.

        Weeks run Monday to Sunday; "this week" starts at the schedule's today.
        """
        today = self._data.reference_date
        if contains_keyword(normalized, "next week"):
            monday = today + timedelta(days=7 - today.weekday())
            return monday, monday + timedelta(days=6)
        if contains_keyword(normalized, "this week"):
            return today, today + timedelta(days=6 - today.weekday())
        if contains_keyword(normalized, "tomorrow"):
            tomorrow = today + timedelta(days=1)
            return tomorrow, tomorrow
        if contains_keyword(normalized, "today"):
            return today, today
        return None

    def _doctor_mentioned(self, message: str) -> Doctor | None:
        """Doctor named in the message by full name or "Dr. <surname>"."""
        text = normalize(message.replace(".", " "))
        for doctor in self._data.doctors():
            parts = normalize(doctor.name.replace(".", " ")).split()
            full = " ".join(parts[1:]) if parts and parts[0] == "dr" else " ".join(parts)
            surname = parts[-1]
            if contains_keyword(text, full) or contains_keyword(text, f"dr {surname}"):
                return doctor
        return None

    def _slot_section(self, slots: list[AppointmentSlot], department: str | None) -> str:
        if slots:
            dept = self._data.find_department(department) if department else None
            heading = f"Available appointments in {dept.name}:" if dept else "Available appointments:"
            lines = [heading]
            lines.extend(f"{i}. [{s.id}] {s.formatted}" for i, s in enumerate(slots, 1))
            lines.append("To book, the caller gives the reference, the doctor's name and their full name.")
            return "\n".join(lines)
        if department:
            return "No slots are shown yet; ask which day or time suits the caller."
        return "No department has been chosen yet, so no slots are shown."

    # ── Booking ──────────────────────────────────────────────────────

    def _continues_booking(self, message: str, session: Session) -> bool:
        ctx = session.context
        if not ctx.get("booking_in_progress") or not ctx.get("pending_slot_id"):
            return False
        return (
            extract_patient_name(message) is not None
            or extract_doctor_title(message) is not None
            or self._doctor_mentioned(message) is not None
        )

    def _booking_flow(self, message: str, session: Session) -> ResponseEnvelope:
        ctx = session.context
        slot_id = extract_slot_id(message) or ctx.get("pending_slot_id")
        doctor = self._doctor_mentioned(message)
        # A doctor named in this message, known or not, replaces the parked one
        doctor_name = doctor.name if doctor else extract_doctor_title(message) or ctx.get("pending_doctor")
        patient_name = extract_patient_name(message) or ctx.get("patient_name")

        if not doctor_name:
            return self._pending(
                slot_id, None, patient_name,
                f"I can book {slot_id} for you. Which doctor is the appointment with? "
                "Please give the doctor's full name as shown in the list.",
            )

        # Validate doctor and slot before asking for the patient's name
        result = self.validate_selection(doctor_name, slot_id)
        if result is not None:
            return self._rejection(result, doctor_name, slot_id)

        if not patient_name:
            return self._pending(
                slot_id, doctor_name, None,
                f"Great choice: {slot_id} with {doctor_name}. "
                "To complete the booking, may I have the patient's full name? "
                "(For example: \"My name is Jane Doe\")",
            )

        result = self.book_selection(doctor_name, slot_id, patient_name)
        if not result.success:
            return self._rejection(result, doctor_name, slot_id)
        return self._confirmation(result, session)

    def validate_selection(self, doctor_name: str, slot_id: str) -> BookingResult | None:
        """Failed result when ``(doctor_name, slot_id)`` cannot be booked, else ``None``."""
        doctor = self._data.find_doctor(doctor_name)
        if doctor is None:
            return BookingResult(success=False, reason=f"no doctor named {doctor_name}")
        slot = self._data.get_slot(slot_id)
        if slot is None or not slot.available:
            return BookingResult(success=False, reason=f"slot {slot_id} is not available", conflict=True)
        if slot.doctor_name != doctor.name:
            return BookingResult(
                success=False, reason=f"slot {slot_id} belongs to {slot.doctor_name}, not {doctor.name}"
            )
        return None

    def book_selection(self, doctor_name: str, slot_id: str, patient_name: str) -> BookingResult:
        """Book an exact ``(doctor, slot)`` pair for ``patient_name``.

        Returns a failed ``BookingResult`` with a reason for an unknown
        doctor or a doctor/slot mismatch, and one with ``conflict=True`` when
        the slot is unknown or already taken.
        """
        rejected = self.validate_selection(doctor_name, slot_id)
        if rejected is not None:
            logger.info("Booking rejected: %s", rejected.reason)
            return rejected
        return self._data.book_slot(slot_id, patient_name)

    def _pending(
        self, slot_id: str, doctor_name: str | None, patient_name: str | None, text: str
    ) -> ResponseEnvelope:
        patch: dict[str, Any] = {
            "appointment_request_type": "book_selection",
            "booking_in_progress": True,
            "pending_slot_id": slot_id,
            "pending_doctor": doctor_name,
        }
        if patient_name:
            patch["patient_name"] = patient_name
        return self._envelope(text, **patch)

    def _rejection(self, result: BookingResult, doctor_name: str, slot_id: str) -> ResponseEnvelope:
        slot = self._data.get_slot(slot_id)
        if result.conflict:
            department = slot.department if slot else None
            doctor = self._data.find_doctor(doctor_name)
            department = department or (doctor.department if doctor else None)
            alternatives: list[AppointmentSlot] = []
            if department:
                alternatives = self._data.query_availability(SlotFilter(department=department))[:MAX_SLOTS]
            text = SLOT_CONFLICT_REPLY if alternatives else SLOT_CONFLICT_NO_ALTERNATIVES_REPLY
        else:
            text = f"I couldn't complete that booking: {result.reason}. Please check the doctor's name and the reference."
            alternatives = []
        logger.info("Booking of %s with %s not completed: %s", slot_id, doctor_name, result.reason)
        envelope = self._envelope(
            text,
            appointment_request_type="book_selection",
            booking_confirmed=False,
            booking_in_progress=False,
            pending_slot_id=None,
            pending_doctor=None,
            booking_rejected_reason=result.reason,
            appointment_slots_provided=bool(alternatives),
        )
        envelope.slots = alternatives
        return envelope

    def _confirmation(self, result: BookingResult, session: Session) -> ResponseEnvelope:
        booking = result.booking
        record = booking.to_record()
        prompt = BOOKING_CONFIRMATION_PROMPT.format(
            booking_id=booking.booking_id, patient_name=booking.patient_name, when=booking.slot.formatted
        )
        try:
            text = self._generate(
                prompt, session, temperature=CONFIRMATION_TEMPERATURE, max_tokens=CONFIRMATION_MAX_TOKENS
            )
        except UpstreamError as exc:
            # The booking already happened, so the confirmation must still go out
            logger.warning("Confirmation text unavailable (%s); using plain confirmation", exc)
            text = confirmation_text(record)
        if booking.booking_id not in text:
            text = f"{text}\n\nBooking reference: {booking.booking_id}"

        dept = self._data.find_department(booking.slot.department)
        return self._envelope(
            text,
            appointment_request_type="book_selection",
            booking_confirmed=True,
            last_booking=record,
            booking_in_progress=False,
            pending_slot_id=None,
            pending_doctor=None,
            patient_name=booking.patient_name,
            preferred_department=dept.key if dept else None,
        )


def confirmation_text(record: dict[str, Any]) -> str:
    return (
        f"Your appointment is confirmed, {record['patient_name']}: {record['when']}. "
        f"Your booking reference is {record['booking_id']}. Please arrive 15 minutes early; "
        f"to cancel or change it, call {MAIN_PHONE} at least 24 hours ahead."
    )


def _plain_listing(slots: list[AppointmentSlot]) -> str:
    lines = ["Here are the next available appointments:"]
    lines.extend(f"{i}. {s.formatted} (ref {s.id})" for i, s in enumerate(slots, 1))
    lines.append("Reply with the reference, the doctor's name and your full name to book.")
    return "\n".join(lines)
