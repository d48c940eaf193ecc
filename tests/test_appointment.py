"""Tests for the Appointment handler.

Covers:
  - Department detection and sub-intent rules
  - The slot-surfacing gate (department AND (context OR direct request))
  - In-chat booking: exact doctor/slot match, pending selections, conflicts
  - Degradation when the LLM fails
"""

from __future__ import annotations

from datetime import date

import pytest

from callcenter.agents.appointment import (
    MAX_SLOTS,
    AppointmentHandler,
    classify_request,
    detect_department,
    extract_doctor_title,
    extract_patient_name,
    extract_slot_id,
)
from callcenter.prompts import (
    APPOINTMENT_CANNED,
    MAIN_PHONE,
    SLOT_CONFLICT_NO_ALTERNATIVES_REPLY,
    SLOT_CONFLICT_REPLY,
)
from callcenter.services.hospital_data import SlotFilter

SLOT_ID = "CAR-20261020-0900-D01"  # Dr. Sarah Martinez, Tuesday 9:00


@pytest.fixture
def handler(llm, data_store):
    return AppointmentHandler(llm, data_store)


# ── Pure helpers ─────────────────────────────────────────────────────


class TestDepartmentDetection:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("I need a cardiologist", "cardiology"),
            ("I've had terrible headaches", "neurology"),
            ("My knee hurts after running", "orthopedics"),
            ("Appointment for my baby", "pediatrics"),
            ("I have a skin rash", "dermatology"),
            ("Just a routine checkup", "general_practice"),
            ("Can I come in next week?", None),
        ],
    )
    def test_specialty_and_symptom_words(self, text, expected):
        assert detect_department(text) == expected


class TestRequestClassification:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("What slots are available?", "check_availability"),
            ("I'd like to book a visit", "book_appointment"),
            ("Please cancel my appointment", "cancel_appointment"),
            ("I need to reschedule", "reschedule_appointment"),
            (f"I'll take {SLOT_ID}", "book_selection"),
            ("What departments do you have?", "general_query"),
        ],
    )
    def test_sub_intents(self, message, expected):
        assert classify_request(message) == expected

    def test_slot_reference_wins_over_other_words(self):
        assert classify_request(f"book {SLOT_ID} and cancel the other one") == "book_selection"


class TestExtraction:
    def test_slot_id_is_uppercased(self):
        assert extract_slot_id("take car-20261020-0900-d01 please") == SLOT_ID

    def test_no_slot_id(self):
        assert extract_slot_id("the 9am one") is None

    def test_patient_name(self):
        assert extract_patient_name("My name is Jane Doe") == "Jane Doe"

    def test_patient_name_stops_at_connector(self):
        assert extract_patient_name("my name is john smith and I need a slot") == "John Smith"

    def test_no_patient_name(self):
        assert extract_patient_name("I'm looking for a doctor") is None

    def test_doctor_title(self):
        assert extract_doctor_title("with dr. jones please") == "Dr. Jones"
        assert extract_doctor_title("with Dr. Sarah Martinez") == "Dr. Sarah Martinez"
        assert extract_doctor_title("any doctor is fine") is None


# ── Slot surfacing ───────────────────────────────────────────────────


class TestSlotGate:
    def test_no_department_means_no_slots(self, handler, make_session):
        envelope = handler.handle("book an appointment", make_session())
        assert envelope.slots == []
        assert envelope.context_patch["appointment_slots_provided"] is False

    def test_direct_request_with_department_shows_slots(self, handler, make_session):
        envelope = handler.handle("book a cardiology appointment", make_session())
        assert envelope.slots
        assert {s.department for s in envelope.slots} == {"Cardiology"}
        assert envelope.context_patch["preferred_department"] == "cardiology"

    def test_department_without_request_or_context_shows_nothing(self, handler, make_session):
        envelope = handler.handle("tell me about cardiology", make_session())
        assert envelope.slots == []

    def test_department_with_enough_context_shows_slots(self, handler, make_session):
        session = make_session([("user", "hello"), ("assistant", "Hi! How can I help?")])
        envelope = handler.handle("tell me about cardiology", session)
        assert envelope.slots

    def test_department_from_recent_turns(self, handler, make_session):
        session = make_session([
            ("user", "I think I need to see someone in cardiology"),
            ("assistant", "I can help you find a cardiologist."),
            ("user", "Yes, cardiology please"),
        ])
        envelope = handler.handle("book an appointment", session)
        assert envelope.slots
        assert all(s.department == "Cardiology" for s in envelope.slots)
        payload = envelope.payload()
        assert payload["text"] == "Happy to help with that."
        assert len(payload["slots"]) == len(envelope.slots)

    def test_department_from_context(self, handler, make_session):
        session = make_session(
            [("user", "hello"), ("assistant", "Hi! How can I help?")],
            context={"preferred_department": "dermatology"},
        )
        envelope = handler.handle("what times are available?", session)
        assert envelope.slots
        assert {s.department for s in envelope.slots} == {"Dermatology"}

    def test_at_most_five_slots(self, handler, make_session):
        envelope = handler.handle("book a neurology appointment", make_session())
        assert len(envelope.slots) == MAX_SLOTS

    def test_day_and_time_of_day_filters(self, handler, make_session):
        envelope = handler.handle("book a cardiology appointment tomorrow morning", make_session())
        assert envelope.slots
        assert all(s.date == date(2026, 10, 20) and s.time.hour < 12 for s in envelope.slots)

    def test_next_week_filter(self, handler, make_session):
        envelope = handler.handle("book a cardiology appointment next week", make_session())
        assert envelope.slots
        assert all(date(2026, 10, 26) <= s.date <= date(2026, 11, 1) for s in envelope.slots)

    def test_this_week_filter(self, handler, make_session):
        envelope = handler.handle("any cardiology appointments this week?", make_session())
        assert envelope.slots
        assert all(date(2026, 10, 19) <= s.date <= date(2026, 10, 25) for s in envelope.slots)

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("next week please", (date(2026, 10, 26), date(2026, 11, 1))),
            ("sometime this week", (date(2026, 10, 19), date(2026, 10, 25))),
            ("tomorrow", (date(2026, 10, 20), date(2026, 10, 20))),
            ("whenever suits", None),
        ],
    )
    def test_requested_dates(self, handler, text, expected):
        assert handler.requested_dates(text) == expected

    def test_doctor_mention_narrows_slots(self, handler, make_session):
        envelope = handler.handle("Can I book with Dr. Chen?", make_session())
        assert envelope.slots
        assert {s.doctor_name for s in envelope.slots} == {"Dr. Michael Chen"}

    def test_slot_section_reaches_the_prompt(self, handler, llm, make_session):
        envelope = handler.handle("book a cardiology appointment", make_session())
        prompt = llm.generate_text.call_args.args[0]
        assert envelope.slots[0].id in prompt

    def test_cancel_sets_flag(self, handler, make_session):
        envelope = handler.handle("Please cancel my appointment", make_session())
        assert envelope.context_patch["cancellation_requested"] is True
        assert envelope.slots == []


# ── Booking ──────────────────────────────────────────────────────────


class TestInChatBooking:
    def test_complete_booking(self, handler, data_store, make_session):
        envelope = handler.handle(
            f"Book {SLOT_ID} with Dr. Sarah Martinez, my name is Jane Doe", make_session()
        )
        patch = envelope.context_patch
        assert patch["booking_confirmed"] is True
        assert patch["last_booking"]["slot_id"] == SLOT_ID
        assert patch["last_booking"]["patient_name"] == "Jane Doe"
        assert patch["booking_in_progress"] is False
        assert patch["last_booking"]["booking_id"] in envelope.message
        assert data_store.get_slot(SLOT_ID).available is False

    def test_missing_name_parks_the_selection(self, handler, data_store, make_session):
        envelope = handler.handle(f"I'll take {SLOT_ID} with Dr. Sarah Martinez", make_session())
        patch = envelope.context_patch
        assert patch["booking_in_progress"] is True
        assert patch["pending_slot_id"] == SLOT_ID
        assert patch["pending_doctor"] == "Dr. Sarah Martinez"
        assert "name" in envelope.message.lower()
        assert data_store.get_slot(SLOT_ID).available is True

    def test_name_completes_a_pending_booking(self, handler, data_store, make_session):
        session = make_session(context={
            "booking_in_progress": True,
            "pending_slot_id": SLOT_ID,
            "pending_doctor": "Dr. Sarah Martinez",
        })
        envelope = handler.handle("My name is Jane Doe", session)
        assert envelope.context_patch["booking_confirmed"] is True
        assert envelope.context_patch["pending_slot_id"] is None
        assert data_store.get_slot(SLOT_ID).available is False

    def test_missing_doctor_is_asked_for(self, handler, data_store, make_session):
        envelope = handler.handle(f"Book {SLOT_ID}, my name is Jane Doe", make_session())
        assert envelope.context_patch["pending_doctor"] is None
        assert "doctor" in envelope.message.lower()
        assert data_store.get_slot(SLOT_ID).available is True

    def test_doctor_slot_mismatch_is_rejected(self, handler, data_store, make_session):
        envelope = handler.handle(
            f"Book {SLOT_ID} with Dr. Michael Chen, my name is Jane Doe", make_session()
        )
        assert envelope.context_patch["booking_confirmed"] is False
        assert "Dr. Sarah Martinez" in envelope.context_patch["booking_rejected_reason"]
        assert data_store.get_slot(SLOT_ID).available is True
        assert data_store.bookings() == []

    def test_taken_slot_is_a_conflict_with_alternatives(self, handler, data_store, make_session):
        data_store.book_slot(SLOT_ID, "Someone Else")
        envelope = handler.handle(
            f"Book {SLOT_ID} with Dr. Sarah Martinez, my name is Jane Doe", make_session()
        )
        assert envelope.message == SLOT_CONFLICT_REPLY
        assert envelope.slots
        assert SLOT_ID not in {s.id for s in envelope.slots}
        assert all(s.available for s in envelope.slots)

    def test_conflict_without_alternatives_gives_the_phone_number(self, handler, data_store, make_session):
        for slot in data_store.query_availability(SlotFilter(department="cardiology")):
            data_store.book_slot(slot.id, "Someone Else")
        envelope = handler.handle(
            f"Book {SLOT_ID} with Dr. Sarah Martinez, my name is Jane Doe", make_session()
        )
        assert envelope.message == SLOT_CONFLICT_NO_ALTERNATIVES_REPLY
        assert MAIN_PHONE in envelope.message
        assert envelope.slots == []
        assert envelope.context_patch["appointment_slots_provided"] is False

    def test_unknown_named_doctor_is_not_replaced_by_the_pending_one(self, handler, data_store, make_session):
        session = make_session(context={
            "booking_in_progress": True,
            "pending_slot_id": SLOT_ID,
            "pending_doctor": "Dr. Sarah Martinez",
        })
        envelope = handler.handle("It's with Dr. Who, my name is Jane Doe", session)
        assert envelope.context_patch["booking_confirmed"] is False
        assert envelope.context_patch["booking_rejected_reason"] == "no doctor named Dr. Who"
        assert data_store.get_slot(SLOT_ID).available is True


class TestBookSelection:
    def test_unknown_doctor_is_rejected(self, handler):
        result = handler.book_selection("Dr. Nobody", SLOT_ID, "Jane Doe")
        assert not result.success
        assert not result.conflict
        assert "no doctor" in result.reason

    def test_exact_pair_books(self, handler):
        result = handler.book_selection("Dr. Sarah Martinez", SLOT_ID, "Jane Doe")
        assert result.success
        assert result.booking.slot.doctor_name == "Dr. Sarah Martinez"

    def test_second_booking_conflicts(self, handler):
        handler.book_selection("Dr. Sarah Martinez", SLOT_ID, "Jane Doe")
        result = handler.book_selection("Dr. Sarah Martinez", SLOT_ID, "John Roe")
        assert not result.success
        assert result.conflict


# ── LLM failures ─────────────────────────────────────────────────────


class TestLLMFailure:
    def test_canned_reply_when_nothing_to_list(self, failing_llm, data_store, make_session):
        envelope = AppointmentHandler(failing_llm, data_store).handle("book an appointment", make_session())
        assert envelope.message == APPOINTMENT_CANNED
        assert MAIN_PHONE in envelope.message
        assert envelope.context_patch["error"] is True

    def test_slots_are_still_listed(self, failing_llm, data_store, make_session):
        envelope = AppointmentHandler(failing_llm, data_store).handle(
            "book a cardiology appointment", make_session()
        )
        assert envelope.slots
        assert envelope.slots[0].id in envelope.message
        assert envelope.context_patch["error"] is True

    def test_booking_still_confirmed(self, failing_llm, data_store, make_session):
        envelope = AppointmentHandler(failing_llm, data_store).handle(
            f"Book {SLOT_ID} with Dr. Sarah Martinez, my name is Jane Doe", make_session()
        )
        assert envelope.context_patch["booking_confirmed"] is True
        assert envelope.context_patch["last_booking"]["booking_id"] in envelope.message
        assert "Jane Doe" in envelope.message
