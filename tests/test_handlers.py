"""Tests for the greeting, HR and closing handlers and the shared handler base."""

from __future__ import annotations

import pytest

from callcenter.agents.base import BaseHandler, ResponseEnvelope, summarize_activity
from callcenter.agents.closing import ClosingHandler, classify_closing
from callcenter.agents.greeting import GreetingHandler
from callcenter.agents.hr import HRHandler, classify_query, matching_sections, policy_for
from callcenter.prompts import (
    CLOSING_CANNED,
    GREETING_CANNED,
    GREETING_RETURN_CANNED,
    HR_CANNED,
    HR_EMAIL,
    MAIN_PHONE,
    SERVICE_MENU,
)
from callcenter.services.llm import UpstreamError


# ── Base ─────────────────────────────────────────────────────────────


class _EchoHandler(BaseHandler):
    label = "echo"
    canned_reply = "Canned echo."

    def _handle(self, message, session, **_):
        return self._envelope(self._generate(message, session, temperature=0.1, max_tokens=10))


class TestBaseHandler:
    def test_success_marks_no_error(self, llm, make_session):
        envelope = _EchoHandler(llm).handle("hi", make_session())
        assert envelope.message == "Happy to help with that."
        assert envelope.context_patch == {"error": False}

    def test_history_and_operation_are_forwarded(self, llm, make_session):
        session = make_session([("user", "hello"), ("assistant", "hi")])
        _EchoHandler(llm).handle("hi", session)
        kwargs = llm.generate_text.call_args.kwargs
        assert kwargs["history"] == session.history
        assert kwargs["operation"] == "echo"

    @pytest.mark.parametrize("failure", [UpstreamError("bad"), RuntimeError("sdk bug"), TimeoutError()])
    def test_any_llm_exception_gives_canned_reply(self, llm, make_session, failure):
        llm.generate_text.side_effect = failure
        envelope = _EchoHandler(llm).handle("hi", make_session())
        assert envelope.message == "Canned echo."
        assert envelope.context_patch["error"] is True

    @pytest.mark.parametrize("reply", ["", "   ", None])
    def test_empty_reply_gives_canned_reply(self, llm, make_session, reply):
        llm.generate_text.return_value = reply
        envelope = _EchoHandler(llm).handle("hi", make_session())
        assert envelope.message == "Canned echo."

    def test_payload_is_plain_text_without_slots(self):
        assert ResponseEnvelope("hello", "greeting").payload() == "hello"


class TestSummarizeActivity:
    def test_nothing_yet(self):
        assert summarize_activity({}) == "General assistance provided"

    def test_booking_and_hr(self):
        summary = summarize_activity({"booking_confirmed": True, "query_type": "leave_policy"})
        assert "appointment booked" in summary
        assert "HR assistance (leave policy)" in summary


# ── Greeting ─────────────────────────────────────────────────────────


class TestGreetingHandler:
    def test_first_turn_includes_service_menu(self, llm, make_session):
        envelope = GreetingHandler(llm).handle("Hello", make_session(active_agent=None), first_turn=True)
        assert SERVICE_MENU in envelope.message
        assert envelope.context_patch["greeting_type"] == "welcome"
        assert envelope.context_patch["greeted"] is True

    def test_first_turn_keeps_llm_text_that_already_lists_services(self, llm, make_session):
        llm.generate_text.return_value = "Welcome! I can help with appointments and HR."
        envelope = GreetingHandler(llm).handle("Hello", make_session(active_agent=None), first_turn=True)
        assert envelope.message == "Welcome! I can help with appointments and HR."

    def test_mid_conversation_is_a_re_greeting(self, llm, make_session):
        envelope = GreetingHandler(llm).handle("hi again", make_session([("user", "x"), ("assistant", "y")]))
        assert envelope.context_patch["greeting_type"] == "re_greeting"
        assert SERVICE_MENU not in envelope.message

    def test_welcome_uses_warm_temperature(self, llm, make_session):
        GreetingHandler(llm).handle("Hello", make_session(active_agent=None), first_turn=True)
        assert llm.generate_text.call_args.kwargs["temperature"] == 0.8

    def test_canned_welcome(self, failing_llm, make_session):
        envelope = GreetingHandler(failing_llm).handle("Hello", make_session(active_agent=None), first_turn=True)
        assert envelope.message == GREETING_CANNED
        assert SERVICE_MENU in envelope.message
        assert envelope.context_patch["greeting_type"] == "welcome"
        assert envelope.context_patch["error"] is True

    def test_canned_re_greeting(self, failing_llm, make_session):
        envelope = GreetingHandler(failing_llm).handle("hello", make_session())
        assert envelope.message == GREETING_RETURN_CANNED


# ── HR ───────────────────────────────────────────────────────────────


class TestHRClassification:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("How many vacation days do I get?", "leave_policy"),
            ("What does the dental insurance cover?", "benefits"),
            ("When is my timesheet due?", "timesheet"),
            ("What is the dress code?", "company_policy"),
            ("I need to contact HR", "contact_hr"),
            ("I have an HR question", "general_hr"),
        ],
    )
    def test_query_types(self, message, expected):
        assert classify_query(message) == expected

    def test_leave_is_checked_before_policy(self):
        assert classify_query("What is the sick leave policy?") == "leave_policy"


class TestHandbookSelection:
    def test_matching_sections(self):
        assert matching_sections("Leave", "parental and sick leave") == ["Sick Leave", "Parental Leave"]

    def test_specific_section_only(self):
        text = policy_for("leave_policy", "how much sick leave?")
        assert text.startswith("Sick Leave:")
        assert "Vacation Leave" not in text

    def test_whole_topic_when_nothing_specific(self):
        text = policy_for("benefits", "tell me about benefits")
        assert "Health Insurance" in text
        assert "Retirement Plan" in text

    def test_contact_block(self):
        assert HR_EMAIL in policy_for("contact_hr", "contact hr")

    def test_general_has_no_policy(self):
        assert policy_for("general_hr", "question") == ""


class TestHRHandler:
    def test_policy_text_reaches_the_prompt(self, llm, make_session):
        envelope = HRHandler(llm).handle("How much sick leave do I get?", make_session())
        prompt = llm.generate_text.call_args.args[0]
        assert "Sick Leave:" in prompt
        assert envelope.context_patch["query_type"] == "leave_policy"
        assert envelope.context_patch["information_provided"] is True

    def test_factual_temperature(self, llm, make_session):
        HRHandler(llm).handle("benefits?", make_session())
        assert llm.generate_text.call_args.kwargs["temperature"] == 0.6

    def test_canned_reply_names_hr_contact(self, failing_llm, make_session):
        envelope = HRHandler(failing_llm).handle("vacation days?", make_session())
        assert envelope.message == HR_CANNED
        assert HR_EMAIL in envelope.message
        assert envelope.context_patch["information_provided"] is False


# ── Closing ──────────────────────────────────────────────────────────


class TestClosingHandler:
    @pytest.mark.parametrize(
        "message, expected",
        [
            ("bye, thanks for the help", "final_goodbye"),
            ("Thank you so much", "offer_additional_help"),
            ("I'm done", "satisfaction_check"),
            ("ok", "general_closing"),
        ],
    )
    def test_closing_types(self, make_session, message, expected):
        assert classify_closing(message, make_session()) == expected

    def test_long_conversation_asks_for_feedback(self, make_session):
        history = [("user", "q"), ("assistant", "a")] * 5
        assert classify_closing("ok then", make_session(history)) == "feedback_request"

    def test_summary_reaches_the_prompt(self, llm, make_session):
        session = make_session(context={"booking_confirmed": True})
        ClosingHandler(llm).handle("thanks!", session)
        assert "appointment booked" in llm.generate_text.call_args.args[0]

    def test_goodbye_is_short_and_warm(self, llm, make_session):
        envelope = ClosingHandler(llm).handle("goodbye", make_session())
        kwargs = llm.generate_text.call_args.kwargs
        assert kwargs["temperature"] == 0.8
        assert kwargs["max_tokens"] == 150
        assert envelope.context_patch["closing_type"] == "final_goodbye"
        assert envelope.context_patch["conversation_ending"] is True

    def test_canned_reply(self, failing_llm, make_session):
        envelope = ClosingHandler(failing_llm).handle("bye", make_session())
        assert envelope.message == CLOSING_CANNED
        assert MAIN_PHONE in envelope.message
        assert envelope.context_patch["conversation_ending"] is True
