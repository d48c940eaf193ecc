"""Prompt templates, contact details and canned replies for the call-center router.

Canned replies are what a handler says when the LLM cannot answer.  They
must read as a normal assistant reply and always leave the caller a human
contact (phone or email).
"""

HOSPITAL_NAME = "City General Hospital"
MAIN_PHONE = "(555) 123-4567"
SUPPORT_EMAIL = "support@citygeneralhospital.com"
HR_EMAIL = "hr@citygeneralhospital.com"
HR_EXTENSION = "1234"
OFFICE_HOURS = "Monday-Friday, 9:00 AM - 5:00 PM"

SYSTEM_PROMPT = (
    f"You are the virtual assistant of the {HOSPITAL_NAME} call center. "
    "You help callers book, reschedule and cancel doctor appointments and "
    "answer staff HR questions. Be warm, professional and concise. "
    "Never give medical diagnoses or treatment advice; suggest booking an "
    "appointment or calling 911 in an emergency. Never invent appointment "
    "times or policies: use only the information given in the request."
)

SERVICE_MENU = (
    "Here's what I can help you with:\n"
    "• Doctor appointments: check availability, book, reschedule or cancel\n"
    "• HR questions: leave, benefits, timesheets and workplace policies\n"
    "• General questions about the hospital and how to reach us"
)

CONTACT_BLOCK = (
    f"- Phone: {MAIN_PHONE}\n"
    f"- Email: {SUPPORT_EMAIL}\n"
    f"- Office hours: {OFFICE_HOURS}"
)

HR_CONTACT_BLOCK = (
    "HR Department Contact Information:\n"
    f"- Email: {HR_EMAIL}\n"
    f"- Phone: {MAIN_PHONE}, extension {HR_EXTENSION}\n"
    f"- Office hours: {OFFICE_HOURS}\n"
    "- Office location: Building A, 2nd Floor, Room 205\n"
    "Messages left outside business hours are answered within 24 hours."
)

# ── Router ───────────────────────────────────────────────────────────

ROUTER_PROMPT = """You are the router of an AI call center. Decide which specialised agent should handle the caller's message.

Available agents:
{catalog}

{conversation}
Caller's current message: "{message}"

Respond with ONLY a single-line JSON object in exactly this format:
{{"route_to": "agent_name", "message": "brief reason for routing"}}"""

# ── Greeting ─────────────────────────────────────────────────────────

GREETING_WELCOME_PROMPT = """This is the caller's first message: "{message}"

Warmly welcome them to the {hospital} call center, acknowledge what they said, briefly list the services below, and ask how you can help today. Two or three sentences.

{services}"""

GREETING_RETURN_PROMPT = """The caller greeted you again in the middle of the conversation: "{message}"

Reply briefly and steer them back to what you can help with: appointments, HR questions or general inquiries."""

# ── Appointment ──────────────────────────────────────────────────────

APPOINTMENT_PROMPTS: dict[str, str] = {
    "check_availability": """The caller is asking about appointment availability: "{message}"

{slot_section}

Present the options clearly (doctor, date, time) and ask which one they would like to book. If no slots are listed, ask which department or doctor they need.""",
    "book_appointment": """The caller wants to book an appointment: "{message}"

{slot_section}

If slots are listed, ask them to pick one by its reference and give their full name. Otherwise ask which department or doctor they need and their preferred day and time.""",
    "cancel_appointment": """The caller wants to cancel an appointment: "{message}"

Ask for their name, booking reference and appointment date so the front desk can cancel it. Mention that cancellations need 24 hours' notice.""",
    "reschedule_appointment": """The caller wants to reschedule an appointment: "{message}"

{slot_section}

Ask for their current booking reference and help them choose a new time from the options above, if any.""",
    "general_query": """The caller has an appointment-related question: "{message}"

You can check availability, book, reschedule or cancel appointments.
Departments: {departments}

{slot_section}

Answer helpfully and ask how you can help with their appointment.""",
}

BOOKING_CONFIRMATION_PROMPT = """Confirm this appointment to the caller in two short sentences. Do not change any detail.

Booking reference: {booking_id}
Patient: {patient_name}
Appointment: {when}

Remind them to arrive 15 minutes early and that cancellations need 24 hours' notice."""

# ── HR ───────────────────────────────────────────────────────────────

HR_PROMPTS: dict[str, str] = {
    "leave_policy": """The staff member asked about leave: "{message}"

Leave policy:
{policy}

Answer using only this policy and explain how to request leave through the employee portal.""",
    "benefits": """The staff member asked about benefits: "{message}"

Benefits information:
{policy}

Answer using only this information and mention where to find enrollment details.""",
    "timesheet": """The staff member asked about timesheets: "{message}"

Timesheet policy:
{policy}

Explain the relevant procedure and deadline.""",
    "company_policy": """The staff member asked about a workplace policy: "{message}"

Relevant policy:
{policy}

Summarise the policy and mention that the full employee handbook is on the intranet.""",
    "contact_hr": """The staff member wants to contact HR directly: "{message}"

{policy}

Give the contact details and offer to help with anything first.""",
    "general_hr": """The staff member has an HR-related question: "{message}"

You can help with leave, benefits, timesheets, workplace policies and HR contact details.

Ask which of these topics they need.""",
}

# ── Closing ──────────────────────────────────────────────────────────

CLOSING_PROMPTS: dict[str, str] = {
    "final_goodbye": """The caller is saying goodbye: "{message}"

Give a warm, brief farewell: thank them for calling {hospital} and tell them they can reach out again any time.""",
    "offer_additional_help": """The caller thanked you: "{message}"

Conversation so far: {summary}

Acknowledge the thanks, say you were happy to help, and ask whether they need anything else (appointments, HR questions).""",
    "satisfaction_check": """The caller indicated they are done: "{message}"

Conversation so far: {summary}

Briefly recap what was accomplished, ask if they are satisfied with the help, and close warmly.""",
    "feedback_request": """The conversation is ending after a long exchange: "{message}"

Conversation so far: {summary}

Thank them for their time, mention that their feedback helps improve the service, give the phone number {phone} for future help, and close warmly.""",
    "general_closing": """The caller said: "{message}"

This looks like the end of the conversation. Check whether they need anything else, mention appointments and HR support briefly, and close professionally.""",
}

# ── Fallback ─────────────────────────────────────────────────────────

FALLBACK_PROMPTS: dict[str, str] = {
    "technical_issue": """The caller is reporting a technical problem: "{message}"

Apologise for the inconvenience, suggest a simple retry, give these alternatives, and offer help with anything else:
{contacts}""",
    "redirect_to_human": """The caller wants to speak with a person: "{message}"

Conversation so far: {summary}

Respect their preference, give the contact details below, and tell them what to have ready (name, date of birth, booking reference if any).
{contacts}""",
    "unclear_request": """The caller sent an unclear message: "{message}"

Politely ask what they need help with and mention the main services: appointments, HR questions and general inquiries. Do not criticise the message.""",
    "unsupported_service": """The caller asked about something this line does not handle: "{message}"

Explain that this service is not available here, suggest they contact the front desk for it, and list what you can help with: appointments, HR questions, general inquiries.
{contacts}""",
    "general_fallback": """The caller's message does not clearly fit any service: "{message}"

Explain what you can help with (doctor appointments, HR questions, general inquiries) and ask them to rephrase.""",
}

# ── Canned replies ───────────────────────────────────────────────────

GREETING_CANNED = (
    f"Hello! Welcome to the {HOSPITAL_NAME} call center. "
    "I'm here to help you today.\n\n"
    f"{SERVICE_MENU}\n\n"
    "How can I assist you?"
)

GREETING_RETURN_CANNED = (
    "Hello again! I can help with doctor appointments, HR questions or "
    "general inquiries. What would you like to do next?"
)

APPOINTMENT_CANNED = (
    "I'm sorry, I'm having trouble accessing the appointment system right now. "
    f"Please try again in a moment or call our scheduling desk at {MAIN_PHONE} "
    f"({OFFICE_HOURS})."
)

HR_CANNED = (
    "I'm sorry, I'm having trouble accessing the HR information right now. "
    f"Please contact HR directly at {HR_EMAIL} or extension {HR_EXTENSION} "
    "for immediate assistance."
)

CLOSING_CANNED = (
    f"Thank you for contacting {HOSPITAL_NAME} today! If you need anything "
    f"else, call us at {MAIN_PHONE} or write to {SUPPORT_EMAIL}. Have a great day!"
)

FALLBACK_CANNED = (
    "I'm sorry, I'm having some trouble right now. For immediate assistance "
    f"please contact our support team:\n{CONTACT_BLOCK}\n"
    "Thank you for your patience."
)

LANGUAGE_BARRIER_REPLY = (
    "I understand you may be more comfortable in another language.\n\n"
    f"Our phone line at {MAIN_PHONE} offers multilingual support (Spanish, "
    f"French and several other languages) during {OFFICE_HOURS}, or you can "
    f"email {SUPPORT_EMAIL}.\n\n"
    "If you'd like to continue in English, I'm happy to help with doctor "
    "appointments, HR questions or general inquiries."
)

GENERIC_APOLOGY = (
    "I apologize, but something went wrong while handling your message. "
    f"Please try again, or reach us at {MAIN_PHONE} or {SUPPORT_EMAIL}."
)

SLOT_CONFLICT_REPLY = (
    "I'm sorry, that slot is no longer available. Please choose another "
    "time from the options below."
)

SLOT_CONFLICT_NO_ALTERNATIVES_REPLY = (
    "I'm sorry, that slot is no longer available, and I have no other open "
    f"times to offer right now. Please call us at {MAIN_PHONE} and we'll find "
    "you the next opening."
)
