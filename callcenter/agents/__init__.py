"""Agent labels and the catalog shown to the router.

The label set is closed: a routing decision naming anything else is a
classifier defect and is coerced to ``fallback``.
"""

GREETING = "greeting"
APPOINTMENT = "appointment"
HR = "hr"
CLOSING = "closing"
FALLBACK = "fallback"

AGENT_CATALOG: dict[str, str] = {
    GREETING: "Welcome messages, general help requests, service overviews",
    APPOINTMENT: "Doctor appointment scheduling, booking, cancelling, rescheduling, availability checks",
    HR: "HR policies, employee benefits, leave requests, timesheet questions, company policies",
    CLOSING: "Conversation endings, goodbyes, thank-you messages, satisfaction confirmations",
    FALLBACK: "Unclear requests, unsupported topics, when no other agent fits",
}

AGENT_LABELS: frozenset[str] = frozenset(AGENT_CATALOG)
