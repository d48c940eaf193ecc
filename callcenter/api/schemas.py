"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class HistoryTurn(BaseModel):
    """One prior turn supplied by the client."""

    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=4000)


class ChatRequest(BaseModel):
    """Incoming chat message from the frontend."""

    message: str = Field(..., min_length=1, max_length=2000, description="The caller's message")
    session_id: str | None = Field(
        None,
        min_length=1,
        max_length=100,
        description="Conversation key; omitted means the shared default session",
    )
    history: list[HistoryTurn] = Field(
        default_factory=list,
        max_length=50,
        description="Prior turns used to seed a new session; ignored for existing ones",
    )


class SlotModel(BaseModel):
    id: str
    doctor_name: str
    department: str
    date: str
    time: str
    available: bool
    formatted: str


class ChatResponse(BaseModel):
    """Response from the router."""

    reply: str = Field(..., description="The assistant's message")
    agent: str = Field(..., description="Agent that produced the reply")
    session_id: str = Field(..., description="The session ID for this conversation")
    context: dict[str, Any] = Field(default_factory=dict)
    slots: list[SlotModel] = Field(default_factory=list)


class AvailabilityResponse(BaseModel):
    slots: list[SlotModel]
    count: int


class BookingRequest(BaseModel):
    doctor_name: str = Field(..., min_length=1, max_length=100)
    slot_id: str = Field(..., min_length=1, max_length=40)
    patient_name: str = Field(..., min_length=1, max_length=100)
    session_id: str | None = Field(None, min_length=1, max_length=100)


class BookingResponse(BaseModel):
    success: bool = True
    booking_id: str
    slot_id: str
    doctor_name: str
    department: str
    patient_name: str
    when: str


class SessionResponse(BaseModel):
    id: str
    active_agent: str | None
    history: list[HistoryTurn]
    context: dict[str, Any]


class AgentInfo(BaseModel):
    name: str
    description: str


class RoutingInfoResponse(BaseModel):
    agents: list[AgentInfo]
    routing_method: str
    router_model: str
    default_agent: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "city-general-callcenter"
