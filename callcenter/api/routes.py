"""FastAPI route definitions for the call-center router API."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request

from callcenter.api.schemas import (
    AvailabilityResponse,
    BookingRequest,
    BookingResponse,
    ChatRequest,
    ChatResponse,
    HealthResponse,
    RoutingInfoResponse,
    SessionResponse,
)
from callcenter.services.hospital_data import SlotFilter

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_dispatcher(request: Request):
    """Retrieve the dispatcher created by the lifespan (see ``server.py``)."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return dispatcher


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to the call-center router and get the reply.

    ``turn()`` blocks on LLM calls, so it runs in a worker thread to keep
    the event loop free for other sessions.  It never raises: failures come
    back as a polite apology with ``context.error`` set.
    """
    dispatcher = _get_dispatcher(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    result = await asyncio.to_thread(
        dispatcher.turn,
        request.message,
        request.session_id,
        [turn.model_dump() for turn in request.history],
    )
    logger.info("[%s] Session %s answered by %s", request_id, result.session_id, result.agent)
    return ChatResponse(
        reply=result.message,
        agent=result.agent,
        session_id=result.session_id,
        context=result.context,
        slots=result.slots,
    )


@router.get("/appointments", response_model=AvailabilityResponse)
async def list_appointments(
    http_request: Request,
    department: str | None = None,
    doctor_name: str | None = None,
    day: date | None = Query(None, alias="date"),
    time_preference: Literal["morning", "afternoon", "evening"] | None = None,
    limit: int = Query(20, ge=1, le=100),
):
    """Currently available slots, earliest first."""
    dispatcher = _get_dispatcher(http_request)
    slots = dispatcher.data.query_availability(
        SlotFilter(
            department=department,
            doctor_name=doctor_name,
            date=day,
            time_preference=time_preference,
        )
    )
    return AvailabilityResponse(slots=[s.to_dict() for s in slots[:limit]], count=len(slots))


@router.post("/appointments/book", response_model=BookingResponse)
async def book_appointment(request: BookingRequest, http_request: Request):
    """Book an exact doctor/slot pair.

    409 when the slot is unknown or already taken; 400 when the doctor is
    unknown or the slot belongs to someone else.
    """
    dispatcher = _get_dispatcher(http_request)
    result = await asyncio.to_thread(
        dispatcher.book,
        request.doctor_name,
        request.slot_id,
        request.patient_name,
        request.session_id,
    )
    if not result.success:
        status = 409 if result.conflict else 400
        raise HTTPException(status_code=status, detail=result.reason or "Booking failed.")
    return BookingResponse(**result.booking.to_record())


@router.get("/session/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, http_request: Request):
    dispatcher = _get_dispatcher(http_request)
    session = await asyncio.to_thread(dispatcher.get_session, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found.")
    return SessionResponse(**session.to_dict())


@router.delete("/session/{session_id}")
async def reset_session(session_id: str, http_request: Request):
    """Forget a conversation.  Unknown ids are not an error."""
    dispatcher = _get_dispatcher(http_request)
    existed = await asyncio.to_thread(dispatcher.reset_session, session_id)
    return {"session_id": session_id, "reset": existed}


@router.get("/agents", response_model=RoutingInfoResponse)
async def routing_info(http_request: Request):
    """The agent catalog and how messages are routed."""
    dispatcher = _get_dispatcher(http_request)
    return dispatcher.routing_info()
