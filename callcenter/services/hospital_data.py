"""In-memory hospital directory and appointment book.

Provides the two data capabilities the Appointment Handler consumes:

* ``query_availability(SlotFilter)`` — currently-available slots, sorted
  date-ascending, then time, then doctor name.
* ``book_slot(slot_id, patient_name)`` — atomically marks a slot booked.
  Booking an unknown or already-booked slot fails with ``conflict=True``;
  two concurrent bookings of the same slot can never both succeed.

The schedule is generated deterministically from a start date, so the same
store always offers the same slots.  A booked slot is never re-offered.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DAYS_AHEAD = 14

WEEKDAY_TIMES: tuple[time, ...] = (
    time(8, 0), time(9, 0), time(10, 30), time(11, 30),
    time(13, 0), time(14, 0), time(15, 30), time(16, 30),
)
SATURDAY_TIMES: tuple[time, ...] = (time(9, 0), time(10, 30), time(13, 0))

# Half-open hour ranges for time-of-day preferences
TIME_PREFERENCES: dict[str, tuple[int, int]] = {
    "morning": (0, 12),
    "afternoon": (12, 17),
    "evening": (17, 24),
}


class SlotConflict(Exception):
    """The slot is unknown or no longer available."""


@dataclass(frozen=True)
class Doctor:
    id: int
    name: str
    department: str
    specialization: str


@dataclass(frozen=True)
class Department:
    key: str
    name: str
    code: str
    description: str
    doctors: tuple[Doctor, ...] = ()


@dataclass(frozen=True)
class AppointmentSlot:
    """A bookable time with one doctor."""

    id: str
    doctor_name: str
    department: str
    date: date
    time: time
    available: bool = True

    @property
    def formatted(self) -> str:
        day = self.date.strftime("%A, %b %d").replace(" 0", " ")
        clock = self.time.strftime("%I:%M %p").lstrip("0")
        return f"{day} at {clock} with {self.doctor_name} ({self.department})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "doctor_name": self.doctor_name,
            "department": self.department,
            "date": self.date.isoformat(),
            "time": self.time.strftime("%H:%M"),
            "available": self.available,
            "formatted": self.formatted,
        }


@dataclass(frozen=True)
class SlotFilter:
    department: str | None = None
    doctor_name: str | None = None
    date: date | None = None
    date_from: date | None = None
    date_to: date | None = None
    time_preference: str | None = None


@dataclass(frozen=True)
class Booking:
    booking_id: str
    slot: AppointmentSlot
    patient_name: str
    created_at: datetime

    def to_record(self) -> dict[str, Any]:
        """Context-friendly record (see ``session.BOOKING_RECORD_FIELDS``)."""
        return {
            "booking_id": self.booking_id,
            "slot_id": self.slot.id,
            "doctor_name": self.slot.doctor_name,
            "department": self.slot.department,
            "patient_name": self.patient_name,
            "when": self.slot.formatted,
        }


@dataclass(frozen=True)
class BookingResult:
    success: bool
    booking: Booking | None = None
    reason: str | None = None
    conflict: bool = False


# ── Static directory ─────────────────────────────────────────────────


def _department(key: str, name: str, code: str, description: str, first_id: int, doctors: list[tuple[str, str]]) -> Department:
    return Department(
        key=key,
        name=name,
        code=code,
        description=description,
        doctors=tuple(
            Doctor(id=first_id + i, name=doc_name, department=name, specialization=specialty)
            for i, (doc_name, specialty) in enumerate(doctors)
        ),
    )


DEPARTMENTS: tuple[Department, ...] = (
    _department("cardiology", "Cardiology", "CAR", "Heart and cardiovascular system care", 1, [
        ("Dr. Sarah Martinez", "Interventional Cardiology"),
        ("Dr. Michael Chen", "Cardiac Surgery"),
        ("Dr. Emily Johnson", "Preventive Cardiology"),
    ]),
    _department("neurology", "Neurology", "NEU", "Brain and nervous system disorders", 4, [
        ("Dr. Jennifer Kim", "Stroke Care"),
        ("Dr. David Brown", "Epilepsy"),
        ("Dr. James Anderson", "Headache Medicine"),
    ]),
    _department("orthopedics", "Orthopedics", "ORT", "Bone, joint, and muscle care", 7, [
        ("Dr. Maria Rodriguez", "Sports Medicine"),
        ("Dr. Kevin Lee", "Joint Replacement"),
        ("Dr. Amanda White", "Spine Surgery"),
    ]),
    _department("pediatrics", "Pediatrics", "PED", "Children's healthcare", 10, [
        ("Dr. Rachel Adams", "General Pediatrics"),
        ("Dr. Christopher Taylor", "Pediatric Cardiology"),
    ]),
    _department("dermatology", "Dermatology", "DER", "Skin, hair, and nail conditions", 12, [
        ("Dr. Nicole Harris", "Medical Dermatology"),
        ("Dr. Alexander Clark", "Dermatologic Surgery"),
    ]),
    _department("general_practice", "General Practice", "GEN", "Check-ups and everyday care", 14, [
        ("Dr. Robert Wilson", "Family Medicine"),
        ("Dr. Laura Smith", "Internal Medicine"),
    ]),
)


def _normalise_doctor_name(name: str) -> str:
    cleaned = " ".join(name.lower().replace(".", " ").split())
    if cleaned.startswith("dr "):
        cleaned = cleaned[3:]
    return cleaned


class HospitalDataStore:
    """Doctors, departments and a thread-safe appointment book."""

    def __init__(
        self,
        start_date: date | None = None,
        days_ahead: int = DEFAULT_DAYS_AHEAD,
        departments: tuple[Department, ...] = DEPARTMENTS,
    ) -> None:
        self._departments = departments
        self._start_date = start_date or date.today()
        self._slots: dict[str, AppointmentSlot] = {}
        self._bookings: dict[str, Booking] = {}
        self._lock = threading.Lock()
        self._generate_schedule(self._start_date, days_ahead)

    # ── Directory ────────────────────────────────────────────────────

    @property
    def reference_date(self) -> date:
        """The "today" the schedule was generated from."""
        return self._start_date

    def departments(self) -> tuple[Department, ...]:
        return self._departments

    def doctors(self) -> list[Doctor]:
        return [doc for dept in self._departments for doc in dept.doctors]

    def find_department(self, name: str) -> Department | None:
        """Look a department up by key or display name (case-insensitive)."""
        wanted = name.strip().lower().replace(" ", "_")
        for dept in self._departments:
            if wanted in (dept.key, dept.name.lower().replace(" ", "_")):
                return dept
        return None

    def find_doctor(self, name: str) -> Doctor | None:
        """Exact doctor lookup; the "Dr." prefix and case are ignored."""
        wanted = _normalise_doctor_name(name)
        for doctor in self.doctors():
            if _normalise_doctor_name(doctor.name) == wanted:
                return doctor
        return None

    # ── Availability ─────────────────────────────────────────────────

    def query_availability(self, slot_filter: SlotFilter | None = None) -> list[AppointmentSlot]:
        """Return available slots matching ``slot_filter``, date-ascending."""
        f = slot_filter or SlotFilter()
        department = self.find_department(f.department) if f.department else None
        if f.department and department is None:
            return []
        doctor = self.find_doctor(f.doctor_name) if f.doctor_name else None
        if f.doctor_name and doctor is None:
            return []
        hours = TIME_PREFERENCES.get(f.time_preference or "")

        with self._lock:
            candidates = [s for s in self._slots.values() if s.available]

        matches = [
            s for s in candidates
            if (department is None or s.department == department.name)
            and (doctor is None or s.doctor_name == doctor.name)
            and (f.date is None or s.date == f.date)
            and (f.date_from is None or s.date >= f.date_from)
            and (f.date_to is None or s.date <= f.date_to)
            and (hours is None or hours[0] <= s.time.hour < hours[1])
        ]
        matches.sort(key=lambda s: (s.date, s.time, s.doctor_name))
        return matches

    def get_slot(self, slot_id: str) -> AppointmentSlot | None:
        with self._lock:
            return self._slots.get(slot_id.upper())

    # ── Booking ──────────────────────────────────────────────────────

    def book_slot(self, slot_id: str, patient_name: str) -> BookingResult:
        """Book ``slot_id`` for ``patient_name``.

        Unknown or already-booked slots come back as a failed result with
        ``conflict=True``.
        """
        try:
            booking = self._reserve(slot_id.upper(), patient_name.strip())
        except SlotConflict as exc:
            logger.info("Booking rejected for slot %s: %s", slot_id, exc)
            return BookingResult(success=False, reason=str(exc), conflict=True)
        logger.info("Booked slot %s as %s", booking.slot.id, booking.booking_id)
        return BookingResult(success=True, booking=booking)

    def bookings(self) -> list[Booking]:
        with self._lock:
            return list(self._bookings.values())

    def _reserve(self, slot_id: str, patient_name: str) -> Booking:
        with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None:
                raise SlotConflict(f"slot {slot_id} does not exist")
            if not slot.available:
                raise SlotConflict(f"slot {slot_id} is no longer available")
            booked = replace(slot, available=False)
            self._slots[slot_id] = booked
            booking = Booking(
                booking_id=f"BK-{len(self._bookings) + 1:05d}",
                slot=booked,
                patient_name=patient_name,
                created_at=datetime.now(UTC),
            )
            self._bookings[booking.booking_id] = booking
            return booking

    # ── Schedule generation ──────────────────────────────────────────

    def _generate_schedule(self, start: date, days_ahead: int) -> None:
        for offset in range(1, days_ahead + 1):
            day = start + timedelta(days=offset)
            if day.weekday() == 6:  # closed Sundays
                continue
            saturday = day.weekday() == 5
            for dept in self._departments:
                for index, doctor in enumerate(dept.doctors):
                    for slot_time in self._times_for(index, offset, saturday):
                        slot = AppointmentSlot(
                            id=f"{dept.code}-{day:%Y%m%d}-{slot_time:%H%M}-D{doctor.id:02d}",
                            doctor_name=doctor.name,
                            department=dept.name,
                            date=day,
                            time=slot_time,
                        )
                        self._slots[slot.id] = slot

    @staticmethod
    def _times_for(index: int, offset: int, saturday: bool) -> list[time]:
        if saturday:
            # Only the first doctor of each department works Saturdays
            return [SATURDAY_TIMES[offset % len(SATURDAY_TIMES)]] if index == 0 else []
        n = len(WEEKDAY_TIMES)
        first = (index * 2 + offset) % n
        return sorted({WEEKDAY_TIMES[first], WEEKDAY_TIMES[(first + n // 2) % n]})


# Slot reference embedded in chat messages, e.g. "CAR-20261020-0900-D01"
SLOT_ID_PATTERN = r"\b[A-Za-z]{3}-\d{8}-\d{4}-[Dd]\d{2}\b"
