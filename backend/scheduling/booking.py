"""Booking orchestration over the pure scheduling functions.

BookingService talks to storage and notifications only through the ports
below, so it can run against SQLAlchemy in the app and against in-memory
fakes in tests. It does not make the read-then-insert sequence atomic;
callers serialise bookings per doctor (see backend.scheduling.locks) and
the store may additionally reject a conflicting insert with SlotUnavailable.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Protocol

from backend.scheduling.availability import AvailabilityTemplate, SlotCandidate, generate_slots
from backend.scheduling.conflicts import BookedInterval, filter_available_slots, is_overlapping
from backend.scheduling.errors import (
    AppointmentNotFound,
    DoctorNotFound,
    InvalidDuration,
    InvalidStatusTransition,
    SlotUnavailable,
)
from backend.scheduling.status import TERMINAL_STATUSES, AppointmentStatus, can_transition

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 120

CATEGORY_CONFIRMED = 'APPOINTMENT_CONFIRMED'
CATEGORY_CANCELLED = 'APPOINTMENT_CANCELLED'


@dataclass(frozen=True)
class DoctorRecord:
    id: int
    user_id: int
    template: AvailabilityTemplate


@dataclass(frozen=True)
class AppointmentRecord:
    id: int
    doctor_id: int
    patient_id: int
    scheduled_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    appointment_type: str
    notes: str | None = None

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)


class DoctorDirectory(Protocol):
    def get_doctor(self, doctor_id: int) -> DoctorRecord | None:
        """Return the active doctor, or None when missing or inactive."""


class AppointmentStore(Protocol):
    def list_active(
        self,
        doctor_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[BookedInterval]:
        """Intervals intersecting [window_start, window_end) whose status is neither CANCELLED nor NO_SHOW."""

    def create(
        self,
        doctor_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
        appointment_type: str,
        notes: str | None = None,
    ) -> AppointmentRecord:
        """Persist a SCHEDULED appointment; may raise SlotUnavailable."""

    def get(self, appointment_id: int) -> AppointmentRecord | None:
        ...

    def update_status(self, appointment_id: int, status: AppointmentStatus) -> AppointmentRecord:
        ...

    def update_schedule(
        self,
        appointment_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
    ) -> AppointmentRecord:
        ...


class Notifier(Protocol):
    def notify(self, user_id: int, title: str, message: str, category: str, link: str | None = None) -> None:
        ...


def format_when(moment: datetime) -> str:
    return moment.strftime('%A, %B %d, %Y at %H:%M')


class BookingService:
    def __init__(
        self,
        doctors: DoctorDirectory,
        appointments: AppointmentStore,
        notifier: Notifier,
        min_duration_minutes: int = MIN_DURATION_MINUTES,
        max_duration_minutes: int = MAX_DURATION_MINUTES,
    ) -> None:
        self.doctors = doctors
        self.appointments = appointments
        self.notifier = notifier
        self.min_duration_minutes = min_duration_minutes
        self.max_duration_minutes = max_duration_minutes

    def _require_doctor(self, doctor_id: int) -> DoctorRecord:
        doctor = self.doctors.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFound(doctor_id)
        return doctor

    def _require_appointment(self, appointment_id: int) -> AppointmentRecord:
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def resolve_duration(self, doctor: DoctorRecord, duration_minutes: int | None) -> int:
        if duration_minutes is None:
            if doctor.template.slot_duration_minutes <= 0:
                raise InvalidDuration('Doctor has no usable default slot duration; pass a duration.')
            return doctor.template.slot_duration_minutes

        if not self.min_duration_minutes <= duration_minutes <= self.max_duration_minutes:
            raise InvalidDuration(
                f'Duration must be between {self.min_duration_minutes} '
                f'and {self.max_duration_minutes} minutes.'
            )
        return duration_minutes

    def list_available_slots(self, doctor_id: int, day: date) -> list[SlotCandidate]:
        """Advisory only: a listed slot can still be taken before it is booked."""
        doctor = self._require_doctor(doctor_id)
        slots = generate_slots(doctor.template, day)
        if not slots:
            return []
        day_start = datetime.combine(day, time.min)
        existing = self.appointments.list_active(doctor_id, day_start, day_start + timedelta(days=1))
        return filter_available_slots(slots, day, existing)

    def propose_booking(
        self,
        doctor_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int | None = None,
        appointment_type: str = 'checkup',
        notes: str | None = None,
    ) -> AppointmentRecord:
        doctor = self._require_doctor(doctor_id)
        duration = self.resolve_duration(doctor, duration_minutes)
        start = scheduled_at.replace(second=0, microsecond=0)

        existing = self.appointments.list_active(doctor_id, start, start + timedelta(minutes=duration))
        if is_overlapping(start, duration, existing):
            logger.info('Rejected booking for doctor %s at %s: slot taken', doctor_id, start.isoformat())
            raise SlotUnavailable()

        appointment = self.appointments.create(
            doctor_id=doctor_id,
            patient_id=patient_id,
            scheduled_at=start,
            duration_minutes=duration,
            appointment_type=appointment_type,
            notes=notes,
        )
        logger.info(
            'Booked appointment %s for doctor %s at %s (%s min)',
            appointment.id,
            doctor_id,
            start.isoformat(),
            duration,
        )

        when = format_when(start)
        self._notify(
            appointment.patient_id,
            'Appointment Scheduled',
            f'Your {appointment_type} appointment is scheduled for {when}.',
            CATEGORY_CONFIRMED,
            f'/patient/appointments/{appointment.id}',
        )
        self._notify(
            doctor.user_id,
            'New Appointment',
            f'New {appointment_type} appointment on {when}.',
            CATEGORY_CONFIRMED,
            f'/doctor/appointments/{appointment.id}',
        )
        return appointment

    def change_status(self, appointment_id: int, status: AppointmentStatus) -> AppointmentRecord:
        appointment = self._require_appointment(appointment_id)

        if not can_transition(appointment.status, status):
            raise InvalidStatusTransition(
                f'Cannot change appointment status from {appointment.status.value} to {status.value}.'
            )

        updated = self.appointments.update_status(appointment_id, status)
        logger.info('Appointment %s moved from %s to %s', appointment_id, appointment.status.value, status.value)

        if status is AppointmentStatus.CANCELLED:
            self._notify_cancelled(updated)
        return updated

    def cancel(self, appointment_id: int) -> AppointmentRecord:
        return self.change_status(appointment_id, AppointmentStatus.CANCELLED)

    def reschedule(
        self,
        appointment_id: int,
        scheduled_at: datetime,
        duration_minutes: int | None = None,
    ) -> AppointmentRecord:
        appointment = self._require_appointment(appointment_id)
        if appointment.status in TERMINAL_STATUSES:
            raise InvalidStatusTransition(
                f'Cannot reschedule an appointment that is {appointment.status.value}.'
            )

        doctor = self._require_doctor(appointment.doctor_id)
        if duration_minutes is None:
            duration = appointment.duration_minutes
        else:
            duration = self.resolve_duration(doctor, duration_minutes)
        start = scheduled_at.replace(second=0, microsecond=0)

        existing = self.appointments.list_active(
            appointment.doctor_id,
            start,
            start + timedelta(minutes=duration),
            exclude_appointment_id=appointment_id,
        )
        if is_overlapping(start, duration, existing):
            raise SlotUnavailable()

        updated = self.appointments.update_schedule(appointment_id, start, duration)
        logger.info('Appointment %s rescheduled to %s', appointment_id, start.isoformat())
        return updated

    def _notify_cancelled(self, appointment: AppointmentRecord) -> None:
        when = format_when(appointment.scheduled_at)
        self._notify(
            appointment.patient_id,
            'Appointment Cancelled',
            f'Your appointment on {when} has been cancelled.',
            CATEGORY_CANCELLED,
            f'/patient/appointments/{appointment.id}',
        )
        doctor = self.doctors.get_doctor(appointment.doctor_id)
        if doctor is not None:
            self._notify(
                doctor.user_id,
                'Appointment Cancelled',
                f'The {appointment.appointment_type} appointment on {when} has been cancelled.',
                CATEGORY_CANCELLED,
                f'/doctor/appointments/{appointment.id}',
            )

    def _notify(self, user_id: int, title: str, message: str, category: str, link: str) -> None:
        try:
            self.notifier.notify(user_id, title, message, category, link)
        except Exception:
            logger.warning('Failed to notify user %s (%s)', user_id, category, exc_info=True)
