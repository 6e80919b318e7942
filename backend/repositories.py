"""SQLAlchemy adapters for the booking service ports."""

import logging
from datetime import datetime, time, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.models.appointment import Appointment
from backend.models.doctor import Doctor
from backend.models.notification import Notification
from backend.scheduling.availability import AvailabilityTemplate
from backend.scheduling.booking import AppointmentRecord, DoctorRecord
from backend.scheduling.conflicts import BookedInterval
from backend.scheduling.errors import AppointmentNotFound, InvalidAvailabilityTemplate, SlotUnavailable
from backend.scheduling.status import FREEING_STATUSES, AppointmentStatus

logger = logging.getLogger(__name__)

FREEING_STATUS_VALUES = [status.value for status in FREEING_STATUSES]


def template_for(doctor: Doctor) -> AvailabilityTemplate:
    slot_duration = doctor.slot_duration_minutes
    if slot_duration is None:
        slot_duration = config.DEFAULT_SLOT_DURATION_MINUTES

    try:
        return AvailabilityTemplate.from_values(
            doctor.available_days or [],
            doctor.available_from,
            doctor.available_to,
            slot_duration,
        )
    except InvalidAvailabilityTemplate:
        # A corrupt stored template produces no slots instead of failing the listing.
        logger.warning('Doctor %s has an unreadable availability template', doctor.id)
        return AvailabilityTemplate(
            frozenset(),
            time(0, 0),
            time(0, 0),
            slot_duration,
        )


def to_record(appointment: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        patient_id=appointment.patient_id,
        scheduled_at=appointment.scheduled_at,
        duration_minutes=appointment.duration_minutes,
        status=AppointmentStatus(appointment.status),
        appointment_type=appointment.appointment_type or 'checkup',
        notes=appointment.notes,
    )


class SqlDoctorDirectory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_doctor(self, doctor_id: int) -> DoctorRecord | None:
        doctor = self.db.query(Doctor).filter(
            Doctor.id == doctor_id,
            Doctor.is_active.is_(True),
        ).first()

        if doctor is None:
            return None

        return DoctorRecord(id=doctor.id, user_id=doctor.user_id, template=template_for(doctor))


class SqlAppointmentStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _load(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def list_active(
        self,
        doctor_id: int,
        window_start: datetime,
        window_end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[BookedInterval]:
        query = self.db.query(Appointment.scheduled_at, Appointment.duration_minutes).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.not_in(FREEING_STATUS_VALUES),
            Appointment.scheduled_at < window_end,
            Appointment.ends_at > window_start,
        )
        if exclude_appointment_id is not None:
            query = query.filter(Appointment.id != exclude_appointment_id)

        return [
            BookedInterval(start=scheduled_at, duration_minutes=duration_minutes)
            for scheduled_at, duration_minutes in query.order_by(Appointment.scheduled_at.asc()).all()
        ]

    def create(
        self,
        doctor_id: int,
        patient_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
        appointment_type: str,
        notes: str | None = None,
    ) -> AppointmentRecord:
        appointment = Appointment(
            doctor_id=doctor_id,
            patient_id=patient_id,
            scheduled_at=scheduled_at,
            ends_at=scheduled_at + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            status=AppointmentStatus.SCHEDULED.value,
            appointment_type=appointment_type,
            notes=notes,
        )
        self.db.add(appointment)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SlotUnavailable() from exc

        self.db.refresh(appointment)
        return to_record(appointment)

    def get(self, appointment_id: int) -> AppointmentRecord | None:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        return to_record(appointment) if appointment else None

    def update_status(self, appointment_id: int, status: AppointmentStatus) -> AppointmentRecord:
        appointment = self._load(appointment_id)
        appointment.status = status.value
        self.db.commit()
        self.db.refresh(appointment)
        return to_record(appointment)

    def update_schedule(
        self,
        appointment_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
    ) -> AppointmentRecord:
        appointment = self._load(appointment_id)
        appointment.scheduled_at = scheduled_at
        appointment.duration_minutes = duration_minutes
        appointment.ends_at = scheduled_at + timedelta(minutes=duration_minutes)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SlotUnavailable() from exc

        self.db.refresh(appointment)
        return to_record(appointment)


class SqlNotifier:
    def __init__(self, db: Session) -> None:
        self.db = db

    def notify(self, user_id: int, title: str, message: str, category: str, link: str | None = None) -> None:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            category=category,
            link=link,
        )
        self.db.add(notification)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
