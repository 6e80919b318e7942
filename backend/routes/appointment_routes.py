import logging
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import DOCTOR, PATIENT, get_current_user, require_roles
from backend.core import config
from backend.database import get_db
from backend.models.appointment import Appointment
from backend.models.doctor import Doctor
from backend.models.user import User
from backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_booking_service,
    page_count,
    to_clinic_time,
)
from backend.scheduling.booking import BookingService
from backend.scheduling.errors import AppointmentNotFound
from backend.scheduling.locks import doctor_locks
from backend.scheduling.status import FREEING_STATUSES, AppointmentStatus

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

APPOINTMENT_TYPES = ('checkup', 'followup', 'consultation', 'emergency')
MAX_APPOINTMENT_NOTES_LENGTH = 600
DEFAULT_PAGE_SIZE = 10


class CreateAppointmentRequest(BaseModel):
    doctor_id: int = Field(alias='doctorId')
    patient_id: int | None = Field(default=None, alias='patientId')
    scheduled_at: datetime = Field(alias='scheduledAt')
    duration_minutes: int | None = Field(default=None, alias='durationMinutes')
    appointment_type: str = Field(alias='type')
    notes: str | None = None

    class Config:
        populate_by_name = True

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_TYPES:
            raise ValueError('Invalid appointment type.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class UpdateStatusRequest(BaseModel):
    status: AppointmentStatus


class RescheduleRequest(BaseModel):
    scheduled_at: datetime = Field(alias='scheduledAt')
    duration_minutes: int | None = Field(default=None, alias='durationMinutes')

    class Config:
        populate_by_name = True


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int
    status: AppointmentStatus
    appointment_type: str | None = None
    notes: str | None = None

    class Config:
        from_attributes = True


class AppointmentPageResponse(BaseModel):
    data: list[AppointmentResponse]
    page: int
    limit: int
    total: int
    pages: int


def get_doctor_for_user(user: User, db: Session) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.user_id == user.id).first()
    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found.',
        )
    return doctor


def load_accessible_appointment(appointment_id: int, user: User, db: Session) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise AppointmentNotFound(appointment_id)

    if user.role == PATIENT and appointment.patient_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

    if user.role == DOCTOR and appointment.doctor_id != get_doctor_for_user(user, db).id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

    return appointment


def resolve_patient_id(data: CreateAppointmentRequest, user: User, db: Session) -> int:
    if user.role == PATIENT:
        return user.id

    if data.patient_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Patient ID required.',
        )

    patient = db.query(User).filter(User.id == data.patient_id, User.role == PATIENT).first()
    if not patient:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Patient not found.',
        )
    return patient.id


def parse_status_filter(value: str | None) -> list[str]:
    if not value:
        return []

    statuses = []
    for raw in value.split(','):
        try:
            statuses.append(AppointmentStatus(raw.strip().upper()).value)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'Unknown appointment status: {raw.strip()}.',
            ) from exc
    return statuses


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    ensure_database_ready()

    try:
        patient_id = resolve_patient_id(data, current_user, db)

        with doctor_locks.hold(data.doctor_id, enabled=config.DOCTOR_LOCKING_ENABLED):
            appointment = service.propose_booking(
                doctor_id=data.doctor_id,
                patient_id=patient_id,
                scheduled_at=to_clinic_time(data.scheduled_at),
                duration_minutes=data.duration_minutes,
                appointment_type=data.appointment_type,
                notes=data.notes,
            )

        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('', response_model=AppointmentPageResponse)
def list_appointments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=100),
    status_filter: str | None = Query(default=None, alias='status'),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    doctor_id: int | None = Query(default=None),
    patient_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    statuses = parse_status_filter(status_filter)

    ensure_database_ready()

    try:
        query = db.query(Appointment)

        if current_user.role == PATIENT:
            query = query.filter(Appointment.patient_id == current_user.id)
        elif current_user.role == DOCTOR:
            query = query.filter(Appointment.doctor_id == get_doctor_for_user(current_user, db).id)
        else:
            if doctor_id is not None:
                query = query.filter(Appointment.doctor_id == doctor_id)
            if patient_id is not None:
                query = query.filter(Appointment.patient_id == patient_id)

        if statuses:
            query = query.filter(Appointment.status.in_(statuses))
        if start_date:
            query = query.filter(Appointment.scheduled_at >= datetime.combine(start_date, time.min))
        if end_date:
            query = query.filter(Appointment.scheduled_at < datetime.combine(end_date + timedelta(days=1), time.min))

        total = query.count()
        appointments = query.order_by(Appointment.scheduled_at.asc()).offset((page - 1) * limit).limit(limit).all()

        return AppointmentPageResponse(
            data=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
            page=page,
            limit=limit,
            total=total,
            pages=page_count(total, limit),
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/today', response_model=list[AppointmentResponse])
def list_today_appointments(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(DOCTOR)),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_for_user(current_user, db)
        today = datetime.combine(date.today(), time.min)

        return db.query(Appointment).filter(
            Appointment.doctor_id == doctor.id,
            Appointment.scheduled_at >= today,
            Appointment.scheduled_at < today + timedelta(days=1),
            Appointment.status.not_in([freeing.value for freeing in FREEING_STATUSES]),
        ).order_by(Appointment.scheduled_at.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return load_accessible_appointment(appointment_id, current_user, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    if current_user.role == PATIENT and data.status is not AppointmentStatus.CANCELLED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Patients can only cancel appointments.',
        )

    ensure_database_ready()

    try:
        load_accessible_appointment(appointment_id, current_user, db)
        return AppointmentResponse.model_validate(service.change_status(appointment_id, data.status))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    ensure_database_ready()

    try:
        appointment = load_accessible_appointment(appointment_id, current_user, db)

        with doctor_locks.hold(appointment.doctor_id, enabled=config.DOCTOR_LOCKING_ENABLED):
            appointment = service.reschedule(
                appointment_id,
                to_clinic_time(data.scheduled_at),
                duration_minutes=data.duration_minutes,
            )

        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    ensure_database_ready()

    try:
        load_accessible_appointment(appointment_id, current_user, db)
        appointment = service.cancel(appointment_id)
        logger.info('User %s cancelled appointment %s', current_user.id, appointment_id)
        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
