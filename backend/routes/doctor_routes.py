from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import CLINIC_ROLES, DOCTOR, get_current_user, require_roles
from backend.database import get_db
from backend.models.doctor import Doctor
from backend.models.user import User
from backend.routes.common import database_unavailable, ensure_database_ready, get_booking_service
from backend.core import config
from backend.scheduling.availability import (
    WEEKDAY_NAMES,
    AvailabilityTemplate,
    validate_availability_template,
)
from backend.scheduling.booking import BookingService

router = APIRouter(tags=['doctors'])

DEFAULT_WORK_DAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday']
COMMON_SPECIALIZATIONS = (
    'Cardiology',
    'Dermatology',
    'Endocrinology',
    'Gastroenterology',
    'General Medicine',
    'Neurology',
    'Oncology',
    'Ophthalmology',
    'Orthopedics',
    'Pediatrics',
    'Psychiatry',
    'Pulmonology',
    'Radiology',
    'Urology',
)


class CreateDoctorRequest(BaseModel):
    user_id: int
    specialization: str
    available_days: list[str] = Field(default_factory=lambda: list(DEFAULT_WORK_DAYS))
    available_from: str = '09:00'
    available_to: str = '17:00'
    slot_duration_minutes: int = Field(
        default=config.DEFAULT_SLOT_DURATION_MINUTES,
        ge=config.MIN_APPOINTMENT_DURATION_MINUTES,
        le=config.MAX_APPOINTMENT_DURATION_MINUTES,
    )

    @field_validator('specialization')
    @classmethod
    def validate_specialization(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Specialization is required.')
        return normalized


class UpdateAvailabilityRequest(BaseModel):
    available_days: list[str] | None = None
    available_from: str | None = None
    available_to: str | None = None
    slot_duration_minutes: int | None = Field(
        default=None,
        ge=config.MIN_APPOINTMENT_DURATION_MINUTES,
        le=config.MAX_APPOINTMENT_DURATION_MINUTES,
    )
    is_active: bool | None = None


class DoctorResponse(BaseModel):
    id: int
    user_id: int
    specialization: str | None = None
    available_days: list[str]
    available_from: str
    available_to: str
    slot_duration_minutes: int
    is_active: bool

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    time: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int


def build_template(
    available_days: list[str],
    available_from: str,
    available_to: str,
    slot_duration_minutes: int,
) -> AvailabilityTemplate:
    template = AvailabilityTemplate.from_values(
        available_days,
        available_from,
        available_to,
        slot_duration_minutes,
    )
    return validate_availability_template(template)


def stored_days(template: AvailabilityTemplate) -> list[str]:
    return [day for day in WEEKDAY_NAMES if day in template.work_days]


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    specialization: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Doctor).filter(Doctor.is_active.is_(True))
        if specialization:
            query = query.filter(Doctor.specialization == specialization.strip())

        return query.order_by(Doctor.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/meta/specializations', response_model=list[str])
def list_specializations(db: Session = Depends(get_db)):
    """Specializations in use, merged with the common ones, sorted."""
    ensure_database_ready()

    try:
        rows = db.query(Doctor.specialization).distinct().all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    in_use = {specialization for (specialization,) in rows if specialization}
    return sorted(in_use.union(COMMON_SPECIALIZATIONS))


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found.',
        )

    return doctor


@router.post('', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: CreateDoctorRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*CLINIC_ROLES)),
):
    template = build_template(
        data.available_days,
        data.available_from,
        data.available_to,
        data.slot_duration_minutes,
    )

    ensure_database_ready()

    try:
        user = db.query(User).filter(User.id == data.user_id).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='User not found.',
            )

        if db.query(Doctor).filter(Doctor.user_id == data.user_id).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This user already has a doctor profile.',
            )

        doctor = Doctor(
            user_id=data.user_id,
            specialization=data.specialization,
            available_days=stored_days(template),
            available_from=template.day_start.strftime('%H:%M'),
            available_to=template.day_end.strftime('%H:%M'),
            slot_duration_minutes=template.slot_duration_minutes,
            is_active=True,
        )
        user.role = DOCTOR

        db.add(doctor)
        db.commit()
        db.refresh(doctor)

        return doctor
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{doctor_id}/availability', response_model=DoctorResponse)
def update_doctor_availability(
    doctor_id: int,
    data: UpdateAvailabilityRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found.',
            )

        if current_user.role == DOCTOR:
            if doctor.user_id != current_user.id:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail='Doctors can only edit their own availability.',
                )
        elif current_user.role not in CLINIC_ROLES:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Access denied',
            )

        template = build_template(
            data.available_days if data.available_days is not None else (doctor.available_days or []),
            data.available_from or doctor.available_from,
            data.available_to or doctor.available_to,
            data.slot_duration_minutes if data.slot_duration_minutes is not None else doctor.slot_duration_minutes,
        )

        doctor.available_days = stored_days(template)
        doctor.available_from = template.day_start.strftime('%H:%M')
        doctor.available_to = template.day_end.strftime('%H:%M')
        doctor.slot_duration_minutes = template.slot_duration_minutes
        if data.is_active is not None:
            doctor.is_active = data.is_active

        db.commit()
        db.refresh(doctor)

        return doctor
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{doctor_id}/slots', response_model=list[SlotResponse])
def list_doctor_slots(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    service: BookingService = Depends(get_booking_service),
):
    ensure_database_ready()

    try:
        slots = service.list_available_slots(doctor_id, slot_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        SlotResponse(
            time=slot.start_time.strftime('%H:%M'),
            start_time=slot.start_on(slot_date),
            end_time=slot.end_on(slot_date),
            duration_minutes=slot.duration_minutes,
        )
        for slot in slots
    ]
