from datetime import datetime

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import ensure_appointment_schema, ensure_doctor_schema, get_db
from backend.repositories import SqlAppointmentStore, SqlDoctorDirectory, SqlNotifier
from backend.scheduling.booking import BookingService

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_doctor_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(
        doctors=SqlDoctorDirectory(db),
        appointments=SqlAppointmentStore(db),
        notifier=SqlNotifier(db),
        min_duration_minutes=config.MIN_APPOINTMENT_DURATION_MINUTES,
        max_duration_minutes=config.MAX_APPOINTMENT_DURATION_MINUTES,
    )


def to_clinic_time(moment: datetime) -> datetime:
    """Drop timezone info after converting to the server's local (clinic) time."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone().replace(tzinfo=None)


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0
