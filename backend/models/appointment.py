"""Appointment model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from backend.database import Base

_ACTIVE_ONLY = text("status NOT IN ('CANCELLED', 'NO_SHOW')")


class Appointment(Base):
    """Represents a booked appointment."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_doctor_active_start",
            "doctor_id",
            "scheduled_at",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="SCHEDULED")
    appointment_type = Column(String)
    notes = Column(String)
