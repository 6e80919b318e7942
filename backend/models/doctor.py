"""Doctor model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, JSON
from backend.core import config
from backend.database import Base


class Doctor(Base):
    """A doctor profile and its weekly availability template."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True)
    specialization = Column(String)
    available_days = Column(JSON, default=list)
    available_from = Column(String, default="09:00")
    available_to = Column(String, default="17:00")
    slot_duration_minutes = Column(Integer, default=config.DEFAULT_SLOT_DURATION_MINUTES)
    is_active = Column(Boolean, default=True)
