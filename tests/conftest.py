import os
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from backend.auth.jwt_handler import create_access_token  # noqa: E402
from backend.database import Base, get_db  # noqa: E402
from backend.main import app  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402
from backend.models.doctor import Doctor  # noqa: E402
from backend.models.user import User  # noqa: E402


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = {'value': 0}

    def _make_user(role: str = 'PATIENT', email: str | None = None) -> User:
        counter['value'] += 1
        user = User(
            email=email or f'{role.lower()}{counter["value"]}@clinic.test',
            hashed_password='',
            first_name=role.title(),
            last_name=str(counter['value']),
            role=role,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_doctor(db_session, make_user):
    def _make_doctor(
        user: User | None = None,
        available_days=('Monday',),
        available_from: str = '09:00',
        available_to: str = '17:00',
        slot_duration_minutes: int = 30,
        is_active: bool = True,
    ) -> Doctor:
        doctor = Doctor(
            user_id=(user or make_user('DOCTOR')).id,
            specialization='General Medicine',
            available_days=list(available_days),
            available_from=available_from,
            available_to=available_to,
            slot_duration_minutes=slot_duration_minutes,
            is_active=is_active,
        )
        db_session.add(doctor)
        db_session.commit()
        db_session.refresh(doctor)
        return doctor

    return _make_doctor


@pytest.fixture
def make_appointment(db_session):
    def _make_appointment(
        doctor: Doctor,
        patient: User,
        scheduled_at: datetime,
        duration_minutes: int = 30,
        status: str = 'SCHEDULED',
    ) -> Appointment:
        appointment = Appointment(
            doctor_id=doctor.id,
            patient_id=patient.id,
            scheduled_at=scheduled_at,
            ends_at=scheduled_at + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
            status=status,
            appointment_type='checkup',
        )
        db_session.add(appointment)
        db_session.commit()
        db_session.refresh(appointment)
        return appointment

    return _make_appointment


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict[str, str]:
        return {'Authorization': f'Bearer {create_access_token(user.id, user.role)}'}

    return _auth_headers
