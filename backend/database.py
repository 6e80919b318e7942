from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_doctor_schema_checked = False
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_doctor_schema() -> None:
    global _doctor_schema_checked

    if _doctor_schema_checked:
        return

    with _schema_lock:
        if _doctor_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctors' not in inspector.get_table_names():
            _doctor_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('doctors')}
        migration_steps = [
            ('specialization', 'ALTER TABLE doctors ADD COLUMN specialization VARCHAR'),
            ('slot_duration_minutes', f'ALTER TABLE doctors ADD COLUMN slot_duration_minutes INTEGER DEFAULT {config.DEFAULT_SLOT_DURATION_MINUTES}'),
            ('is_active', 'ALTER TABLE doctors ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))

        _doctor_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_active_start '
                    'ON appointments(doctor_id, scheduled_at) '
                    "WHERE status NOT IN ('CANCELLED', 'NO_SHOW')"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_range ON appointments(doctor_id, scheduled_at, ends_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, scheduled_at)')
            )

        _appointment_schema_checked = True
