import logging
from dataclasses import replace
from datetime import date, datetime, time

import pytest

from backend.scheduling.availability import AvailabilityTemplate, SlotCandidate
from backend.scheduling.booking import (
    CATEGORY_CANCELLED,
    CATEGORY_CONFIRMED,
    AppointmentRecord,
    BookingService,
    DoctorRecord,
)
from backend.scheduling.conflicts import BookedInterval
from backend.scheduling.errors import (
    AppointmentNotFound,
    DoctorNotFound,
    InvalidDuration,
    InvalidStatusTransition,
    SlotUnavailable,
)
from backend.scheduling.status import FREEING_STATUSES, AppointmentStatus

MONDAY = date(2024, 1, 1)
DOCTOR_ID = 1
DOCTOR_USER_ID = 50
PATIENT_ID = 100


def _at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime.combine(MONDAY, time(hour, minute, second))


class FakeDoctors:
    def __init__(self, *doctors: DoctorRecord) -> None:
        self.doctors = {doctor.id: doctor for doctor in doctors}

    def get_doctor(self, doctor_id: int) -> DoctorRecord | None:
        return self.doctors.get(doctor_id)


class FakeAppointments:
    def __init__(self) -> None:
        self.records: dict[int, AppointmentRecord] = {}
        self.list_calls = 0

    def list_active(self, doctor_id, window_start, window_end, exclude_appointment_id=None):
        self.list_calls += 1
        return [
            BookedInterval(start=record.scheduled_at, duration_minutes=record.duration_minutes)
            for record in self.records.values()
            if record.doctor_id == doctor_id
            and record.scheduled_at < window_end
            and record.ends_at > window_start
            and record.status not in FREEING_STATUSES
            and record.id != exclude_appointment_id
        ]

    def create(self, doctor_id, patient_id, scheduled_at, duration_minutes, appointment_type, notes=None):
        record = AppointmentRecord(
            id=len(self.records) + 1,
            doctor_id=doctor_id,
            patient_id=patient_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            status=AppointmentStatus.SCHEDULED,
            appointment_type=appointment_type,
            notes=notes,
        )
        self.records[record.id] = record
        return record

    def get(self, appointment_id):
        return self.records.get(appointment_id)

    def update_status(self, appointment_id, status):
        self.records[appointment_id] = replace(self.records[appointment_id], status=status)
        return self.records[appointment_id]

    def update_schedule(self, appointment_id, scheduled_at, duration_minutes):
        self.records[appointment_id] = replace(
            self.records[appointment_id],
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
        )
        return self.records[appointment_id]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []

    def notify(self, user_id, title, message, category, link=None):
        self.sent.append({'user_id': user_id, 'title': title, 'category': category, 'link': link})


class BrokenNotifier:
    def notify(self, user_id, title, message, category, link=None):
        raise RuntimeError('notification backend down')


@pytest.fixture
def appointments() -> FakeAppointments:
    return FakeAppointments()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(appointments, notifier) -> BookingService:
    doctor = DoctorRecord(
        id=DOCTOR_ID,
        user_id=DOCTOR_USER_ID,
        template=AvailabilityTemplate(frozenset({'Monday'}), time(9, 0), time(17, 0), 30),
    )
    return BookingService(FakeDoctors(doctor), appointments, notifier)


def test_propose_booking_creates_scheduled_appointment(service, notifier) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    assert appointment.status is AppointmentStatus.SCHEDULED
    assert appointment.scheduled_at == _at(9, 0)
    assert appointment.duration_minutes == 30
    assert [(sent['user_id'], sent['category']) for sent in notifier.sent] == [
        (PATIENT_ID, CATEGORY_CONFIRMED),
        (DOCTOR_USER_ID, CATEGORY_CONFIRMED),
    ]
    assert notifier.sent[0]['link'] == f'/patient/appointments/{appointment.id}'
    assert notifier.sent[1]['link'] == f'/doctor/appointments/{appointment.id}'


def test_propose_booking_defaults_to_template_slot_duration(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(10, 0))

    assert appointment.duration_minutes == 30
    assert appointment.ends_at == _at(10, 30)


def test_propose_booking_truncates_seconds(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0, 42), 30, 'checkup')

    assert appointment.scheduled_at == _at(9, 0)


def test_propose_booking_rejects_overlapping_request(service, appointments, notifier) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    with pytest.raises(SlotUnavailable):
        service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(9, 15), 30, 'checkup')

    assert len(appointments.records) == 1
    assert len(notifier.sent) == 2


def test_propose_booking_allows_back_to_back_appointments(service) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(9, 30), 30, 'checkup')

    assert appointment.scheduled_at == _at(9, 30)


def test_cancelled_appointment_reopens_its_slot(service) -> None:
    first = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')
    service.cancel(first.id)

    second = service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(9, 0), 30, 'checkup')

    assert second.status is AppointmentStatus.SCHEDULED


def test_no_show_appointment_reopens_its_slot(service) -> None:
    first = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')
    service.change_status(first.id, AppointmentStatus.CONFIRMED)
    service.change_status(first.id, AppointmentStatus.NO_SHOW)

    second = service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(9, 0), 30, 'checkup')

    assert second.id != first.id


def test_propose_booking_for_unknown_doctor_fails(service) -> None:
    with pytest.raises(DoctorNotFound):
        service.propose_booking(999, PATIENT_ID, _at(9, 0), 30, 'checkup')


@pytest.mark.parametrize('duration', [0, 14, 121, 240])
def test_invalid_duration_is_rejected_before_conflict_check(service, appointments, duration: int) -> None:
    with pytest.raises(InvalidDuration):
        service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), duration, 'checkup')

    assert appointments.list_calls == 0


@pytest.mark.parametrize('duration', [15, 120])
def test_duration_bounds_are_inclusive(service, duration: int) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), duration, 'checkup')

    assert appointment.duration_minutes == duration


def test_notification_failure_does_not_fail_booking(appointments, caplog) -> None:
    doctor = DoctorRecord(
        id=DOCTOR_ID,
        user_id=DOCTOR_USER_ID,
        template=AvailabilityTemplate(frozenset({'Monday'}), time(9, 0), time(17, 0), 30),
    )
    service = BookingService(FakeDoctors(doctor), appointments, BrokenNotifier())

    with caplog.at_level(logging.WARNING, logger='backend.scheduling.booking'):
        appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    assert appointment.status is AppointmentStatus.SCHEDULED
    assert appointments.records[appointment.id] == appointment
    assert 'Failed to notify user' in caplog.text


def test_list_available_slots_hides_booked_times(service) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 45, 'checkup')

    slots = service.list_available_slots(DOCTOR_ID, MONDAY)

    assert len(slots) == 14
    assert slots[0] == SlotCandidate(start_time=time(10, 0), duration_minutes=30)


def test_list_available_slots_is_empty_on_non_work_day(service, appointments) -> None:
    assert service.list_available_slots(DOCTOR_ID, date(2024, 1, 2)) == []
    assert appointments.list_calls == 0


def test_list_available_slots_for_unknown_doctor_fails(service) -> None:
    with pytest.raises(DoctorNotFound):
        service.list_available_slots(999, MONDAY)


def test_change_status_rejects_invalid_transition(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    with pytest.raises(InvalidStatusTransition):
        service.change_status(appointment.id, AppointmentStatus.COMPLETED)


def test_change_status_for_missing_appointment_fails(service) -> None:
    with pytest.raises(AppointmentNotFound):
        service.change_status(42, AppointmentStatus.CONFIRMED)


def test_cancel_notifies_patient_and_doctor(service, notifier) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')
    notifier.sent.clear()

    cancelled = service.cancel(appointment.id)

    assert cancelled.status is AppointmentStatus.CANCELLED
    assert [(sent['user_id'], sent['category']) for sent in notifier.sent] == [
        (PATIENT_ID, CATEGORY_CANCELLED),
        (DOCTOR_USER_ID, CATEGORY_CANCELLED),
    ]


def test_cancel_twice_is_rejected(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')
    service.cancel(appointment.id)

    with pytest.raises(InvalidStatusTransition):
        service.cancel(appointment.id)


def test_reschedule_ignores_the_appointment_being_moved(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    moved = service.reschedule(appointment.id, _at(9, 15))

    assert moved.scheduled_at == _at(9, 15)
    assert moved.duration_minutes == 30


def test_reschedule_into_another_booking_fails(service) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')
    second = service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(11, 0), 30, 'checkup')

    with pytest.raises(SlotUnavailable):
        service.reschedule(second.id, _at(9, 20))


def test_reschedule_validates_new_duration(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')

    with pytest.raises(InvalidDuration):
        service.reschedule(appointment.id, _at(10, 0), duration_minutes=5)


def test_reschedule_of_cancelled_appointment_fails(service) -> None:
    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0), 30, 'checkup')
    service.cancel(appointment.id)

    with pytest.raises(InvalidStatusTransition):
        service.reschedule(appointment.id, _at(10, 0))


def test_propose_booking_across_midnight_sees_next_day_appointment(service) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, datetime(2024, 1, 2, 0, 0), 30, 'checkup')

    with pytest.raises(SlotUnavailable):
        service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(23, 30), 60, 'checkup')


def test_propose_booking_ending_at_midnight_does_not_conflict(service) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, datetime(2024, 1, 2, 0, 0), 30, 'checkup')

    appointment = service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(23, 30), 30, 'checkup')

    assert appointment.ends_at == datetime(2024, 1, 2, 0, 0)


def test_reschedule_across_midnight_sees_next_day_appointment(service) -> None:
    service.propose_booking(DOCTOR_ID, PATIENT_ID, datetime(2024, 1, 2, 0, 15), 30, 'checkup')
    moving = service.propose_booking(DOCTOR_ID, PATIENT_ID + 1, _at(9, 0), 30, 'checkup')

    with pytest.raises(SlotUnavailable):
        service.reschedule(moving.id, _at(23, 45), duration_minutes=45)


def test_default_duration_requires_a_positive_slot_length(appointments, notifier) -> None:
    doctor = DoctorRecord(
        id=DOCTOR_ID,
        user_id=DOCTOR_USER_ID,
        template=AvailabilityTemplate(frozenset({'Monday'}), time(9, 0), time(17, 0), 0),
    )
    service = BookingService(FakeDoctors(doctor), appointments, notifier)

    with pytest.raises(InvalidDuration):
        service.propose_booking(DOCTOR_ID, PATIENT_ID, _at(9, 0))

    assert service.list_available_slots(DOCTOR_ID, MONDAY) == []
    assert appointments.records == {}
