"""Errors raised by the scheduling core.

Each carries the HTTP status the API layer answers with.
"""


class SchedulingError(Exception):
    http_status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DoctorNotFound(SchedulingError):
    http_status = 404

    def __init__(self, doctor_id=None) -> None:
        super().__init__('Doctor not found.')
        self.doctor_id = doctor_id


class InvalidAvailabilityTemplate(SchedulingError):
    http_status = 422


class InvalidDuration(SchedulingError):
    http_status = 422


class SlotUnavailable(SchedulingError):
    http_status = 409

    def __init__(self, message: str = 'This time slot is not available.') -> None:
        super().__init__(message)


class AppointmentNotFound(SchedulingError):
    http_status = 404

    def __init__(self, appointment_id=None) -> None:
        super().__init__('Appointment not found.')
        self.appointment_id = appointment_id


class InvalidStatusTransition(SchedulingError):
    http_status = 409
