"""
Error types raised by the vehicle store.
All of them describe a problem with the caller's input and are never retried.
"""


class VehicleStoreError(Exception):
    """Base class for vehicle store errors"""
    kind = 'error'
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'success': False, 'error': self.message, 'kind': self.kind}


class NotFoundError(VehicleStoreError):
    kind = 'not_found'
    status_code = 404


class ValidationError(VehicleStoreError):
    kind = 'validation_error'
    status_code = 400


class ConflictError(VehicleStoreError):
    kind = 'conflict'
    status_code = 409


class InvalidOperationError(VehicleStoreError):
    kind = 'invalid_operation'
    status_code = 400
