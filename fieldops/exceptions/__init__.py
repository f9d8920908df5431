"""Custom exceptions for the field-service proposal engine."""

class FieldOpsError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class ValidationError(FieldOpsError):
    """Raised for input that must never reach the remote store."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class MissingPrerequisiteError(ValidationError):
    """Raised when an operation needs a document that does not exist yet."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)

class NotFoundError(FieldOpsError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class PersistenceError(FieldOpsError):
    """Raised when the remote store rejects a call or cannot be reached."""
    def __init__(self, message="The remote store rejected the request", upstream_status=None, payload=None):
        super().__init__(message, 502, payload)
        self.upstream_status = upstream_status

    def to_dict(self):
        rv = super().to_dict()
        if self.upstream_status is not None:
            rv['upstream_status'] = self.upstream_status
        return rv
