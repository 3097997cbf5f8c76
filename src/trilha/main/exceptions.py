class TrilhaException(Exception):
    """Base class for errors raised by the audit pipeline."""


class AuditValidationError(TrilhaException, ValueError):
    """A malformed event or log draft was rejected before publication or persistence."""


class TransientStorageError(TrilhaException):
    """A write failed in a way that is expected to succeed on retry."""


class IntegrityViolation(TrilhaException):
    """A stored audit log no longer matches its signature."""

    def __init__(self, log_id, reason: str):
        self.log_id = log_id
        self.reason = reason
        super().__init__(f"Audit log {log_id} failed integrity verification: {reason}")


class ConfigurationError(TrilhaException):
    pass


class NotReadyException(TrilhaException):
    pass


class DuplicateRegistrationError(TrilhaException):
    """A named handler was registered twice in the same process."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Handler {name!r} is already registered")
