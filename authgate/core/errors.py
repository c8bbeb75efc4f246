class AuthError(Exception):
    """Base class for failures scoped to a single request."""


class ValidationError(AuthError):
    """Malformed input on a non-sensitive field."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class InvalidOrExpiredCode(AuthError):
    """Wrong, expired, exhausted or unknown code. Deliberately undifferentiated."""


class StoreUnavailable(AuthError):
    """A backing store call failed or timed out."""

    def __init__(self, operation: str):
        super().__init__(f"store unavailable during {operation}")
        self.operation = operation


class DispatchFailure(AuthError):
    """Out-of-band delivery of a code failed."""


class EmailTaken(AuthError):
    pass
