class RelayError(Exception):
    """Base class for errors reported back to the originating connection."""

    code = "internal_error"

    def __init__(self, message: str = "Internal error"):
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """An inbound event is missing a required field or contradicts the connection's identity."""

    code = "validation_error"


class NotFoundError(RelayError):
    code = "not_found"


class PersistenceError(RelayError):
    """The conversation store failed or timed out. Never retried automatically."""

    code = "internal_error"
