"""Error taxonomy shared by the ledger, invites, coordinator and API."""


class DoorlinkError(Exception):
    """Base for failures scoped to a single requested operation."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DoorlinkError):
    """Device, grant, user or invite code is absent."""

    status_code = 404


class ForbiddenError(DoorlinkError):
    """Caller is not allowed to do this, or a safety rule would be broken."""

    status_code = 403


class ConflictError(DoorlinkError):
    """State is already in the requested shape."""

    status_code = 409


class UnavailableError(DoorlinkError):
    """Device has no live session."""

    status_code = 503
