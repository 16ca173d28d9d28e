"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    code = "InternalError"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    code = "NotFound"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    code = "Unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    code = "Forbidden"

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    code = "BadRequest"

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    code = "Conflict"

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class InvalidRangeException(BadRequestException):
    """Time or date range is empty, inverted or out of bounds."""

    code = "InvalidRange"

    def __init__(self, message: str = "End time must be after start time"):
        """Initialize with 400 status code."""
        super().__init__(message)


class OverlapConflictException(ConflictException):
    """Slot interval intersects an open or reserved slot of the same clinician."""

    code = "OverlapConflict"

    def __init__(self, message: str = "Time slot overlaps with an existing slot for this clinician"):
        """Initialize with 409 status code."""
        super().__init__(message)


class VersionConflictException(ConflictException):
    """Row changed since the caller last read it."""

    code = "VersionConflict"

    def __init__(self, message: str = "Resource has been modified by another user"):
        """Initialize with 409 status code."""
        super().__init__(message)


class SlotNotOpenException(ConflictException):
    """Slot cannot be booked because it is no longer open."""

    code = "SlotNotOpen"

    def __init__(self, message: str = "Slot is no longer available"):
        """Initialize with 409 status code."""
        super().__init__(message)


class InvalidTransitionException(ConflictException):
    """Requested status change is not allowed from the current status."""

    code = "InvalidTransition"

    def __init__(self, message: str = "Status transition not allowed"):
        """Initialize with 409 status code."""
        super().__init__(message)


class AlreadyCancelledException(ConflictException):
    """Booking has already been cancelled."""

    code = "AlreadyCancelled"

    def __init__(self, message: str = "Booking is already cancelled"):
        """Initialize with 409 status code."""
        super().__init__(message)


class StoreUnavailableException(AppException):
    """Transient failure talking to the backing store."""

    code = "StoreUnavailable"

    def __init__(self, message: str = "Scheduling store is temporarily unavailable", retry_after: int = 1):
        """Initialize with 503 status code and a retry hint in seconds."""
        self.retry_after = retry_after
        super().__init__(message, status_code=503)
