"""Exception classes for the capture upload workflow."""


class UploadError(Exception):
    """Base error for the capture upload workflow."""


class ConfigLoadError(UploadError):
    """Raised when the uploader profile cannot be loaded."""


class ConfigValidationError(UploadError):
    """Raised when uploader configuration fails validation."""

    def __init__(self, errors: list[str]):
        """Initialize ConfigValidationError with list of error messages.

        Args:
            errors: List of error messages from validation.
        """
        message = "\n".join(errors)
        super().__init__(message)
        self.errors = errors


class AuthError(UploadError):
    """Raised when the client-credentials token exchange fails."""


class _BackendRejection(UploadError):
    """Backend answered with a non-success status, or could not be reached."""

    action = "request"

    def __init__(self, status: int | None, body: str):
        """Initialize the rejection.

        Args:
            status: HTTP status code, or None when no response was received.
            body: Response body (or transport error message).
        """
        if status is None:
            message = f"{self.action} failed: {body}"
        else:
            message = f"{self.action} rejected with HTTP {status}: {body}"
        super().__init__(message)
        self.status = status
        self.body = body


class NegotiationError(_BackendRejection):
    """Raised when creating a capture session or an upload URL is rejected."""

    action = "Capture negotiation"


class FinalizationError(_BackendRejection):
    """Raised when the completion request is rejected."""

    action = "Upload completion"


class ProtocolError(UploadError):
    """Raised when a backend response is malformed or missing required fields."""


class TransferError(UploadError):
    """Raised when a part transfer fails after exhausting its retries."""

    def __init__(
        self,
        part_number: int | None,
        attempts: int,
        last_error: str,
    ):
        """Initialize TransferError.

        Args:
            part_number: Part that failed, if known.
            attempts: Number of transfer attempts made.
            last_error: Description of the final failed attempt.
        """
        part = f"part {part_number}" if part_number is not None else "part"
        super().__init__(
            f"Transfer of {part} failed after {attempts} attempts: {last_error}"
        )
        self.part_number = part_number
        self.attempts = attempts
        self.last_error = last_error


class UploadCancelledError(UploadError):
    """Raised when the caller cancels an upload in progress."""
