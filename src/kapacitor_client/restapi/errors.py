"""Errors raised by the Kapacitor REST API client.

Every failure surfaced by the client is one of the types below, so callers
can branch on the kind of failure instead of parsing messages.
"""


class KapacitorError(Exception):
    """Base class for all client errors."""


class InvalidArgumentError(KapacitorError, ValueError):
    """Raised when client-side validation fails, before any request is sent."""


class TransportError(KapacitorError):
    """Raised when the HTTP transport fails (connection error, timeout, ...)."""

    def __init__(self, method: str, path: str, cause: Exception):
        self.method = method
        self.path = path
        self.cause = cause
        super().__init__(
            f"Failed to execute {method} request to Kapacitor REST API "
            f"({path}): {cause}"
        )


class UnexpectedStatusError(KapacitorError):
    """Raised when the response status differs from the expected one."""

    def __init__(
        self,
        method: str,
        path: str,
        status_code: int,
        reason: str,
        error_message: str | None = None,
    ):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.reason = reason
        self.error_message = error_message
        msg = (
            f"{method} {path} returned a non successful HTTP code "
            f"(Code: {status_code}, Reason: {reason})"
        )
        if error_message:
            msg += f": {error_message}"
        super().__init__(msg)


class ResponseDecodeError(KapacitorError):
    """Raised when a response body is not valid JSON or has the wrong shape."""
