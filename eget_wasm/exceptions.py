"""Exception classes for the eget WASI bridge."""

from datetime import datetime


class EgetError(Exception):
    """Base exception for all eget-wasm errors."""
    pass


class InvalidLocatorError(EgetError):
    """Raised when a URL cannot be mapped to a cache path."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class FetchError(EgetError):
    """Base class for failures while downloading a resource."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ResourceNotFoundError(FetchError):
    """Raised when the remote reports the resource does not exist."""
    pass


class RateLimitedError(FetchError):
    """Raised when the remote throttles the request.

    ``retry_after`` is the earliest time a retry makes sense, when the
    response advertised one.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        retry_after: datetime | None = None,
    ):
        super().__init__(message, url=url, status_code=status_code)
        self.retry_after = retry_after


class ServerError(FetchError):
    """Raised on a transient server-side failure (5xx)."""
    pass


class FetchTimeoutError(FetchError):
    """Raised when a download does not complete within its timeout."""
    pass


class NetworkError(FetchError):
    """Raised on transport-level failures (DNS, connection reset, TLS)."""
    pass


class HTTPStatusError(FetchError):
    """Raised for any other non-success HTTP status."""
    pass


class ModuleFailureError(EgetError):
    """Raised when the sandboxed module fails without naming a missing URL."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        path: str | None = None,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.path = path


class MaxAttemptsExceededError(EgetError):
    """Raised when the module keeps failing after the retry budget is spent."""

    def __init__(self, message: str, attempts: int, last_url: str | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_url = last_url


class InfrastructureError(EgetError):
    """Raised when the WASI module cannot be loaded or instantiated."""
    pass
