"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class RequestCancelledError(ServiceError):
    """Request was cancelled on purpose (superseded write, navigation, teardown).

    Never a user-facing failure: callers drop it instead of showing it.
    """

    def __init__(self, request_id: str, reason: str | None = None):
        self.request_id = request_id
        self.reason = reason
        msg = f"Request '{request_id}' cancelled"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(self, service_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id)


class ServiceUnavailableError(ServiceError):
    """Service kept failing with 5xx responses until retries ran out."""

    def __init__(self, service_id: str, status_code: int, attempts: int):
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(
            f"Server error {status_code} from service '{service_id}' "
            f"after {attempts} attempts",
            service_id=service_id,
        )


class ClientRequestError(ServiceError):
    """Non-retryable 4xx response (validation, forbidden, not found...)."""

    def __init__(
        self,
        status_code: int,
        message: str = "An error occurred",
        service_id: str | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_id=service_id)


class UnauthenticatedError(ServiceError):
    """Action requires a signed-in user."""

    def __init__(self, message: str = "You must be logged in to perform this action."):
        super().__init__(message)


class InteractionError(ServiceError):
    """An optimistic interaction could not be confirmed and was rolled back."""

    def __init__(self, grant_id: str, action: str, message: str):
        self.grant_id = grant_id
        self.action = action
        super().__init__(message)
