"""Typed exceptions for the Workmesh SDK."""


class WorkmeshError(Exception):
    """Base exception for Workmesh SDK."""


class NotRegisteredError(WorkmeshError):
    """Agent is not registered. Call register() first.

    Raised locally, before any request is issued.
    """


class AuthError(WorkmeshError):
    """Identity or session credential rejected by the coordinator.

    Attributes:
        status_code: HTTP status returned by the coordinator, if any
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConflictError(WorkmeshError):
    """State transition rejected (already claimed, deadline passed, ...).

    Recoverable: move on to another job.

    Attributes:
        job_id: The job the rejected transition targeted
    """

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class NotFoundError(WorkmeshError):
    """Job or resource not found on the coordinator."""


class CoordinatorError(WorkmeshError):
    """Coordinator returned an unexpected error response.

    Attributes:
        status_code: HTTP status returned by the coordinator
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(WorkmeshError):
    """Cannot reach the coordinator or storage gateway."""


class RequestTimeoutError(NetworkError):
    """Request timed out.

    Attributes:
        outcome_uncertain: True when the request may have changed job state
            on the coordinator. Re-query the job status instead of retrying.
    """

    def __init__(self, message: str, outcome_uncertain: bool = False):
        super().__init__(message)
        self.outcome_uncertain = outcome_uncertain


class SigningKeyError(WorkmeshError):
    """Signing key material is malformed or does not match the identity."""


class StorageError(WorkmeshError):
    """Content-addressed storage rejected a request."""


def error_message(response) -> str:
    """Extract the coordinator's error message from an httpx response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


def error_for_status(
    status_code: int,
    message: str,
    job_id: str | None = None,
) -> WorkmeshError:
    """Map a non-2xx coordinator response to a typed exception."""
    if status_code in (401, 403):
        return AuthError(message, status_code)
    if status_code == 404:
        return NotFoundError(message)
    if status_code in (409, 410):
        return ConflictError(message, job_id)
    return CoordinatorError(message, status_code)
