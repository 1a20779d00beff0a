"""Exception taxonomy shared by the controller components."""

from __future__ import annotations

from kubernetes.client.exceptions import ApiException


class OperatorError(Exception):
    """Base class for controller errors."""

    pass


class TransientError(OperatorError):
    """Raised for cluster errors that should be retried with backoff."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConflictError(TransientError):
    """Raised when a write lost an optimistic concurrency race."""

    pass


class InvalidSpecError(OperatorError):
    """Raised when a job spec cannot be defaulted or interpreted."""

    pass


class UnsupportedKindError(OperatorError):
    """Raised when an unknown job kind is requested at startup."""

    def __init__(self, kind: str, supported: list[str]) -> None:
        super().__init__(
            f"Job kind '{kind}' is not supported (supported: {', '.join(sorted(supported))})"
        )
        self.kind = kind


def is_not_found(e: ApiException) -> bool:
    return e.status == 404


def is_already_exists(e: ApiException) -> bool:
    return e.status == 409 and "AlreadyExists" in (e.body or "")


def api_error(e: ApiException, action: str) -> OperatorError:
    """Convert an ApiException into the controller's error taxonomy.

    Args:
        e: Exception raised by the kubernetes client
        action: Short description of the failed call, used in the message

    Returns:
        ConflictError for 409, InvalidSpecError for 400/422 and
        TransientError for everything else
    """
    message = f"Failed to {action}: {e.status} {e.reason}"
    if e.status == 409:
        return ConflictError(message, status=e.status)
    if e.status in (400, 422):
        return InvalidSpecError(message)
    return TransientError(message, status=e.status)
