"""Drive-level exception types.

Convention:
- ``DriveError`` subclasses describe a failure of one drive operation against
  one path.  They always carry the path they concern so that a caller can
  report exactly which entry failed.  The global handlers in
  ``gitdrive/main.py`` turn them into JSON responses with ``kind`` and
  ``path`` fields, using ``status_for_error`` for the HTTP status.
- ``ValueError`` is for input validation (bad names, bad paths) and is safe to
  forward to clients as a 422 detail.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gitdrive.services.mutation_service import PendingMutation


class DriveError(Exception):
    """Base class for failures of a drive operation on a specific path."""

    kind = "drive_error"

    def __init__(self, path: str, message: str | None = None) -> None:
        self.path = path
        self.message = message or self.default_message()
        super().__init__(f"{self.message}: {path or '/'}")

    def default_message(self) -> str:
        return "Drive operation failed"


class NotFoundError(DriveError):
    """The path does not exist at the backend."""

    kind = "not_found"

    def default_message(self) -> str:
        return "Not found"


class ConflictError(DriveError):
    """The content identifier supplied as a precondition is stale."""

    kind = "conflict"

    def default_message(self) -> str:
        return "Content changed since it was read"


class TooLargeError(DriveError):
    """The payload exceeds the backend's per-blob size ceiling."""

    kind = "too_large"

    def __init__(self, path: str, size: int | None = None, limit: int | None = None) -> None:
        self.size = size
        self.limit = limit
        if size is None or limit is None:
            message = "Payload exceeds the backend size limit"
        else:
            message = f"Payload of {size} bytes exceeds the {limit} byte limit"
        super().__init__(path, message)


class AlreadyExistsError(DriveError):
    """A non-sentinel entry already occupies the target path."""

    kind = "already_exists"

    def default_message(self) -> str:
        return "An entry with this name already exists"


class SelectionTooLargeError(DriveError):
    """A batch selection exceeds the allowed cardinality."""

    kind = "selection_too_large"

    def __init__(self, path: str, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(path, f"Selected {count} entries, at most {limit} are allowed")


class BackendUnavailableError(DriveError):
    """Network failure, timeout, rate limiting or a 5xx from the backend."""

    kind = "backend_unavailable"

    def default_message(self) -> str:
        return "Storage backend unavailable"


class AuthRequiredError(DriveError):
    """No usable credential is available for the backend."""

    kind = "auth_required"

    def default_message(self) -> str:
        return "Authentication required"


class MutationFailedError(DriveError):
    """A multi-step mutation failed before changing anything at the backend.

    ``cause`` is the typed error of the failing step and ``mutation`` the
    pending mutation with each step's recorded state.
    """

    kind = "mutation_failed"

    def __init__(self, mutation: PendingMutation, cause: DriveError) -> None:
        self.mutation = mutation
        self.cause = cause
        super().__init__(cause.path, f"{mutation.operation} failed: {cause.message}")


_STATUS_BY_ERROR: dict[type[DriveError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    AlreadyExistsError: 409,
    TooLargeError: 413,
    SelectionTooLargeError: 422,
    AuthRequiredError: 401,
    BackendUnavailableError: 503,
}


def status_for_error(exc: DriveError) -> int:
    """Return the HTTP status for a drive error; failed steps use their cause."""
    if isinstance(exc, MutationFailedError):
        exc = exc.cause
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return 500
