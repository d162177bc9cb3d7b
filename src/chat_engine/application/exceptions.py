from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    code = "error"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    code = "not_found"


class ForbiddenError(AppError):
    code = "forbidden"


class InvalidArgumentError(AppError):
    code = "invalid_argument"


class InvalidStateError(AppError):
    code = "invalid_state"


class UnavailableError(AppError):
    """The backing store could not be reached; retry the whole operation."""

    code = "unavailable"
