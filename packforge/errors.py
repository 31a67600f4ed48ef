from __future__ import annotations

from enum import Enum

EXIT_SUCCESS = 0
EXIT_USER_ERROR = 65
EXIT_INTERNAL_ERROR = 70


class Status(Enum):
    USER = "user"
    INTERNAL = "internal"


class BuildpackError(Exception):
    """Failure raised by a buildpack module or by a context helper.

    The classification is carried explicitly in ``status``; the message text is
    never inspected to decide whether a failure is the user's fault.
    """

    status: Status = Status.INTERNAL

    def __init__(self, message: str, status: Status | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class UserError(BuildpackError):
    """The source tree or its configuration is the proximate cause."""

    status = Status.USER


class InternalError(BuildpackError):
    """The engine or an external tool misbehaved."""

    status = Status.INTERNAL


def user_errorf(fmt: str, *args: object) -> UserError:
    return UserError(fmt % args if args else fmt)


def internal_errorf(fmt: str, *args: object) -> InternalError:
    return InternalError(fmt % args if args else fmt)


def classify(exc: BaseException) -> Status:
    if isinstance(exc, BuildpackError):
        return exc.status
    return Status.INTERNAL


def exit_code_for(status: Status) -> int:
    if status is Status.USER:
        return EXIT_USER_ERROR
    return EXIT_INTERNAL_ERROR


def format_failure(exc: BaseException) -> str:
    """Render a failure for the user-visible stream."""

    status = classify(exc)
    message = exc.message if isinstance(exc, BuildpackError) else f"{type(exc).__name__}: {exc}"
    if status is Status.USER:
        return f"ERROR: {message}"
    return f"INTERNAL ERROR: {message}"
