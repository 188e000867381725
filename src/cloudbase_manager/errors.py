from __future__ import annotations

from typing import TypeVar


_E = TypeVar("_E", bound="CloudBaseError")


class CloudBaseError(Exception):
    def __init__(self, message: str, *, code: str | None = None, request_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.request_id = request_id

    def annotate(self: _E, prefix: str) -> _E:
        annotated = type(self)(f"{prefix}{self.message}", code=self.code, request_id=self.request_id)
        annotated.__cause__ = self
        return annotated

    def __str__(self) -> str:
        if self.request_id:
            return f"{self.message} (code={self.code}, requestId={self.request_id})"
        if self.code:
            return f"{self.message} (code={self.code})"
        return self.message


class ValidationFailure(CloudBaseError):
    pass


class PackagingFailure(CloudBaseError):
    pass


class AuthFailure(CloudBaseError):
    pass


class SigningFailure(AuthFailure):
    pass


class ResourceConflict(CloudBaseError):
    pass


class ResourceNotFound(CloudBaseError):
    pass


class TransientFailure(CloudBaseError):
    pass


class UnknownFailure(CloudBaseError):
    pass


_PREFIX_CLASSES: tuple[tuple[str, type[CloudBaseError]], ...] = (
    ("AuthFailure", AuthFailure),
    ("ResourceInUse", ResourceConflict),
    ("ResourceNotFound", ResourceNotFound),
    ("InvalidParameter", ValidationFailure),
    ("MissingParameter", ValidationFailure),
    ("UnknownParameter", ValidationFailure),
    ("InvalidAction", ValidationFailure),
    ("InternalError", TransientFailure),
    ("RequestLimitExceeded", TransientFailure),
    ("ResourceUnavailable", TransientFailure),
    ("FailedOperation.ServiceBusy", TransientFailure),
)


def error_class_for_code(code: str | None) -> type[CloudBaseError]:
    if not code:
        return UnknownFailure
    for prefix, error_class in _PREFIX_CLASSES:
        if code.startswith(prefix):
            return error_class
    return UnknownFailure


def error_from_response(code: str | None, message: str | None, request_id: str | None) -> CloudBaseError:
    error_class = error_class_for_code(code)
    return error_class(message or "Upstream API error", code=code, request_id=request_id)
