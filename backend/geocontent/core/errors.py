"""Exception hierarchy exposed to API clients.

Every error a client can act on derives from ``ExposedError`` and carries an
HTTP status code. ``ValidationError`` additionally carries a list of
JSON:API-style error objects naming the offending parameter, so a client can
correct its request without server-side log correlation.

Example:
    Raise a validation error for a malformed filter expression:
        >>> raise ValidationError(
        ...     [error_object("filter", "Invalid filter expression: a=b")]
        ... )
"""

from __future__ import annotations

from typing import NotRequired

from typing_extensions import TypedDict


class ErrorSource(TypedDict, total=False):
    pointer: str
    parameter: str


class ErrorObject(TypedDict):
    code: int
    title: str
    detail: str
    source: NotRequired[ErrorSource]


def error_object(
    parameter: str,
    detail: str,
    code: int = 400,
    title: str = "ValidationError",
) -> ErrorObject:
    """Build an error object pointing at a query parameter.

    Args:
        parameter: Name of the offending query parameter.
        detail: Human readable description including the raw input.
        code: HTTP status code of the error.
        title: Short error class name.

    Returns:
        ErrorObject ready to be serialized into an ``errors`` array.
    """
    return ErrorObject(
        code=code,
        source=ErrorSource(parameter=parameter),
        title=title,
        detail=detail,
    )


class ExposedError(Exception):
    """Base class for errors whose message is safe to return to clients."""

    def __init__(self, message: str, code: int) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_errors(self) -> list[ErrorObject]:
        """Render the error as a list of error objects."""
        return [
            ErrorObject(
                code=self.code,
                title=type(self).__name__,
                detail=self.message,
            )
        ]


class ValidationError(ExposedError):
    """Client-class error: malformed filter, cursor or parameter value."""

    def __init__(self, errors: list[ErrorObject], code: int = 400) -> None:
        detail = "; ".join(e["detail"] for e in errors)
        super().__init__(detail, code)
        self.errors = errors

    def to_errors(self) -> list[ErrorObject]:
        return list(self.errors)


class CursorEncodingError(ExposedError):
    """A pagination cursor could not be built from a record.

    Raised when a sort path is absent from a fetched record. This is a
    server-side configuration defect, never the client's fault.
    """

    def __init__(self, path: str) -> None:
        super().__init__(f"No such property: {path}", 500)
        self.path = path


class DocumentError(ExposedError):
    """The document store rejected or failed a request."""


class RecordNotFound(ExposedError):
    """The requested document does not exist or is not visible."""

    def __init__(self, message: str = "Could not retrieve document.") -> None:
        super().__init__(message, 404)
