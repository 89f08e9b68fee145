from __future__ import annotations

from typing import Any


class BodyParserError(Exception):
    """Base error class for the body parsers."""


class HTTPError(BodyParserError):
    """An error that maps onto an HTTP response.

    ``status`` and ``status_code`` always hold the same value.  ``type`` is a
    machine-readable kind such as ``"entity.too.large"``.  The remaining
    attributes are context and are ``None`` unless the raising code set them.
    """

    #: Default status for this class of error.
    status = 500

    #: Default machine-readable kind.
    type = "internal.error"

    #: Whether the message is safe to show to a client.
    expose = False

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        type: str | None = None,
        body: Any = None,
    ) -> None:
        if status is not None:
            self.status = status
        if type is not None:
            self.type = type
        if message is None:
            message = self.__class__.__name__
        super().__init__(message)
        self.message = message
        self.expose = self.status < 500
        self.body = body

    @property
    def status_code(self) -> int:
        return self.status

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, status={self.status!r}, type={self.type!r})"


class BadRequest(HTTPError):
    """Raised for stream integrity problems and parse failures."""

    status = 400
    type = "entity.parse.failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        type: str | None = None,
        body: Any = None,
        expected: int | None = None,
        length: int | None = None,
        received: int | None = None,
    ) -> None:
        super().__init__(message, status=status, type=type, body=body)
        self.expected = expected
        self.length = length
        self.received = received


class DecodeError(BadRequest):
    """This exception is raised when compressed request data is malformed,
    for example a truncated gzip member or an invalid deflate stream.
    """

    type = "encoding.malformed"


class Forbidden(HTTPError):
    """Raised when a ``verify`` hook rejects the raw body."""

    status = 403
    type = "entity.verify.failed"


class PayloadTooLarge(HTTPError):
    """Raised when the body exceeds the byte limit, or when an urlencoded
    body carries more parameters than allowed.
    """

    status = 413
    type = "entity.too.large"

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        type: str | None = None,
        body: Any = None,
        limit: int | float | None = None,
        expected: int | None = None,
        length: int | None = None,
        received: int | None = None,
    ) -> None:
        super().__init__(message, status=status, type=type, body=body)
        self.limit = limit
        self.expected = expected
        self.length = length
        self.received = received


class UnsupportedMediaType(HTTPError):
    """Raised for a disallowed content encoding or charset."""

    status = 415
    type = "encoding.unsupported"

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        type: str | None = None,
        body: Any = None,
        charset: str | None = None,
        encoding: str | None = None,
    ) -> None:
        super().__init__(message, status=status, type=type, body=body)
        self.charset = charset
        self.encoding = encoding


_STATUS_CLASSES: dict[int, type[HTTPError]] = {
    400: BadRequest,
    403: Forbidden,
    413: PayloadTooLarge,
    415: UnsupportedMediaType,
}


def create_error(status: int, message: str | None = None, **fields: Any) -> HTTPError:
    """Build the error class matching ``status``.

    Statuses without a dedicated class give a plain :class:`HTTPError`
    carrying that status.
    """
    klass = _STATUS_CLASSES.get(status)
    if klass is None:
        return HTTPError(message, status=status, type=fields.get("type"), body=fields.get("body"))
    return klass(message, **fields)


def unsupported_charset(charset: str) -> UnsupportedMediaType:
    return UnsupportedMediaType(
        f'unsupported charset "{charset.upper()}"',
        type="charset.unsupported",
        charset=charset.lower(),
    )
