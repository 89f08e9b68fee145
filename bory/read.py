from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .decoders import DeflateDecoder, GzipDecoder
from .exceptions import (
    BadRequest,
    HTTPError,
    PayloadTooLarge,
    UnsupportedMediaType,
    create_error,
    unsupported_charset,
)
from .helpers import charset_exists, get_header, parse_length

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any, Protocol

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    Writer = BodyBuffer | GzipDecoder | DeflateDecoder
    NextCallback = Callable[..., Any]
    ParseFunction = Callable[[Any], Any]
    VerifyFunction = Callable[[Any, Any, bytes, "str | None"], Any]

# Get logger for this module.
logger = logging.getLogger(__name__)

# A leading byte order mark is not part of the decoded text.
BOM = "\ufeff"

# How many bytes we ask the request stream for at a time.
DEFAULT_CHUNK_SIZE = 64 * 1024

# Content-Encoding values we know how to undo.
DECODERS = {
    "gzip": GzipDecoder,
    "deflate": DeflateDecoder,
}


class BodyBuffer:
    """
    Accumulates body bytes up to a limit.  The write that takes the total
    past the limit raises :class:`PayloadTooLarge`, so nothing beyond
    ``limit`` bytes is ever buffered.
    """

    def __init__(self, limit: int | float = float("inf")) -> None:
        self.limit = limit
        self._chunks: list[bytes] = []
        self._size = 0

    def write(self, data: bytes) -> int:
        data_len = len(data)
        if self._size + data_len > self.limit:
            received = self._size + data_len
            logger.debug("Current size is %d (max %s), rejecting body", received, self.limit)
            raise PayloadTooLarge(
                "request entity too large",
                limit=self.limit,
                received=received,
            )

        self._chunks.append(data)
        self._size += data_len
        return data_len

    def finalize(self) -> None:
        pass

    @property
    def size(self) -> int:
        return self._size

    @property
    def value(self) -> bytes:
        return b"".join(self._chunks)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(size={self._size!r}, limit={self.limit!r})"


class StreamReader:
    """
    Pumps a raw request stream into a writer chain, keeping count of the raw
    bytes taken off the stream so the rest can be drained on failure.
    """

    def __init__(self, stream: SupportsRead, length: int | None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.stream = stream
        self.length = length
        self.chunk_size = chunk_size
        self.received = 0

    def pump(self, writer: Writer, buffer: BodyBuffer) -> int:
        """Feed the whole stream to ``writer``.  Returns the raw bytes received."""
        limit = buffer.limit
        length = self.length

        # reject early when the declared length already breaks the limit
        if length is not None and length > limit:
            raise PayloadTooLarge("request entity too large", limit=limit, expected=length, length=length)

        while True:
            if length is not None:
                wanted = length - self.received
                if wanted <= 0:
                    break
            else:
                wanted = self.chunk_size

            # Ask for no more than one byte beyond the limit, so an oversized
            # identity body is noticed without buffering any further.
            headroom = max(limit - buffer.size + 1, 1)
            wanted = int(min(wanted, self.chunk_size, headroom))

            chunk = self.stream.read(wanted)
            if not chunk:
                break

            self.received += len(chunk)
            writer.write(chunk)

        writer.finalize()
        return self.received

    def drain(self) -> None:
        """Consume and discard whatever is left of the stream."""
        try:
            while True:
                wanted = self.chunk_size
                if self.length is not None:
                    wanted = min(wanted, self.length - self.received)
                    if wanted <= 0:
                        break

                chunk = self.stream.read(wanted)
                if not chunk:
                    break
                self.received += len(chunk)
        except OSError:
            logger.debug("error while draining request stream", exc_info=True)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(length={self.length!r}, received={self.received!r})"


def content_stream(request: Any, inflate: bool, underlying: BodyBuffer) -> tuple[Writer, int | None]:
    """
    Get the writer that raw request bytes should be fed to, along with the
    number of raw bytes we expect to see (None when it can't be known).
    """
    encoding = (get_header(request, "content-encoding") or "identity").lower()
    logger.debug("content-encoding %r", encoding)

    if inflate is False and encoding != "identity":
        raise UnsupportedMediaType("content encoding unsupported", encoding=encoding)

    if encoding == "identity":
        return underlying, parse_length(get_header(request, "content-length"))

    decoder_class = DECODERS.get(encoding)
    if decoder_class is None:
        logger.warning("Unknown Content-Encoding: %r", encoding)
        raise UnsupportedMediaType(f'unsupported content encoding "{encoding}"', encoding=encoding)

    logger.debug("%s body", "gunzip" if encoding == "gzip" else "inflate")
    return decoder_class(underlying), None


def read(
    request: Any,
    response: Any,
    next: NextCallback,
    parse: ParseFunction,
    *,
    encoding: str | None = "utf-8",
    inflate: bool = True,
    limit: int | float = float("inf"),
    verify: VerifyFunction | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Any:
    """
    Read a request body, then verify, decode and parse it.

    On success ``request.body`` is set to the parsed value and ``next()`` is
    called; on failure ``next(error)`` is called with an :class:`HTTPError`.
    Exactly one of the two happens, and nothing is raised.
    """
    # flag as parsed
    request.body_consumed = True

    buffer = BodyBuffer(limit)
    try:
        writer, length = content_stream(request, inflate, buffer)
    except HTTPError as err:
        return next(err)

    # assert charset is supported
    if encoding is not None and not charset_exists(encoding):
        logger.warning("unsupported charset %r", encoding)
        return next(unsupported_charset(encoding))

    logger.debug("read body")
    reader = StreamReader(request.stream, length, chunk_size)
    try:
        received = reader.pump(writer, buffer)
    except HTTPError as err:
        # read off entire request
        reader.drain()
        return next(err)
    except OSError as err:
        logger.debug("error reading request stream: %s", err)
        aborted = BadRequest("request aborted", type="request.aborted", expected=length, length=length)
        aborted.__cause__ = err
        return next(aborted)

    if length is not None and received != length:
        logger.debug("request size %d did not match content length %d", received, length)
        return next(
            BadRequest(
                "request size did not match content length",
                type="request.size.invalid",
                expected=length,
                length=length,
                received=received,
            )
        )

    body = buffer.value

    # verify
    if verify:
        try:
            logger.debug("verify body")
            verify(request, response, body, encoding)
        except HTTPError as err:
            return next(err)
        except Exception as err:
            return next(_wrap_error(err, 403, "entity.verify.failed"))

    # parse
    value: bytes | str = body
    try:
        logger.debug("parse body")
        if encoding is not None:
            value = body.decode(encoding, errors="replace")
            if value.startswith(BOM):
                value = value[1:]
        result = parse(value)
    except HTTPError as err:
        if err.body is None:
            err.body = value
        return next(err)
    except Exception as err:
        error = _wrap_error(err, 400, "entity.parse.failed")
        error.body = value
        return next(error)

    request.body = result
    return next()


def _wrap_error(err: Exception, default_status: int, type: str) -> HTTPError:
    status = getattr(err, "status", None) or getattr(err, "status_code", None)
    if not isinstance(status, int) or status < 400 or status >= 600:
        status = default_status

    error = create_error(status, str(err) or err.__class__.__name__, type=type)
    error.__cause__ = err
    return error
