from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping
    from typing import Any, Protocol

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...


# WSGI carries these two headers without the HTTP_ prefix.
WSGI_CONTENT_HEADERS = frozenset(["CONTENT_TYPE", "CONTENT_LENGTH"])


class Request:
    """A minimal request the parsers can work on.

    Any object with the same attributes works just as well; the parsers only
    read ``headers``, ``stream`` and ``url``, and write ``body``, ``query``
    and ``body_consumed``.

    :param method: The request method.

    :param url: The request target, including any query string.

    :param headers: A mapping of header names to values.  Lookups made by the
                    parsers ignore the case of the names.

    :param stream: A readable binary stream holding the request body.
    """

    def __init__(
        self,
        method: str = "GET",
        url: str = "/",
        headers: Mapping[str, str] | None = None,
        stream: SupportsRead | bytes | None = None,
    ) -> None:
        self.method = method
        self.url = url
        self.headers = dict(headers or {})
        if stream is None or isinstance(stream, bytes):
            stream = BytesIO(stream or b"")
        self.stream = stream

        self.body: Any = None
        self.query: Any = None
        self.body_consumed = False

    @classmethod
    def from_environ(cls, environ: Mapping[str, Any]) -> Request:
        """Build a request from a WSGI environ."""
        headers: dict[str, str] = {}
        for name, value in environ.items():
            if name.startswith("HTTP_"):
                headers[name[5:].replace("_", "-").lower()] = value
            elif name in WSGI_CONTENT_HEADERS and value:
                headers[name.replace("_", "-").lower()] = value

        url = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "") or "/"
        query_string = environ.get("QUERY_STRING")
        if query_string:
            url += "?" + query_string

        return cls(
            method=environ.get("REQUEST_METHOD", "GET"),
            url=url,
            headers=headers,
            stream=environ.get("wsgi.input"),
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(method={self.method!r}, url={self.url!r})"
