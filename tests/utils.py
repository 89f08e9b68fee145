from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING

from bory.request import Request

if TYPE_CHECKING:
    from typing import Any


class Next:
    """Stands in for the ``next`` continuation and records every call."""

    def __init__(self) -> None:
        self.calls: list[Any] = []

    def __call__(self, err: Any = None) -> None:
        self.calls.append(err)

    @property
    def called(self) -> bool:
        return bool(self.calls)

    @property
    def error(self) -> Any:
        assert len(self.calls) == 1, "next was called %d times" % len(self.calls)
        return self.calls[0]


class FailingStream:
    """A request stream that breaks after handing out ``data``."""

    def __init__(self, data: bytes = b"") -> None:
        self.data = BytesIO(data)

    def read(self, n: int = -1) -> bytes:
        chunk = self.data.read(n)
        if not chunk:
            raise ConnectionResetError("connection reset by peer")
        return chunk


def make_request(
    body: bytes | None = b"",
    content_type: str | None = None,
    headers: dict[str, str] | None = None,
    chunked: bool = False,
    method: str = "POST",
    url: str = "/",
) -> Request:
    """Build a request carrying ``body``.  A Content-Length header is added
    unless ``chunked`` is set or ``body`` is None (meaning no body at all).
    """
    headers = dict(headers or {})
    if content_type is not None:
        headers["Content-Type"] = content_type
    if chunked:
        headers.setdefault("Transfer-Encoding", "chunked")
    elif body is not None:
        headers.setdefault("Content-Length", str(len(body)))
    return Request(method, url, headers, BytesIO(body or b""))


def run(parser: Any, request: Request, response: Any = None) -> Next:
    done = Next()
    parser(request, response, done)
    return done
