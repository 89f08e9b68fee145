from __future__ import annotations

import logging
import zlib
from typing import TYPE_CHECKING

from .exceptions import DecodeError

if TYPE_CHECKING:  # pragma: no cover
    from typing import Protocol

    class SupportsWrite(Protocol):
        def write(self, __b: bytes) -> object: ...

# Get logger for this module.
logger = logging.getLogger(__name__)

# Never inflate more than this many bytes from a single call into zlib, so
# that whatever sits underneath us gets to see (and reject) oversized data
# before we produce the rest of it.
MAX_INFLATE_CHUNK = 16 * 1024


class _ZlibDecoder:
    """
    Base class for the decompressing writers.  Compressed data is written in
    with :meth:`write`; decompressed data is written, a slice at a time, to
    the underlying object.
    """

    #: The ``wbits`` value handed to zlib.
    wbits = zlib.MAX_WBITS

    def __init__(self, underlying: SupportsWrite, chunk_size: int = MAX_INFLATE_CHUNK) -> None:
        self.underlying = underlying
        self.chunk_size = chunk_size
        self._decompressor = zlib.decompressobj(self.wbits)

    def write(self, data: bytes) -> int:
        try:
            self._decompress(data)
        except zlib.error as e:
            logger.debug("invalid compressed data: %s", e)
            raise DecodeError("There was an error raised while decompressing the request body.") from e

        # Return the length of the data to indicate no error.
        return len(data)

    def _decompress(self, data: bytes) -> None:
        buf = self._decompressor.decompress(data, self.chunk_size)
        while True:
            if buf:
                self.underlying.write(buf)

            if self._decompressor.eof:
                rest = self._decompressor.unused_data
                if not rest:
                    break
                self._next_member(rest)
                buf = self._decompressor.decompress(rest, self.chunk_size)
            elif buf or self._decompressor.unconsumed_tail:
                buf = self._decompressor.decompress(self._decompressor.unconsumed_tail, self.chunk_size)
            else:
                break

    def _next_member(self, rest: bytes) -> None:
        """Called when data follows the end of the compressed stream."""
        logger.debug("%d bytes after the end of the compressed stream", len(rest))
        raise DecodeError("unexpected data after the end of the compressed stream")

    def close(self) -> None:
        if hasattr(self.underlying, "close"):
            self.underlying.close()

    def finalize(self) -> None:
        try:
            rest = self._decompressor.flush()
        except zlib.error as e:
            raise DecodeError("There was an error raised while decompressing the request body.") from e

        if rest:
            self.underlying.write(rest)

        if not self._decompressor.eof:
            raise DecodeError("unexpected end of compressed data")

        if hasattr(self.underlying, "finalize"):
            self.underlying.finalize()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(underlying={self.underlying!r})"


class GzipDecoder(_ZlibDecoder):
    """Decodes a ``Content-Encoding: gzip`` body."""

    wbits = 16 + zlib.MAX_WBITS

    def _next_member(self, rest: bytes) -> None:
        # concatenated members decode as one body
        logger.debug("starting next gzip member")
        self._decompressor = zlib.decompressobj(self.wbits)


class DeflateDecoder(_ZlibDecoder):
    """Decodes a ``Content-Encoding: deflate`` body (a zlib-wrapped stream)."""

    wbits = zlib.MAX_WBITS
