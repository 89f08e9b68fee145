from __future__ import annotations

import gzip
import unittest
import zlib
from io import BytesIO
from unittest.mock import Mock

from bory.exceptions import (
    BadRequest,
    Forbidden,
    HTTPError,
    PayloadTooLarge,
    UnsupportedMediaType,
)
from bory.read import BodyBuffer, StreamReader, content_stream, read

from .utils import FailingStream, Next, make_request


def identity(value):
    return value


class TestContentStream(unittest.TestCase):
    def test_identity(self) -> None:
        buffer = BodyBuffer()
        writer, length = content_stream(make_request(b"hello"), True, buffer)
        self.assertIs(writer, buffer)
        self.assertEqual(length, 5)

    def test_identity_without_length(self) -> None:
        buffer = BodyBuffer()
        writer, length = content_stream(make_request(b"hello", chunked=True), True, buffer)
        self.assertIs(writer, buffer)
        self.assertIsNone(length)

    def test_gzip(self) -> None:
        request = make_request(b"", headers={"Content-Encoding": "GZIP"})
        writer, length = content_stream(request, True, BodyBuffer())
        self.assertEqual(type(writer).__name__, "GzipDecoder")
        self.assertIsNone(length)

    def test_deflate(self) -> None:
        request = make_request(b"", headers={"Content-Encoding": "deflate"})
        writer, _ = content_stream(request, True, BodyBuffer())
        self.assertEqual(type(writer).__name__, "DeflateDecoder")

    def test_inflate_disabled(self) -> None:
        request = make_request(b"", headers={"Content-Encoding": "gzip"})
        with self.assertRaises(UnsupportedMediaType) as cm:
            content_stream(request, False, BodyBuffer())
        self.assertEqual(cm.exception.message, "content encoding unsupported")
        self.assertEqual(cm.exception.type, "encoding.unsupported")

    def test_inflate_disabled_identity(self) -> None:
        request = make_request(b"hi", headers={"Content-Encoding": "identity"})
        buffer = BodyBuffer()
        writer, _ = content_stream(request, False, buffer)
        self.assertIs(writer, buffer)

    def test_unknown_encoding(self) -> None:
        request = make_request(b"", headers={"Content-Encoding": "nulls"})
        with self.assertRaises(UnsupportedMediaType) as cm:
            content_stream(request, True, BodyBuffer())
        self.assertEqual(cm.exception.message, 'unsupported content encoding "nulls"')
        self.assertEqual(cm.exception.encoding, "nulls")
        self.assertEqual(cm.exception.status, 415)


class TestStreamReader(unittest.TestCase):
    def test_reads_declared_length_only(self) -> None:
        stream = BytesIO(b"hello world")
        buffer = BodyBuffer()
        reader = StreamReader(stream, 5, chunk_size=2)
        self.assertEqual(reader.pump(buffer, buffer), 5)
        self.assertEqual(buffer.value, b"hello")
        self.assertEqual(stream.read(), b" world")

    def test_reads_to_eof_without_length(self) -> None:
        stream = BytesIO(b"hello world")
        buffer = BodyBuffer()
        StreamReader(stream, None, chunk_size=3).pump(buffer, buffer)
        self.assertEqual(buffer.value, b"hello world")

    def test_declared_length_over_limit(self) -> None:
        stream = BytesIO(b"hello world")
        reader = StreamReader(stream, 11)
        buffer = BodyBuffer(limit=4)
        with self.assertRaises(PayloadTooLarge) as cm:
            reader.pump(buffer, buffer)
        self.assertEqual(cm.exception.expected, 11)
        self.assertEqual(cm.exception.length, 11)
        # nothing was read
        self.assertEqual(stream.tell(), 0)

    def test_stops_one_byte_past_limit(self) -> None:
        stream = BytesIO(b"x" * 100)
        reader = StreamReader(stream, None)
        buffer = BodyBuffer(limit=10)
        with self.assertRaises(PayloadTooLarge) as cm:
            reader.pump(buffer, buffer)
        self.assertEqual(cm.exception.received, 11)
        self.assertEqual(reader.received, 11)

    def test_drain(self) -> None:
        stream = BytesIO(b"x" * 100)
        reader = StreamReader(stream, None, chunk_size=7)
        reader.drain()
        self.assertEqual(stream.read(), b"")
        self.assertEqual(reader.received, 100)

    def test_drain_respects_length(self) -> None:
        stream = BytesIO(b"x" * 100)
        reader = StreamReader(stream, 40)
        reader.drain()
        self.assertEqual(reader.received, 40)

    def test_drain_swallows_stream_errors(self) -> None:
        reader = StreamReader(FailingStream(b"abc"), None)
        reader.drain()
        self.assertEqual(reader.received, 3)

    def test_repr(self) -> None:
        self.assertEqual(repr(StreamReader(BytesIO(), 3)), "StreamReader(length=3, received=0)")


class TestRead(unittest.TestCase):
    def read(self, request, parse=identity, **kwargs) -> Next:
        done = Next()
        read(request, None, done, parse, **kwargs)
        return done

    def test_success(self) -> None:
        request = make_request(b"hello")
        done = self.read(request, lambda s: s.upper())
        self.assertIsNone(done.error)
        self.assertEqual(request.body, "HELLO")
        self.assertTrue(request.body_consumed)

    def test_no_encoding_gives_bytes(self) -> None:
        request = make_request(b"\x00\xff")
        self.read(request, encoding=None)
        self.assertEqual(request.body, b"\x00\xff")

    def test_charset(self) -> None:
        request = make_request("café".encode("latin-1"))
        self.read(request, encoding="latin-1")
        self.assertEqual(request.body, "café")

    def test_invalid_bytes_are_replaced(self) -> None:
        request = make_request(b"caf\xe9")
        self.read(request)
        self.assertEqual(request.body, "caf\ufffd")

    def test_byte_order_mark_is_dropped(self) -> None:
        request = make_request(b"\xef\xbb\xbfhello")
        self.read(request)
        self.assertEqual(request.body, "hello")

    def test_byte_order_mark_kept_for_raw(self) -> None:
        request = make_request(b"\xef\xbb\xbfhello")
        self.read(request, encoding=None)
        self.assertEqual(request.body, b"\xef\xbb\xbfhello")

    def test_unknown_charset_before_reading(self) -> None:
        verify = Mock()
        parse = Mock()
        request = make_request(b"\x00\x00\x00\x00")
        done = self.read(request, parse, encoding="x-bogus", verify=verify)

        err = done.error
        self.assertIsInstance(err, UnsupportedMediaType)
        self.assertEqual(err.message, 'unsupported charset "X-BOGUS"')
        self.assertEqual(err.charset, "x-bogus")
        verify.assert_not_called()
        parse.assert_not_called()
        self.assertEqual(request.stream.tell(), 0)

    def test_content_encoding_error(self) -> None:
        request = make_request(b"hi", headers={"Content-Encoding": "nulls"})
        done = self.read(request)
        self.assertEqual(done.error.status, 415)
        self.assertTrue(request.body_consumed)
        self.assertIsNone(request.body)

    def test_limit_from_content_length(self) -> None:
        request = make_request(b"x" * 1025)
        done = self.read(request, limit=1024)
        err = done.error
        self.assertIsInstance(err, PayloadTooLarge)
        self.assertEqual(err.status, 413)
        self.assertEqual(err.type, "entity.too.large")
        self.assertEqual(err.message, "request entity too large")
        self.assertEqual(err.limit, 1024)
        # the rest of the body was read off
        self.assertEqual(request.stream.read(), b"")

    def test_limit_from_chunked_body(self) -> None:
        request = make_request(b"x" * 1025, chunked=True)
        done = self.read(request, limit=1024, chunk_size=100)
        err = done.error
        self.assertIsInstance(err, PayloadTooLarge)
        self.assertEqual(err.received, 1025)
        self.assertEqual(request.stream.read(), b"")

    def test_body_at_limit(self) -> None:
        request = make_request(b"x" * 1024, chunked=True)
        done = self.read(request, limit=1024)
        self.assertIsNone(done.error)
        self.assertEqual(len(request.body), 1024)

    def test_gzip(self) -> None:
        request = make_request(gzip.compress(b"name is tobi"), headers={"Content-Encoding": "gzip"})
        done = self.read(request)
        self.assertIsNone(done.error)
        self.assertEqual(request.body, "name is tobi")

    def test_gzip_members(self) -> None:
        body = gzip.compress(b"hello ") + gzip.compress(b"world")
        request = make_request(body, headers={"Content-Encoding": "gzip"})
        done = self.read(request)
        self.assertIsNone(done.error)
        self.assertEqual(request.body, "hello world")

    def test_deflate_trailing_data(self) -> None:
        body = zlib.compress(b"hello") + b"world"
        request = make_request(body, headers={"Content-Encoding": "deflate"})
        done = self.read(request)
        self.assertIsInstance(done.error, BadRequest)
        self.assertEqual(request.stream.read(), b"")

    def test_deflate(self) -> None:
        request = make_request(zlib.compress(b"name is tobi"), headers={"Content-Encoding": "deflate"})
        self.read(request)
        self.assertEqual(request.body, "name is tobi")

    def test_gzip_limit_applies_after_inflating(self) -> None:
        data = gzip.compress(b"\0" * (1024 * 1024))
        request = make_request(data, headers={"Content-Encoding": "gzip"})
        done = self.read(request, limit=len(data) * 2)
        self.assertIsInstance(done.error, PayloadTooLarge)
        self.assertEqual(request.stream.read(), b"")

    def test_malformed_gzip(self) -> None:
        request = make_request(b"\x1f\x8b\x08 nope", headers={"Content-Encoding": "gzip"})
        done = self.read(request)
        self.assertIsInstance(done.error, BadRequest)
        self.assertEqual(done.error.status, 400)

    def test_length_mismatch(self) -> None:
        request = make_request(b"hello", headers={"Content-Length": "10"})
        done = self.read(request)
        err = done.error
        self.assertIsInstance(err, BadRequest)
        self.assertEqual(err.message, "request size did not match content length")
        self.assertEqual(err.type, "request.size.invalid")
        self.assertEqual(err.expected, 10)
        self.assertEqual(err.received, 5)

    def test_aborted(self) -> None:
        request = make_request(None, headers={"Content-Length": "10"})
        request.stream = FailingStream(b"hello")
        done = self.read(request)
        err = done.error
        self.assertIsInstance(err, BadRequest)
        self.assertEqual(err.message, "request aborted")
        self.assertEqual(err.type, "request.aborted")
        self.assertIsInstance(err.__cause__, ConnectionResetError)

    def test_verify_sees_raw_bytes(self) -> None:
        verify = Mock()
        request = make_request("café".encode("latin-1"))
        self.read(request, encoding="latin-1", verify=verify)
        verify.assert_called_once_with(request, None, b"caf\xe9", "latin-1")
        self.assertEqual(request.body, "café")

    def test_verify_failure_is_403(self) -> None:
        def verify(req, res, buf, encoding):
            raise ValueError("no thanks")

        parse = Mock()
        done = self.read(make_request(b"hello"), parse, verify=verify)
        err = done.error
        self.assertIsInstance(err, Forbidden)
        self.assertEqual(err.status, 403)
        self.assertEqual(err.message, "no thanks")
        self.assertEqual(err.type, "entity.verify.failed")
        self.assertIsInstance(err.__cause__, ValueError)
        parse.assert_not_called()

    def test_verify_custom_status(self) -> None:
        class Rejected(Exception):
            status = 400

        def verify(req, res, buf, encoding):
            raise Rejected("bad signature")

        done = self.read(make_request(b"hello"), verify=verify)
        err = done.error
        self.assertIsInstance(err, BadRequest)
        self.assertEqual(err.status, 400)
        self.assertEqual(err.type, "entity.verify.failed")

    def test_verify_custom_status_code(self) -> None:
        class Teapot(Exception):
            status_code = 418

        def verify(req, res, buf, encoding):
            raise Teapot("short and stout")

        err = self.read(make_request(b"hello"), verify=verify).error
        self.assertIs(type(err), HTTPError)
        self.assertEqual(err.status, 418)

    def test_verify_http_error_passes_through(self) -> None:
        rejected = PayloadTooLarge("no")

        def verify(req, res, buf, encoding):
            raise rejected

        self.assertIs(self.read(make_request(b"hello"), verify=verify).error, rejected)

    def test_parse_failure_is_400(self) -> None:
        def parse(value):
            raise ValueError("unexpected token")

        request = make_request(b"hello")
        err = self.read(request, parse).error
        self.assertIsInstance(err, BadRequest)
        self.assertEqual(err.type, "entity.parse.failed")
        self.assertEqual(err.message, "unexpected token")
        self.assertEqual(err.body, "hello")
        self.assertIsInstance(err.__cause__, ValueError)
        self.assertIsNone(request.body)

    def test_parse_http_error_gets_body(self) -> None:
        def parse(value):
            raise PayloadTooLarge("too many parameters")

        err = self.read(make_request(b"a=1&b=2"), parse).error
        self.assertIsInstance(err, PayloadTooLarge)
        self.assertEqual(err.body, "a=1&b=2")

    def test_next_called_once(self) -> None:
        done = self.read(make_request(b"x" * 10), limit=5)
        self.assertEqual(len(done.calls), 1)
