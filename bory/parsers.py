from __future__ import annotations

import json
import logging
import math
import re
import warnings
from enum import Enum
from numbers import Number
from typing import TYPE_CHECKING

from .exceptions import HTTPError, PayloadTooLarge, unsupported_charset
from .helpers import get_charset, get_header, get_limit, has_body, media_type, type_checker
from .nested import parse_nested
from .querystring import (
    DEFAULT_PARAMETER_LIMIT,
    MIN_ARRAY_LIMIT,
    QuerystringSyntax,
    get_decoder,
    parameter_count,
    parse_simple,
)
from .read import DEFAULT_CHUNK_SIZE, read

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Mapping
    from typing import Any, TypedDict

    NextCallback = Callable[..., Any]
    Reviver = Callable[[Any, Any], Any]

    class ParserConfig(TypedDict, total=False):
        limit: int | float | str | None
        inflate: bool
        type: Any
        verify: Callable[..., Any] | bool | None
        chunk_size: int
        strict: bool
        reviver: Reviver | None
        default_charset: str
        extended: bool | None
        parameter_limit: int | float

# whitespace as the JSON grammar defines it
FIRST_CHAR_RE = re.compile(r"[\x20\x09\x0a\x0d]*([^\x20\x09\x0a\x0d])")

# Content types whose parsed body or query the nested transform rewrites.
NESTED_TYPES = frozenset(
    [
        "application/x-www-form-urlencoded",
        "application/json",
        "multipart/form-data",
    ]
)


class BaseParser:
    """
    The shared request-handling skeleton of the body parsers.  Instances are
    callables taking ``(request, response, next)``; each call either leaves
    the request alone or reads and parses its body, and then calls ``next``
    exactly once, with an :class:`~bory.exceptions.HTTPError` on failure.

    Options are resolved once, here, from ``config`` updated with any keyword
    arguments.  Mutating the caller's mapping afterwards has no effect.

    :param config: A mapping of options; see ``DEFAULT_CONFIG`` for the keys
                   each parser understands.  Unknown keys are ignored.
    """

    #: This is the default configuration for the parser.
    DEFAULT_CONFIG: ParserConfig = {
        "limit": "100kb",
        "inflate": True,
        "type": None,
        "verify": None,
        "chunk_size": DEFAULT_CHUNK_SIZE,
    }

    #: The media type parsed when the ``type`` option isn't given.
    default_type = "application/octet-stream"

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        self.logger = logging.getLogger(__name__)

        # Set configuration options.
        self.config: ParserConfig = self.DEFAULT_CONFIG.copy()
        self.config.update(config)  # type: ignore[typeddict-item]
        self.config.update(kwargs)  # type: ignore[typeddict-item]

        self.limit = get_limit(self.config)
        self.config["limit"] = self.limit
        self.inflate = self.config.get("inflate") is not False
        self.chunk_size = self.config.get("chunk_size") or DEFAULT_CHUNK_SIZE

        verify = self.config.get("verify") or None
        if verify is not None and not callable(verify):
            raise TypeError("option verify must be function")
        self.verify = verify

        # create the appropriate type checking function
        type = self.config.get("type") or self.default_type
        if callable(type):
            self.should_parse = type
        else:
            if not isinstance(type, str):
                type = tuple(type)
            self.config["type"] = type
            self.should_parse = type_checker(type)

    def __call__(self, request: Any, response: Any, next: NextCallback) -> Any:
        if getattr(request, "body_consumed", False):
            self.logger.debug("body already parsed")
            return next()

        if getattr(request, "body", None) is None:
            request.body = {}

        # skip requests without bodies
        if not has_body(request):
            self.logger.debug("skip empty body")
            return next()

        self.logger.debug("content-type %r", get_header(request, "content-type"))

        # determine if request should be parsed
        if not self.should_parse(request):
            self.logger.debug("skip parsing")
            return next()

        try:
            encoding = self.get_encoding(request)
        except HTTPError as err:
            return next(err)

        return read(
            request,
            response,
            next,
            self.parse,
            encoding=encoding,
            inflate=self.inflate,
            limit=self.limit,
            verify=self.verify,
            chunk_size=self.chunk_size,
        )

    def get_encoding(self, request: Any) -> str | None:
        """The charset to decode the body with, or None to keep bytes.

        Raises an :class:`~bory.exceptions.UnsupportedMediaType` error when
        the request's charset isn't acceptable for this parser.
        """
        return None

    def parse(self, body: Any) -> Any:
        return body

    def __repr__(self) -> str:
        return "%s(limit=%r, type=%r)" % (self.__class__.__name__, self.limit, self.config.get("type"))


class JSONParser(BaseParser):
    """Parses JSON bodies.

    With ``strict`` on (the default) only objects and arrays are accepted at
    the top level.  An empty body parses as ``{}``.  ``reviver``, if given, is
    called as ``reviver(key, value)`` for every member from the leaves up and
    its return value replaces the member; the top-level key is ``""`` and
    list members are keyed by their index.
    """

    DEFAULT_CONFIG: ParserConfig = {
        **BaseParser.DEFAULT_CONFIG,
        "strict": True,
        "reviver": None,
    }

    default_type = "application/json"

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self.strict = self.config.get("strict") is not False
        self.reviver = self.config.get("reviver") or None

    def get_encoding(self, request: Any) -> str | None:
        # assert charset per RFC 7159 sec 8.1
        charset = get_charset(request) or "utf-8"
        if not charset.startswith("utf-"):
            self.logger.warning("invalid charset %r", charset)
            raise unsupported_charset(charset)
        return charset

    def parse(self, body: str) -> Any:
        if len(body) == 0:
            # an empty body is a common client mistake, not an error
            return {}

        if self.strict:
            match = FIRST_CHAR_RE.match(body)
            first = match.group(1) if match else ""
            if first not in ("{", "["):
                self.logger.debug("strict violation")
                pos = match.start(1) if match else len(body)
                raise json.JSONDecodeError("Unexpected token %r" % first, body, pos)

        self.logger.debug("parse json")
        value = json.loads(body, parse_constant=_reject_constant)
        if self.reviver is not None:
            value = _revive(self.reviver, "", value)
        return value


def _reject_constant(name: str) -> Any:
    raise ValueError("Unexpected token %r" % name)


def _revive(reviver: Reviver, key: Any, value: Any) -> Any:
    if isinstance(value, dict):
        for k in list(value):
            value[k] = _revive(reviver, k, value[k])
    elif isinstance(value, list):
        for i, item in enumerate(value):
            value[i] = _revive(reviver, i, item)
    return reviver(key, value)


class RawParser(BaseParser):
    """Hands the body over as ``bytes``, with no charset decoding."""

    default_type = "application/octet-stream"


class TextParser(BaseParser):
    """Hands the body over as a ``str``.  The request's charset is used when
    it declares one, and ``default_charset`` otherwise.
    """

    DEFAULT_CONFIG: ParserConfig = {
        **BaseParser.DEFAULT_CONFIG,
        "default_charset": "utf-8",
    }

    default_type = "text/plain"

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self.default_charset = self.config.get("default_charset") or "utf-8"

    def get_encoding(self, request: Any) -> str | None:
        return get_charset(request) or self.default_charset


class URLEncodedParser(BaseParser):
    """Parses ``application/x-www-form-urlencoded`` bodies.

    With ``extended`` on, bracket syntax builds nested dicts and lists
    (``a[b][]=c``); with it off, every key is kept flat.  Bodies holding
    ``parameter_limit`` parameters or more are rejected with a 413.
    """

    DEFAULT_CONFIG: ParserConfig = {
        **BaseParser.DEFAULT_CONFIG,
        "extended": None,
        "parameter_limit": DEFAULT_PARAMETER_LIMIT,
    }

    default_type = "application/x-www-form-urlencoded"

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)

        extended = self.config.get("extended")
        if extended is None:
            # the default will flip in the next major version
            warnings.warn("undefined extended: provide extended option", DeprecationWarning, stacklevel=2)
        self.extended = extended is not False
        self.syntax = QuerystringSyntax.EXTENDED if self.extended else QuerystringSyntax.SIMPLE
        self.decoder = get_decoder(self.syntax)

        self.parameter_limit = _get_parameter_limit(self.config.get("parameter_limit"))
        self.config["parameter_limit"] = self.parameter_limit

    def get_encoding(self, request: Any) -> str | None:
        charset = get_charset(request) or "utf-8"
        if charset != "utf-8":
            self.logger.warning("invalid charset %r", charset)
            raise unsupported_charset(charset)
        return charset

    def parse(self, body: str) -> Any:
        if not body:
            return {}

        count = parameter_count(body, self.parameter_limit)
        if count is None:
            self.logger.debug("too many parameters")
            raise PayloadTooLarge("too many parameters", type="parameters.too.many", limit=self.parameter_limit)

        if self.syntax is QuerystringSyntax.EXTENDED:
            self.logger.debug("parse extended urlencoding")
            return self.decoder(body, self.parameter_limit, array_limit=max(MIN_ARRAY_LIMIT, count))

        self.logger.debug("parse urlencoding")
        return self.decoder(body, self.parameter_limit)

    def __repr__(self) -> str:
        return "%s(limit=%r, extended=%r, parameter_limit=%r)" % (
            self.__class__.__name__,
            self.limit,
            self.extended,
            self.parameter_limit,
        )


def _get_parameter_limit(value: Any) -> int | float:
    if value is None:
        return DEFAULT_PARAMETER_LIMIT
    if not isinstance(value, Number) or isinstance(value, bool) or math.isnan(value) or value < 1:  # type: ignore[arg-type]
        raise TypeError("option parameter_limit must be a positive number")
    if math.isinf(value):  # type: ignore[arg-type]
        return value  # type: ignore[return-value]
    return math.floor(value)  # type: ignore[arg-type]


class NestedParser:
    """
    Expands dotted keys (``"user.name"``) of an already parsed body and/or
    query into nested dicts.  Only requests whose Content-Type is urlencoded,
    JSON or multipart form data are touched.
    """

    DEFAULT_CONFIG = {
        "body": True,
        "query": True,
    }

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        self.logger = logging.getLogger(__name__)
        self.config = self.DEFAULT_CONFIG.copy()
        self.config.update(config)
        self.config.update(kwargs)
        self.body = bool(self.config["body"])
        self.query = bool(self.config["query"])

    def __call__(self, request: Any, response: Any, next: NextCallback) -> Any:
        ctype = media_type(get_header(request, "content-type"))
        if ctype not in NESTED_TYPES:
            self.logger.debug("skip nested for content-type %r", ctype)
            return next()

        if self.body and getattr(request, "body", None):
            request.body = parse_nested(request.body)
        if self.query and getattr(request, "query", None):
            request.query = parse_nested(request.query)
        return next()

    def __repr__(self) -> str:
        return "%s(body=%r, query=%r)" % (self.__class__.__name__, self.body, self.query)


class QueryParser:
    """
    Sets ``request.query`` from the query string of ``request.url``, parsed
    into a flat dict.  Keys past ``parameter_limit`` are dropped.  The body
    is never read.
    """

    DEFAULT_CONFIG = {
        "parameter_limit": DEFAULT_PARAMETER_LIMIT,
    }

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        self.logger = logging.getLogger(__name__)
        self.config = self.DEFAULT_CONFIG.copy()
        self.config.update(config)
        self.config.update(kwargs)
        self.parameter_limit = _get_parameter_limit(self.config["parameter_limit"])

    def __call__(self, request: Any, response: Any, next: NextCallback) -> Any:
        request.query = parse_simple(query_string(getattr(request, "url", None) or ""), self.parameter_limit)
        return next()

    def __repr__(self) -> str:
        return "%s(parameter_limit=%r)" % (self.__class__.__name__, self.parameter_limit)


def query_string(url: str) -> str:
    """Everything after the last ``?`` of a URL, or ``""`` if there isn't one."""
    _, sep, query = url.rpartition("?")
    return query if sep else ""


class BodyParser:
    """
    Runs a JSON parser and then an urlencoded parser built from the same
    options (``type`` excepted).  An error from the JSON parser is passed on
    without running the second one.

    Deprecated; use the individual parsers instead.
    """

    def __init__(self, config: Mapping[str, Any] = {}, **kwargs: Any) -> None:
        warnings.warn("bory: use individual json/urlencoded middlewares", DeprecationWarning, stacklevel=2)

        # exclude type option
        options = {k: v for k, v in {**config, **kwargs}.items() if k != "type"}

        self.urlencoded = URLEncodedParser(options)
        self.json = JSONParser(options)

    def __call__(self, request: Any, response: Any, next: NextCallback) -> Any:
        def after_json(err: Exception | None = None) -> Any:
            if err is not None:
                return next(err)
            return self.urlencoded(request, response, next)

        return self.json(request, response, after_json)

    def __repr__(self) -> str:
        return "%s(json=%r, urlencoded=%r)" % (self.__class__.__name__, self.json, self.urlencoded)


class ParserKind(Enum):
    """The parsers that can be built with :func:`create_parser`."""

    JSON = "json"
    RAW = "raw"
    TEXT = "text"
    URLENCODED = "urlencoded"
    NESTED = "nested"
    QUERY = "query_parser"
    BODY = "body_parser"


PARSERS: dict[ParserKind, Callable[..., Any]] = {
    ParserKind.JSON: JSONParser,
    ParserKind.RAW: RawParser,
    ParserKind.TEXT: TextParser,
    ParserKind.URLENCODED: URLEncodedParser,
    ParserKind.NESTED: NestedParser,
    ParserKind.QUERY: QueryParser,
    ParserKind.BODY: BodyParser,
}


def create_parser(kind: ParserKind | str, config: Mapping[str, Any] = {}, **kwargs: Any) -> Any:
    """
    Build a parser of the given kind.

    :param kind: A :class:`ParserKind`, or its value (e.g. ``"json"``).

    :param config: Options for the parser; keyword arguments override them.
    """
    kind = ParserKind(kind)
    return PARSERS[kind](config, **kwargs)
