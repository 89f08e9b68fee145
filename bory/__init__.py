# This is the canonical package information.
__author__ = "Daniel Röhers Moura"
__license__ = "MIT"
__copyright__ = "Copyright (c) 2017, Daniel Röhers Moura"

# We get the version from a sub-file that can be automatically generated.
from ._version import __version__

from .exceptions import (
    BadRequest,
    BodyParserError,
    DecodeError,
    Forbidden,
    HTTPError,
    PayloadTooLarge,
    UnsupportedMediaType,
)
from .parsers import (
    BaseParser,
    BodyParser,
    JSONParser,
    NestedParser,
    ParserKind,
    QueryParser,
    RawParser,
    TextParser,
    URLEncodedParser,
    create_parser,
)
from .request import Request


def json(config={}, **kwargs):
    """Build a :class:`JSONParser`."""
    return create_parser(ParserKind.JSON, config, **kwargs)


def raw(config={}, **kwargs):
    """Build a :class:`RawParser`."""
    return create_parser(ParserKind.RAW, config, **kwargs)


def text(config={}, **kwargs):
    """Build a :class:`TextParser`."""
    return create_parser(ParserKind.TEXT, config, **kwargs)


def urlencoded(config={}, **kwargs):
    """Build a :class:`URLEncodedParser`."""
    return create_parser(ParserKind.URLENCODED, config, **kwargs)


def nested(config={}, **kwargs):
    """Build a :class:`NestedParser`."""
    return create_parser(ParserKind.NESTED, config, **kwargs)


def query_parser(config={}, **kwargs):
    """Build a :class:`QueryParser`."""
    return create_parser(ParserKind.QUERY, config, **kwargs)


def body_parser(config={}, **kwargs):
    """Build the deprecated combined JSON and urlencoded :class:`BodyParser`."""
    return create_parser(ParserKind.BODY, config, **kwargs)


__all__ = (
    "BadRequest",
    "BaseParser",
    "BodyParser",
    "BodyParserError",
    "DecodeError",
    "Forbidden",
    "HTTPError",
    "JSONParser",
    "NestedParser",
    "ParserKind",
    "PayloadTooLarge",
    "QueryParser",
    "RawParser",
    "Request",
    "TextParser",
    "URLEncodedParser",
    "UnsupportedMediaType",
    "__version__",
    "body_parser",
    "create_parser",
    "json",
    "nested",
    "query_parser",
    "raw",
    "text",
    "urlencoded",
)
