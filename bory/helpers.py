from __future__ import annotations

import codecs
import logging
import mimetypes
import re
from collections.abc import Mapping
from email.message import Message
from numbers import Number
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterable

    TypeSpec = str | Iterable[str]

# Get logger for this module.
logger = logging.getLogger(__name__)

# fmt: off
# Token characters per RFC 7230 section 3.2.6; media type and subtype names
# must consist entirely of these.
TOKEN_CHARS_SET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "!#$%&'*+-.^_`|~")
# fmt: on

# Multipliers for human-readable byte sizes.
BYTE_UNITS = {
    "b": 1,
    "kb": 1 << 10,
    "mb": 1 << 20,
    "gb": 1 << 30,
    "tb": 1 << 40,
    "pb": 1 << 50,
}
BYTES_RE = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?) *(kb|mb|gb|tb|pb|b)?\s*$", re.IGNORECASE)

DEFAULT_LIMIT = "100kb"


def parse_options_header(value: str | bytes | None) -> tuple[str, dict[str, str]]:
    """
    Parses a Content-Type header into a value in the following format:
        (content_type, {parameters})

    The content type and the parameter names are lower-cased; parameter
    values are returned unquoted, with RFC 2231 encodings resolved.
    """
    if not value:
        return ("", {})

    if isinstance(value, bytes):  # pragma: no cover
        value = value.decode("latin-1")

    # If we have no options, return the string as-is.
    if ";" not in value:
        return (value.lower().strip(), {})

    # Let the email package deal with quoting and RFC 2231 continuations.
    message = Message()
    message["content-type"] = value
    params = message.get_params()
    if not params:
        return ("", {})

    ctype = params.pop(0)[0].lower().strip()
    options: dict[str, str] = {}
    for key, val in params:
        if isinstance(val, tuple):
            val = val[-1]
        options[key.lower()] = val
    return ctype, options


def media_type(value: str | bytes | None) -> str | None:
    """Return the ``type/subtype`` part of a Content-Type header, or None when
    the header is missing or is not a valid media type.
    """
    try:
        ctype, _ = parse_options_header(value)
    except ValueError:
        return None
    if not _is_media_type(ctype):
        return None
    return ctype


def _is_media_type(value: str) -> bool:
    parts = value.split("/")
    if len(parts) != 2:
        return False
    return all(part and set(part) <= TOKEN_CHARS_SET for part in parts)


def get_header(request: Any, name: str) -> str | None:
    """Fetch a request header without caring about the mapping's key case.
    Byte values are decoded as latin-1.
    """
    headers = getattr(request, "headers", None) or {}
    value = headers.get(name)
    if value is None:
        lname = name.lower()
        value = headers.get(lname)
        if value is None:
            for key, val in headers.items():
                if isinstance(key, bytes):
                    key = key.decode("latin-1")
                if key.lower() == lname:
                    value = val
                    break
    if isinstance(value, bytes):
        value = value.decode("latin-1")
    return value


def parse_length(value: str | None) -> int | None:
    """Parse a Content-Length value; returns None if it isn't a valid integer."""
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return int(value)


def has_body(request: Any) -> bool:
    """Whether the request announces a body at all.  A ``Content-Length: 0``
    request has a (zero-length) body; a request with neither header has none.
    """
    if get_header(request, "transfer-encoding") is not None:
        return True
    return parse_length(get_header(request, "content-length")) is not None


def parse_bytes(value: Any) -> int | float | None:
    """
    Parse a human-readable byte size such as ``"100kb"`` or ``"1.5 MB"``.
    Units are powers of 1024.  Numbers are returned unchanged, and anything
    that can't be understood gives None.
    """
    if isinstance(value, Number) and not isinstance(value, bool):
        return value  # type: ignore[return-value]
    if not isinstance(value, str):
        return None

    match = BYTES_RE.match(value)
    if match is None:
        return None

    number, unit = match.groups()
    size = float(number) * BYTE_UNITS[(unit or "b").lower()]
    return int(size)


def get_limit(config: Mapping[str, Any]) -> int | float:
    """Resolve the byte limit from parser options.  This must only be called
    while constructing a parser.
    """
    limit = config.get("limit")
    if isinstance(limit, Number) and not isinstance(limit, bool):
        return limit  # type: ignore[return-value]

    resolved = parse_bytes(limit or DEFAULT_LIMIT)
    if resolved is None:
        raise TypeError("option limit must be a number or a byte size string, not %r" % (limit,))
    return resolved


def get_charset(request: Any) -> str | None:
    """Get the lower-cased charset parameter of a request's Content-Type."""
    try:
        _, params = parse_options_header(get_header(request, "content-type"))
    except (TypeError, ValueError):
        return None
    charset = params.get("charset")
    if not charset:
        return None
    return charset.lower()


def charset_exists(charset: str) -> bool:
    """Whether ``charset`` names a text encoding Python can decode with.

    Codecs such as ``base64`` or ``zlib`` exist in the codec registry but do
    not decode to text, so they are rejected the same way ``bytes.decode``
    rejects them.
    """
    try:
        info = codecs.lookup(charset)
    except LookupError:
        return False
    return getattr(info, "_is_text_encoding", True)


def normalize_type(type: str) -> str | None:
    """Expand shorthand type names into media type patterns."""
    if type == "urlencoded":
        return "application/x-www-form-urlencoded"
    if type == "multipart":
        return "multipart/*"
    if type.startswith("+"):
        return "*/*" + type
    if "/" in type:
        return type

    guessed, _ = mimetypes.guess_type("file." + type, strict=False)
    return guessed


def mime_match(expected: str, actual: str, actual_params: Mapping[str, str] | None = None) -> bool:
    """
    Check whether the ``actual`` media type satisfies the ``expected``
    pattern.  Wildcards are allowed for the type and the subtype, and a
    subtype of the form ``*+suffix`` matches any subtype with that suffix.
    Parameters on the pattern must also be present in ``actual_params``.
    """
    expected_type, expected_params = parse_options_header(expected)
    actual_params = actual_params or {}

    expected_parts = expected_type.split("/")
    actual_parts = actual.lower().split("/")
    if len(expected_parts) != 2 or len(actual_parts) != 2:
        return False

    if expected_parts[0] != "*" and expected_parts[0] != actual_parts[0]:
        return False

    if expected_parts[1].startswith("*+"):
        suffix = expected_parts[1][1:]
        if not (len(actual_parts[1]) > len(suffix) and actual_parts[1].endswith(suffix)):
            return False
    elif expected_parts[1] != "*" and expected_parts[1] != actual_parts[1]:
        return False

    for key, value in expected_params.items():
        if actual_params.get(key, "").lower() != value.lower():
            return False

    return True


def is_type(value: str | bytes | None, types: TypeSpec) -> str | bool:
    """
    Match a Content-Type header value against one or more type patterns.

    Returns the first pattern that matched, or False if the header is
    missing, invalid, or matches none of them.
    """
    if isinstance(types, str):
        types = [types]

    try:
        actual, params = parse_options_header(value)
    except ValueError:
        logger.debug("unparsable content-type %r", value)
        return False
    if not _is_media_type(actual):
        return False

    for type in types:
        normalized = normalize_type(type)
        if normalized and mime_match(normalized, actual, params):
            return type

    return False


def type_is(request: Any, types: TypeSpec) -> str | bool | None:
    """Like :func:`is_type` for a request; returns None when the request has
    no body, since there is then nothing to type.
    """
    if not has_body(request):
        return None
    return is_type(get_header(request, "content-type"), types)


def type_checker(types: TypeSpec) -> Callable[[Any], bool]:
    """Get the simple type checker."""

    def check(request: Any) -> bool:
        return bool(type_is(request, types))

    return check
