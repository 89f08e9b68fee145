from __future__ import annotations

import logging
import re
from enum import Enum, IntEnum
from numbers import Number
from typing import TYPE_CHECKING, cast
from urllib.parse import unquote_plus, unquote_to_bytes

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any, Literal, TypeAlias, TypedDict

    class QuerystringCallbacks(TypedDict, total=False):
        on_field_start: Callable[[], None]
        on_field_name: Callable[[str, int, int], None]
        on_field_data: Callable[[str, int, int], None]
        on_field_end: Callable[[], None]
        on_end: Callable[[], None]

    CallbackName: TypeAlias = Literal["field_start", "field_name", "field_data", "field_end", "end"]
    QueryDict = dict[str, Any]

# Get logger for this module.
logger = logging.getLogger(__name__)

AMPERSAND = "&"
EQUALS = "="

# Default number of parameters we accept in a body or query string.
DEFAULT_PARAMETER_LIMIT = 1000

# The extended decoder never shrinks its array limit below this.
MIN_ARRAY_LIMIT = 100

BRACKETS_RE = re.compile(r"\[[^\[\]]*\]")

# A percent sign that does not start a two-digit hex escape.
BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class QuerystringState(IntEnum):
    """Querystring parser states.

    These are used to keep track of the state of the parser, and are used to determine
    what to do when new data is encountered.
    """

    BEFORE_FIELD = 0
    FIELD_NAME = 1
    FIELD_DATA = 2


class QuerystringSyntax(Enum):
    """The decoding strategies available for urlencoded data."""

    SIMPLE = "simple"
    EXTENDED = "extended"


class BaseParser:
    """
    This class implements some helpful methods for parsers.  Currently, it
    just implements the callback logic in a central location.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.callbacks: QuerystringCallbacks = {}

    def callback(self, name: CallbackName, data: str | None = None, start: int | None = None, end: int | None = None) -> None:
        """
        This function calls a provided callback with some data.
        """
        on_name = "on_" + name
        func = self.callbacks.get(on_name)
        if func is None:
            return
        func = cast("Callable[..., Any]", func)

        # Depending on whether we're given a buffer...
        if data is not None:
            # Don't do anything if we have start == end.
            if start is not None and start == end:
                return

            self.logger.debug("Calling %s with data[%d:%d]", on_name, start, end)
            func(data, start, end)
        else:
            self.logger.debug("Calling %s with no data", on_name)
            func()

    def set_callback(self, name: CallbackName, new_func: Callable[..., Any] | None) -> None:
        """
        Update the function for a callback.  Removes from the callbacks dict
        if new_func is None.
        """
        if new_func is None:
            self.callbacks.pop("on_" + name, None)  # type: ignore[misc]
        else:
            self.callbacks["on_" + name] = new_func  # type: ignore[literal-required]

    def finalize(self) -> None:
        pass  # pragma: no cover

    def __repr__(self) -> str:
        return "%s()" % self.__class__.__name__


class QuerystringParser(BaseParser):
    """
    This is a streaming querystring parser.  It will consume text, and call
    the callbacks given when it has enough data.

    Valid callbacks (* means with data):
        - on_field_start
        - on_field_name         *
        - on_field_data         *
        - on_field_end
        - on_end

    Fields are separated by ``&``.  A field without an equals sign (e.g.
    "...&name&...") produces a name callback and no data callback.  Empty
    fields are skipped.  Once ``max_fields`` fields have ended, the rest of
    the input is ignored.
    """

    state: QuerystringState

    def __init__(self, callbacks: QuerystringCallbacks = {}, max_fields: float = float("inf")) -> None:
        super().__init__()
        self.state = QuerystringState.BEFORE_FIELD
        self._found_sep = False

        self.callbacks = callbacks

        if not isinstance(max_fields, Number) or max_fields < 1:
            raise ValueError("max_fields must be a positive number, not %r" % max_fields)
        self.max_fields: int | float = max_fields
        self._fields = 0
        self._done = False

    def write(self, data: str) -> int:
        if self._done:
            return 0
        return self._internal_write(data, len(data))

    def _internal_write(self, data: str, length: int) -> int:
        state = self.state
        found_sep = self._found_sep

        i = 0
        while i < length:
            ch = data[i]

            # Depending on our state...
            if state == QuerystringState.BEFORE_FIELD:
                # Skip separators; a run of them is a run of empty fields.
                if ch == AMPERSAND:
                    if found_sep:
                        self.logger.debug("Skipping duplicate ampersand at %d", i)
                    else:
                        found_sep = True
                else:
                    # Emit a field-start event, and go to that state.  Also,
                    # reset the "found_sep" flag, for the next time we get to
                    # this state.
                    self.callback("field_start")
                    i -= 1
                    state = QuerystringState.FIELD_NAME
                    found_sep = False

            elif state == QuerystringState.FIELD_NAME:
                # Try and find a separator - we ensure that, if we do, we only
                # look for the equal sign before it.
                sep_pos = data.find(AMPERSAND, i)

                if sep_pos != -1:
                    equals_pos = data.find(EQUALS, i, sep_pos)
                else:
                    equals_pos = data.find(EQUALS, i)

                if equals_pos != -1:
                    # Emit this name, and jump to the data state.
                    self.callback("field_name", data, i, equals_pos)
                    i = equals_pos
                    state = QuerystringState.FIELD_DATA

                elif sep_pos != -1:
                    # A name with no value - emit it and end the field.
                    self.callback("field_name", data, i, sep_pos)
                    if self._end_field(state):
                        i = length
                        break
                    i = sep_pos - 1
                    state = QuerystringState.BEFORE_FIELD

                else:
                    # No separator in this block, so the rest of this chunk
                    # must be a name.
                    self.callback("field_name", data, i, length)
                    i = length

            elif state == QuerystringState.FIELD_DATA:
                sep_pos = data.find(AMPERSAND, i)

                # If we found it, callback this bit as data and then go back
                # to expecting to find a field.
                if sep_pos != -1:
                    self.callback("field_data", data, i, sep_pos)
                    if self._end_field(state):
                        i = length
                        break

                    # Note that we go to the separator, which brings us to the
                    # "before field" state.
                    i = sep_pos - 1
                    state = QuerystringState.BEFORE_FIELD

                # Otherwise, emit the rest as data and finish.
                else:
                    self.callback("field_data", data, i, length)
                    i = length

            else:  # pragma: no cover (error case)
                msg = "Reached an unknown state %d at %d" % (state, i)
                self.logger.warning(msg)
                raise ValueError(msg)

            i += 1

        self.state = state
        self._found_sep = found_sep
        return length

    def _end_field(self, state: QuerystringState) -> bool:
        """End the current field; returns True once we've reached max_fields."""
        # callbacks may look at the state the field ended in
        self.state = state
        self.callback("field_end")
        self._fields += 1
        if self._fields >= self.max_fields:
            self.logger.debug("Reached max_fields (%s), ignoring the rest", self.max_fields)
            self._done = True
        return self._done

    def finalize(self) -> None:
        # If we're currently in the middle of a field, we finish it.
        if not self._done and self.state in (QuerystringState.FIELD_NAME, QuerystringState.FIELD_DATA):
            self.callback("field_end")
        self.callback("end")

    def __repr__(self) -> str:
        return "{}(max_fields={!r})".format(self.__class__.__name__, self.max_fields)


def split_fields(data: str, max_fields: float = float("inf")) -> list[tuple[str, str | None]]:
    """
    Split a querystring into ``(raw_name, raw_value)`` pairs, in order.
    ``raw_value`` is None for a field that had no equals sign.  Nothing is
    percent-decoded here.
    """
    fields: list[tuple[str, str | None]] = []
    name_buffer: list[str] = []
    value_buffer: list[str] = []

    def on_field_start() -> None:
        del name_buffer[:]
        del value_buffer[:]

    def on_field_name(data: str, start: int, end: int) -> None:
        name_buffer.append(data[start:end])

    def on_field_data(data: str, start: int, end: int) -> None:
        value_buffer.append(data[start:end])

    def on_field_end() -> None:
        # Only fields that had an equals sign reach the data state.
        value = "".join(value_buffer) if parser.state == QuerystringState.FIELD_DATA else None
        fields.append(("".join(name_buffer), value))

    parser = QuerystringParser(
        callbacks={
            "on_field_start": on_field_start,
            "on_field_name": on_field_name,
            "on_field_data": on_field_data,
            "on_field_end": on_field_end,
        },
        max_fields=max_fields,
    )
    parser.write(data)
    parser.finalize()
    return fields


def decode_component(value: str) -> str:
    """Decode ``+`` and percent-escapes; malformed escapes are kept as-is."""
    return unquote_plus(value, encoding="utf-8", errors="replace")


def decode_component_strict(value: str) -> str:
    """
    Decode ``+`` and percent-escapes, but only if the whole component is
    well formed UTF-8.  Otherwise it is returned with just ``+`` replaced.
    """
    replaced = value.replace("+", " ")
    if "%" not in replaced:
        return replaced
    if BAD_ESCAPE_RE.search(replaced):
        return replaced
    try:
        return unquote_to_bytes(replaced).decode("utf-8")
    except UnicodeDecodeError:
        return replaced


def parameter_count(body: str, limit: float) -> int | None:
    """
    Count the number of parameters, stopping once limit reached.  Returns
    None if the limit was reached.
    """
    count = 0
    index = body.find(AMPERSAND)
    while index != -1:
        count += 1
        if count == limit:
            return None
        index = body.find(AMPERSAND, index + 1)
    return count


def _combine(existing: Any, value: Any) -> Any:
    if isinstance(existing, list):
        existing.append(value)
        return existing
    return [existing, value]


def parse_simple(body: str, parameter_limit: float = DEFAULT_PARAMETER_LIMIT) -> QueryDict:
    """
    Decode a querystring into a flat dict.  Keys are used verbatim after
    decoding, so ``a[b]=c`` yields the key ``"a[b]"``.  A repeated key
    collects its values into a list, in order.
    """
    result: QueryDict = {}
    for raw_name, raw_value in split_fields(body, max_fields=parameter_limit):
        name = decode_component(raw_name)
        value = "" if raw_value is None else decode_component(raw_value)
        if name in result:
            result[name] = _combine(result[name], value)
        else:
            result[name] = value
    return result


class _Array(dict):  # type: ignore[type-arg]
    """
    A possibly sparse list under construction, keyed by index.  Holes are
    dropped when the final structure is compacted.
    """

    def push(self, value: Any) -> None:
        self[max(self) + 1 if self else 0] = value

    def items_in_order(self) -> list[tuple[int, Any]]:
        return sorted(self.items())

    def to_dict(self) -> QueryDict:
        return {str(index): value for index, value in self.items_in_order()}


def _is_container(value: Any) -> bool:
    return isinstance(value, dict)


def _split_keys(key: str, depth: float) -> list[str]:
    """Break ``a[b][c]`` into ``["a", "[b]", "[c]"]``."""
    first = BRACKETS_RE.search(key)
    parent = key[: first.start()] if first else key

    keys = [parent] if parent else []
    for i, segment in enumerate(BRACKETS_RE.finditer(key)):
        if i >= depth:
            # Whatever remains past the depth limit is kept as one key.
            keys.append("[" + key[segment.start() :] + "]")
            break
        keys.append(segment.group(0))
    return keys


def _array_index(root: str, array_limit: int) -> int | None:
    """The list index a bracketed key segment stands for, if any."""
    if not (root.startswith("[") and root.endswith("]")):
        return None
    clean_root = root[1:-1]
    if not (clean_root.isascii() and clean_root.isdigit()):
        return None
    if len(clean_root) > len(str(array_limit)):
        return None
    index = int(clean_root)
    if str(index) != clean_root or index > array_limit:
        return None
    return index


def _build_chain(chain: list[str], value: Any, array_limit: int) -> Any:
    """Build the nested structure for one key chain, innermost first."""
    leaf = value
    for root in reversed(chain):
        if root == "[]":
            if isinstance(leaf, _Array):
                obj: Any = _Array(leaf)
            else:
                obj = _Array({0: leaf})
        else:
            index = _array_index(root, array_limit)
            if index is not None:
                obj = _Array({index: leaf})
            else:
                clean_root = root[1:-1] if root.startswith("[") and root.endswith("]") else root
                obj = {clean_root: leaf}
        leaf = obj
    return leaf


def _merge(target: Any, source: Any) -> Any:
    """Merge ``source`` into ``target`` the way the extended syntax expects."""
    # an empty value never replaces what is already there
    if source is None or source == "":
        return target

    if not _is_container(source):
        if isinstance(target, _Array):
            target.push(source)
        elif _is_container(target):
            target[source] = True
        else:
            return _Array({0: target, 1: source})
        return target

    if not _is_container(target):
        merged = _Array({0: target})
        if isinstance(source, _Array):
            for _, item in source.items_in_order():
                merged.push(item)
        else:
            merged.push(source)
        return merged

    if isinstance(target, _Array) and isinstance(source, _Array):
        for index, item in source.items_in_order():
            if index in target:
                existing = target[index]
                if _is_container(existing) and _is_container(item):
                    target[index] = _merge(existing, item)
                else:
                    target.push(item)
            else:
                target[index] = item
        return target

    merge_target = target.to_dict() if isinstance(target, _Array) else target
    for key, value in (source.to_dict() if isinstance(source, _Array) else source).items():
        if key in merge_target:
            merge_target[key] = _merge(merge_target[key], value)
        else:
            merge_target[key] = value
    return merge_target


def _compact(value: Any) -> Any:
    """Turn every ``_Array`` into a real list, dropping holes."""
    if isinstance(value, _Array):
        return [_compact(item) for _, item in value.items_in_order()]
    if isinstance(value, dict):
        for key, item in value.items():
            value[key] = _compact(item)
    return value


def parse_extended(
    body: str,
    parameter_limit: float = DEFAULT_PARAMETER_LIMIT,
    array_limit: int = MIN_ARRAY_LIMIT,
    depth: float = float("inf"),
) -> QueryDict:
    """
    Decode a querystring with bracket syntax into nested dicts and lists.

        >>> parse_extended("user[name][first]=Tobi&tags[]=a&tags[]=b")
        {'user': {'name': {'first': 'Tobi'}}, 'tags': ['a', 'b']}

    Numeric indices up to ``array_limit`` build lists (``a[0]=x``); larger
    ones become string keys.  Brackets nest up to ``depth`` levels.
    """
    values: QueryDict = {}
    for raw_name, raw_value in split_fields(body, max_fields=parameter_limit):
        # "a[b=c]=d" splits at the "]=" rather than the first "=".
        if raw_value is not None:
            raw = raw_name + EQUALS + raw_value
            bracket_equals = raw.find("]=")
            if bracket_equals != -1:
                raw_name, raw_value = raw[: bracket_equals + 1], raw[bracket_equals + 2 :]

        name = decode_component_strict(raw_name)
        value = "" if raw_value is None else decode_component_strict(raw_value)
        if name in values:
            existing = values[name]
            if not isinstance(existing, _Array):
                existing = _Array({0: existing})
            existing.push(value)
            values[name] = existing
        else:
            values[name] = value

    result: QueryDict = {}
    for name, value in values.items():
        if not name:
            continue
        chain = _split_keys(name, depth)
        if not chain:
            continue
        result = _merge(result, _build_chain(chain, value, array_limit))

    return _compact(result)


_DECODERS: dict[QuerystringSyntax, Callable[..., QueryDict]] = {
    QuerystringSyntax.SIMPLE: parse_simple,
    QuerystringSyntax.EXTENDED: parse_extended,
}


def get_decoder(syntax: QuerystringSyntax) -> Callable[..., QueryDict]:
    """Look up the decoder function for a querystring syntax."""
    return _DECODERS[syntax]
