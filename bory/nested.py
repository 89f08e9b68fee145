from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any

# Get logger for this module.
logger = logging.getLogger(__name__)

KEY_SEPARATOR = "."


def split_key(key: str) -> list[str]:
    return key.split(KEY_SEPARATOR)


def to_object(segments: list[str], value: Any) -> dict[str, Any]:
    """
    Build a chain of single-key dicts from the right, ending in ``value``:

        >>> to_object(["a", "b", "c"], 1)
        {'a': {'b': {'c': 1}}}
    """
    obj: Any = value
    for segment in reversed(segments):
        obj = {segment: obj}
    return obj


def is_object(value: Any) -> bool:
    return isinstance(value, dict)


def merge(target: Any, incoming: Any) -> Any:
    """
    Merge ``incoming`` into ``target`` and return the result.

    A non-dict ``incoming`` value replaces ``target`` outright.  When both are
    dicts, each key is merged recursively; a non-dict value already sitting
    under a key is discarded in favour of an empty dict first.  The net
    effect is that whichever key was folded in last decides the shape.
    """
    if not is_object(incoming):
        return incoming

    for key, value in incoming.items():
        parent = target.get(key)
        if parent is not None and not is_object(parent):
            parent = {}
        if parent is None and is_object(value):
            # don't hand out the caller's nested dicts
            parent = {}
        target[key] = merge(parent, value) if parent is not None else value
    return target


def parse_nested(obj: Any) -> Any:
    """
    Expand dotted keys of a mapping into nested dicts.

    Keys are folded in their enumeration order, so with conflicting keys the
    later one wins.  Anything that isn't a mapping is returned unchanged.
    """
    if not isinstance(obj, Mapping):
        return obj

    result: dict[str, Any] = {}
    for key, value in obj.items():
        segments = split_key(key) if isinstance(key, str) else [key]
        result = merge(result, to_object(segments, value))

    logger.debug("expanded %d keys into %d", len(obj), len(result))
    return result
