"""Small helpers for strings, sequences, mappings and environment variables."""

from __future__ import annotations

import os
import re
from collections.abc import Hashable, Iterable, Mapping
from typing import Any, TypeVar

K = TypeVar("K")
V = TypeVar("V")

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def capitalize_string(s: str) -> str:
    """Return ``s`` with its first character upper-cased and the rest untouched."""
    if not s:
        return ""
    first = s[0].upper()
    if len(first) != 1:
        # Keep a one-to-one character mapping (e.g. no 'ß' -> 'SS').
        first = s[0]
    return first + s[1:]


def subtract_slice(sl1: Iterable[str], sl2: Iterable[str]) -> list[str]:
    """Return the items of ``sl1`` that are not in ``sl2``, keeping their order."""
    removed = set(sl2)
    return [item for item in sl1 if item not in removed]


def slice_contains(s: Iterable[Any], val: Any) -> bool:
    """Tell whether ``val`` is one of the items of ``s``."""
    return any(item == val for item in s)


def copy_map(m: Mapping[K, V]) -> dict[K, V]:
    """Return a shallow copy of ``m`` as a new dict."""
    return dict(m)


def _parse_int(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    return False


def env_var(key: str, default: Any) -> Any:
    """Read environment variable ``key`` converted to the type of ``default``.

    An unset variable yields ``default``. A set variable that does not parse
    as the wanted type yields that type's zero value (``0`` or ``False``).
    Supported types are ``str``, ``int`` and ``bool``.
    """
    if not isinstance(default, (str, int)) or isinstance(default, Hashable) is False:
        raise TypeError(f"unsupported type for environment variable: {type(default).__name__}")
    value = os.environ.get(key)
    if value is None:
        return default
    if isinstance(default, bool):
        return _parse_bool(value)
    if isinstance(default, int):
        return _parse_int(value)
    return value