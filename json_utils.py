"""
JSON utilities backed by orjson for the Anchor Edit Engine
==========================================================

Thin wrappers that keep the standard ``json`` call shape (``dumps`` returns
``str``) while using orjson for encoding annotation store payloads and
decoding anchor hints.
"""

import orjson
from typing import Any, Optional


def dumps(obj: Any, indent: Optional[int] = None, default: callable = None) -> str:
    """
    Serialize obj to a JSON string.

    Args:
        obj: Object to serialize
        indent: Any non-None value pretty prints with two-space indentation
        default: Callable for objects orjson cannot serialize (e.g. default=str)

    Returns:
        JSON string (orjson produces bytes, decoded here as UTF-8)
    """
    option = orjson.OPT_SERIALIZE_UUID | orjson.OPT_NON_STR_KEYS

    if indent is not None:
        option |= orjson.OPT_INDENT_2

    return orjson.dumps(obj, default=default, option=option).decode("utf-8")


def loads(s: Any) -> Any:
    """
    Deserialize a JSON document (str, bytes or bytearray).

    Raises:
        JSONDecodeError: If the input is not valid JSON
    """
    return orjson.loads(s)


def try_loads(s: Any) -> Optional[Any]:
    """Deserialize ``s`` or return None when it is empty or not valid JSON."""
    if not s:
        return None
    try:
        return orjson.loads(s)
    except (orjson.JSONDecodeError, TypeError):
        return None


# Provide compatibility constants
JSONDecodeError = orjson.JSONDecodeError
