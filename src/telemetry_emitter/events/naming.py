"""Wire naming and encoding helpers."""

import base64
import re
from collections.abc import Mapping
from typing import Any

_UPPERCASE = re.compile(r"([A-Z])")


def to_snake_case(name: str) -> str:
    """
    Turn a camelCase (or CamelCase) name into snake_case.

    Every uppercase letter becomes "_" plus its lowercase form, then one
    leading underscore is stripped: "TestStringName" -> "test_string_name".
    """
    converted = _UPPERCASE.sub(lambda match: "_" + match.group(1).lower(), name)
    return re.sub(r"^_", "", converted)


def sanitize_property_names(data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Snake-case every key of a nested mapping.

    Only non-empty mappings are descended into; lists and other values are
    copied as they are.
    """
    sanitized = {}
    for key, value in data.items():
        if isinstance(value, Mapping) and value:
            value = sanitize_property_names(value)
        sanitized[to_snake_case(key)] = value
    return sanitized


def base64_encode(text: str) -> str:
    """Standard padded base64 of the UTF-8 bytes of text."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")
