"""
Attribute coercion for nodes, edges and graphs.

Raw attributes arrive from the graph-description parser as strings. A fixed
table of typed attribute names decides how each one is converted, once, when
the attribute mapping is built. Everything not in the table stays a string.

The resulting Python values form the attribute value union:

    AttrKind.STRING   -> str
    AttrKind.INTEGER  -> int
    AttrKind.FLOAT    -> float
    AttrKind.BOOLEAN  -> bool
    AttrKind.DURATION -> int (milliseconds)
"""

import re
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

AttrValue = str | int | float | bool


class AttrKind(StrEnum):
    """Kinds an attribute value can be coerced to."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DURATION = "duration"


TYPED_ATTRIBUTES: dict[str, AttrKind] = {
    "timeout": AttrKind.DURATION,
    "poll_interval": AttrKind.DURATION,
    "max_retries": AttrKind.INTEGER,
    "weight": AttrKind.INTEGER,
    "max_parallel": AttrKind.INTEGER,
    "max_cycles": AttrKind.INTEGER,
    "default_max_retry": AttrKind.INTEGER,
    "goal_gate": AttrKind.BOOLEAN,
    "loop_restart": AttrKind.BOOLEAN,
    "allow_partial": AttrKind.BOOLEAN,
    "auto_status": AttrKind.BOOLEAN,
}

DURATION_UNITS_MS = {
    "ms": 1,
    "s": 1_000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d*\.\d+$")
_DURATION_RE = re.compile(r"^(-?\d+)(ms|s|m|h|d)$")


def kind_for(key: str) -> AttrKind:
    """Return the coercion kind for an attribute name."""
    # Namespaced keys such as manager.poll_interval share the typed suffix.
    return TYPED_ATTRIBUTES.get(key, TYPED_ATTRIBUTES.get(key.rsplit(".", 1)[-1], AttrKind.STRING))


def parse_duration_ms(raw: str) -> int | None:
    """Parse ``30s``/``250ms``/``2h``; a bare integer is already milliseconds."""
    text = raw.strip()
    match = _DURATION_RE.match(text)
    if match:
        return int(match.group(1)) * DURATION_UNITS_MS[match.group(2)]
    if _INT_RE.match(text):
        return int(text)
    return None


def _coerce_number(text: str) -> int | float | None:
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return None


def coerce_attribute(key: str, raw: Any) -> Any:
    """
    Coerce one raw attribute value according to ``TYPED_ATTRIBUTES``.

    Values that are already typed pass through. A string that does not parse
    as its declared kind is kept as-is rather than rejected; the typed
    accessors then fall back to their defaults.
    """
    if not isinstance(raw, str):
        return raw

    kind = kind_for(key)
    text = raw.strip()

    if kind is AttrKind.BOOLEAN:
        lowered = text.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        return raw
    if kind is AttrKind.INTEGER:
        number = _coerce_number(text)
        if isinstance(number, float):
            return int(number)
        return raw if number is None else number
    if kind is AttrKind.FLOAT:
        number = _coerce_number(text)
        return raw if number is None else float(number)
    if kind is AttrKind.DURATION:
        duration = parse_duration_ms(text)
        return raw if duration is None else duration
    return raw


def coerce_attributes(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    """Coerce a whole attribute mapping, preserving key order."""
    if not raw:
        return {}
    return {str(key): coerce_attribute(str(key), value) for key, value in raw.items()}


def as_int(value: Any, default: int = 0) -> int:
    """Read an attribute as int, tolerating uncoerced strings."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and _INT_RE.match(value.strip()):
        return int(value.strip())
    return default


def as_bool(value: Any, default: bool = False) -> bool:
    """Read an attribute as bool; only True or "true" count as true."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return default


def as_str(value: Any, default: str = "") -> str:
    """Read an attribute as string, mapping None to ``default``."""
    if value is None:
        return default
    return str(value)
