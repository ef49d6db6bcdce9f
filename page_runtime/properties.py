"""Typed property extraction for mount points.

Templates can only emit strings, so a mount point declares the type of an
attribute with a sibling ``<name>Datatype`` attribute::

    <div id="cart" data-module="cart"
         data-max-items="5" data-max-itemsDatatype="Number"
         data-editable="true" data-editableDatatype="Boolean">

yields ``{"maxItems": 5, "editable": True}``.
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from .const import DATA_ATTR_PREFIX, DATATYPE_SUFFIX
from .errors import TypeCoercionError

_LOGGER = logging.getLogger(__name__)

_INT_RE = re.compile(r"^[+-]?\d+$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


class Datatype(StrEnum):
    STRING = "String"
    NUMBER = "Number"
    BOOLEAN = "Boolean"


def _to_string(key: str, value: str) -> str:
    return value


def _to_number(key: str, value: str) -> int | float:
    text = value.strip()
    if _INT_RE.match(text):
        return int(text)
    # float() also takes "1_000", "nan" and "infinity"; only plain decimals pass.
    if not _NUMBER_RE.match(text):
        raise TypeCoercionError(key, value, Datatype.NUMBER.value)
    number = float(text)
    if not math.isfinite(number):
        raise TypeCoercionError(key, value, Datatype.NUMBER.value)
    return number


def _to_boolean(key: str, value: str) -> bool:
    return value == "true"


_COERCERS: dict[Datatype, Callable[[str, str], Any]] = {
    Datatype.STRING: _to_string,
    Datatype.NUMBER: _to_number,
    Datatype.BOOLEAN: _to_boolean,
}


def normalize_attribute_name(name: str) -> str:
    """Map ``data-item-id`` to ``itemId`` the way ``element.dataset`` does.

    Names without the ``data-`` prefix are returned unchanged.
    """
    if not name.startswith(DATA_ATTR_PREFIX):
        return name
    name = name[len(DATA_ATTR_PREFIX):]
    return re.sub(r"-([a-z])", lambda m: m.group(1).upper(), name)


def extract_properties(raw: Mapping[str, str], *, strict: bool = False) -> dict[str, Any]:
    """Convert raw mount point attributes into a typed property map.

    A ``Number`` that does not parse fails the whole extraction. An
    unrecognized type tag is treated as ``String`` unless ``strict`` is set,
    in which case it raises ``TypeCoercionError``.
    """
    attrs = {normalize_attribute_name(k): str(v) for k, v in raw.items()}

    # HTML parsers lowercase attribute names, so data-nDatatype arrives as
    # "ndatatype"; siblings are matched case-insensitively.
    by_lower = {key.lower(): key for key in attrs}
    siblings: dict[str, str] = {}
    for key in attrs:
        sibling = by_lower.get(key.lower() + DATATYPE_SUFFIX.lower())
        if sibling is not None and sibling != key:
            siblings[key] = sibling
    datatype_keys = set(siblings.values())

    props: dict[str, Any] = {}
    for key, value in attrs.items():
        if key in datatype_keys:
            continue

        sibling = siblings.get(key)
        if sibling is None:
            props[key] = value
            continue
        tag = attrs[sibling]

        try:
            datatype = Datatype(tag)
        except ValueError:
            if strict:
                raise TypeCoercionError(key, value, tag) from None
            _LOGGER.debug("Unknown datatype %r for %s, keeping string", tag, key)
            datatype = Datatype.STRING

        props[key] = _COERCERS[datatype](key, value)

    return props
