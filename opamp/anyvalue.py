"""Attribute values and their structural comparison."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass
class ArrayValue:
    """An ordered list of values."""

    values: list[AnyValue | None] = field(default_factory=list)


@dataclass
class KeyValueList:
    """An ordered list of key-value pairs."""

    values: list[KeyValue | None] = field(default_factory=list)


Scalar = Union[str, int, bool, float, bytes]


@dataclass
class AnyValue:
    """A value holding one of: str, int, bool, float, bytes, ArrayValue, KeyValueList."""

    value: Scalar | ArrayValue | KeyValueList | None = None


@dataclass
class KeyValue:
    """A named value."""

    key: str = ""
    value: AnyValue | None = None


def _is_equal_array(a1: ArrayValue, a2: ArrayValue) -> bool:
    if len(a1.values) != len(a2.values):
        return False
    return all(is_equal_any_value(e1, e2) for e1, e2 in zip(a1.values, a2.values))


def _is_equal_kvlist(l1: KeyValueList, l2: KeyValueList) -> bool:
    if len(l1.values) != len(l2.values):
        return False
    return all(is_equal_key_value(e1, e2) for e1, e2 in zip(l1.values, l2.values))


def is_equal_any_value(v1: AnyValue | None, v2: AnyValue | None) -> bool:
    """Compare two values by kind and content."""
    if v1 is v2:
        return True
    if v1 is None or v2 is None:
        return False
    a, b = v1.value, v2.value
    if a is b:
        return True
    if a is None or b is None:
        return False
    if type(a) is not type(b):
        return False
    if isinstance(a, ArrayValue):
        return _is_equal_array(a, b)
    if isinstance(a, KeyValueList):
        return _is_equal_kvlist(a, b)
    return a == b


def is_equal_key_value(kv1: KeyValue | None, kv2: KeyValue | None) -> bool:
    """Compare two key-value pairs by key and value."""
    if kv1 is kv2:
        return True
    if kv1 is None or kv2 is None:
        return False
    return kv1.key == kv2.key and is_equal_any_value(kv1.value, kv2.value)