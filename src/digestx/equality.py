"""Equality policy — decides whether a watched value changed.

Reference mode compares by identity, with scalars compared by value (two
equal ints are rarely the same object). Value mode walks composites
recursively and keeps a deep copy of what it saw, so in-place mutation of
the original is still noticed on the next pass.
"""

from __future__ import annotations

import copy
import dataclasses
import datetime
import decimal
import enum
import fractions
import math
from collections.abc import Mapping, Set
from typing import Any

_SCALARS = (
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    type(None),
    decimal.Decimal,
    fractions.Fraction,
    enum.Enum,
    datetime.date,
    datetime.time,
    datetime.timedelta,
)


def _both_nan(a: Any, b: Any) -> bool:
    return isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b)


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality, recursing into containers and plain objects."""
    if a is b or _both_nan(a, b):
        return True
    if type(a) is not type(b):
        return False
    if isinstance(a, _SCALARS):
        return a == b
    if isinstance(a, Mapping):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[key], b[key]) for key in a)
    if isinstance(a, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, Set):
        return a == b
    if dataclasses.is_dataclass(a):
        return all(
            deep_equal(getattr(a, f.name), getattr(b, f.name))
            for f in dataclasses.fields(a)
        )
    if hasattr(a, "__dict__") and type(a).__eq__ is object.__eq__:
        return deep_equal(vars(a), vars(b))
    return a == b


def are_equal(current: Any, previous: Any, value_eq: bool) -> bool:
    """Compare a freshly evaluated value against the retained one."""
    if value_eq:
        return deep_equal(current, previous)
    if current is previous or _both_nan(current, previous):
        return True
    return (
        type(current) is type(previous)
        and isinstance(current, _SCALARS)
        and current == previous
    )


def snapshot(value: Any, value_eq: bool) -> Any:
    """The value to retain as a watcher's previous value."""
    return copy.deepcopy(value) if value_eq else value
