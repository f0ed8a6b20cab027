"""
Continuity Engine - Observation Value Equality
Type-aware deep equality used for observation deduplication
"""

from typing import Any

from continuity_engine.schemas import (
    CategoricalValue, NumericValue, StructuredValue, TextValue
)


def _structured_equal(a: Any, b: Any) -> bool:
    """
    Deep equality over JSON-like data

    Unlike plain ``==`` this keeps booleans and numbers apart (True != 1)
    and compares list order, dict keys and nested values recursively.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return float(a) == float(b)
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(_structured_equal(a[key], b[key]) for key in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(_structured_equal(x, y) for x, y in zip(a, b))
    if type(a) is not type(b):
        return False
    return a == b


def values_equal(a, b) -> bool:
    """
    Compare two observation values for deduplication

    Values of different kinds are never equal. Numeric values compare by
    number and unit; text by exact string; categorical by code only (the
    display label is presentation); structured by deep equality.
    """
    if a.kind != b.kind:
        return False
    if isinstance(a, NumericValue):
        return a.value == b.value and a.unit == b.unit
    if isinstance(a, TextValue):
        return a.value == b.value
    if isinstance(a, CategoricalValue):
        return a.code == b.code
    if isinstance(a, StructuredValue):
        return _structured_equal(a.value, b.value)
    raise TypeError(f"Unsupported observation value: {type(a).__name__}")
