"""
Result Normalization
====================
Canonicalizes query results and stored expected outputs into one comparable
shape, so the comparator never needs to know where a result came from.

Values
- None collapses to a single null marker
- Numeric-looking text becomes a number
- Non-integers are rounded to 6 fractional digits, ROUND_HALF_UP on the
  decimal text of the value (1.0000005 -> 1.000001, 1.00000049 -> 1.0)
- Integral numbers, including 2.0 and Decimal('2.000'), become int; beyond
  10**19 they become float (inf once out of float range)
- Other text is trimmed; booleans and structured values pass through

Rows
- Keys lower-cased and re-inserted in sorted order
- Row lists sorted by their canonical JSON form
"""
import json
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, Context, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Mapping, Tuple

from .exceptions import UnsupportedExpectedOutput
from .schemas import ExpectedOutput, ExpectedOutputKind

FLOAT_PRECISION = 6
# Integral values at or beyond 10**19 are compared as floats; exact
# expansion of something like 1e5000 is unbounded work
MAX_EXACT_DIGITS = 19

_QUANTUM = Decimal(1).scaleb(-FLOAT_PRECISION)
_ROUNDING_CONTEXT = Context(prec=100, rounding=ROUND_HALF_UP)
_NUMERIC_TEXT = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')


class ValueKind(Enum):
    NULL = "null"
    NUMBER = "number"
    BOOLEAN = "boolean"
    TEXT = "text"
    STRUCTURED = "structured"


def classify_value(value: Any) -> ValueKind:
    if value is None:
        return ValueKind.NULL
    # bool is an int subclass, so it has to be checked first
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.TEXT
    return ValueKind.STRUCTURED


def normalize_number(value: Any) -> Any:
    if isinstance(value, int):
        if abs(value) < 10 ** MAX_EXACT_DIGITS:
            return value
        try:
            return float(value)
        except OverflowError:
            return math.copysign(math.inf, value)

    number = value if isinstance(value, Decimal) else Decimal(repr(value))
    if not number.is_finite() or number.adjusted() >= MAX_EXACT_DIGITS:
        # float() of an out-of-range Decimal is +-inf, never an error
        return float(number)

    try:
        if number == number.to_integral_value():
            return int(number)
        rounded = number.quantize(_QUANTUM, context=_ROUNDING_CONTEXT)
    except InvalidOperation:
        return float(number)

    if rounded == rounded.to_integral_value():
        return int(rounded)
    return float(rounded)


def normalize_value(value: Any) -> Any:
    kind = classify_value(value)

    if kind is ValueKind.NULL:
        return None
    if kind is ValueKind.NUMBER:
        return normalize_number(value)
    if kind is ValueKind.TEXT:
        trimmed = value.strip()
        if _NUMERIC_TEXT.match(trimmed):
            return normalize_number(Decimal(trimmed))
        return trimmed
    if kind is ValueKind.BOOLEAN:
        return value
    if kind is ValueKind.STRUCTURED:
        return value
    raise ValueError(f"Unhandled value kind: {kind}")


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Lower-case keys, sort them and normalize every value"""
    normalized: Dict[str, Any] = {}
    for key in sorted(row, key=lambda k: str(k).lower()):
        lowered = str(key).lower()
        # First spelling wins when two keys differ only by case
        if lowered not in normalized:
            normalized[lowered] = normalize_value(row[key])
    return normalized


def _json_safe(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if classify_value(value) is ValueKind.NUMBER:
        return normalize_number(value)
    return value


def canonical_form(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        # Mixed-type keys or oversized ints inside structured values
        return json.dumps(_json_safe(value), sort_keys=True, default=str, ensure_ascii=False)


def column_sort_key(value: Any) -> Tuple[int, Any]:
    """Nulls first, then numbers numerically, then everything else as text"""
    kind = classify_value(value)
    if kind is ValueKind.NULL:
        return (0, 0)
    if kind is ValueKind.NUMBER:
        return (1, value)
    if kind is ValueKind.TEXT:
        return (2, value)
    return (2, canonical_form(value))


@dataclass
class NormalizedResult:
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0

    def column_values(self) -> List[Any]:
        """Values of a single-column result, in row order"""
        if len(self.columns) != 1:
            return []
        column = self.columns[0]
        return [row.get(column) for row in self.rows]


class ResultNormalizer:
    """Builds NormalizedResult values from raw results and expected outputs"""

    def normalize_result(self, raw: Any) -> NormalizedResult:
        """Normalize anything with a `rows` list: QueryResult or NormalizedResult"""
        return self._normalize_row_set(raw.rows)

    def normalize_expected(self, expected: ExpectedOutput) -> NormalizedResult:
        kind, value = expected.kind, expected.value

        if kind == ExpectedOutputKind.TABLE.value:
            rows = value if isinstance(value, list) else []
            if any(not isinstance(row, Mapping) for row in rows):
                raise UnsupportedExpectedOutput("Expected table rows must be objects")
            return self._normalize_row_set(rows)

        if kind == ExpectedOutputKind.SINGLE_VALUE.value:
            return NormalizedResult(columns=["value"], rows=[{"value": normalize_value(value)}], row_count=1)

        if kind == ExpectedOutputKind.COLUMN.value:
            values = value if isinstance(value, list) else []
            normalized = sorted((normalize_value(v) for v in values), key=column_sort_key)
            return NormalizedResult(
                columns=["value"],
                rows=[{"value": v} for v in normalized],
                row_count=len(normalized)
            )

        if kind == ExpectedOutputKind.ROW.value:
            row = normalize_row(value if isinstance(value, Mapping) else {})
            return NormalizedResult(columns=sorted(row), rows=[row], row_count=1)

        if kind == ExpectedOutputKind.COUNT.value:
            return NormalizedResult(columns=["count"], rows=[{"count": normalize_value(value)}], row_count=1)

        raise UnsupportedExpectedOutput(f"Unsupported comparison type: {kind}")

    def _normalize_row_set(self, rows: List[Mapping[str, Any]]) -> NormalizedResult:
        normalized_rows = sorted((normalize_row(row) for row in rows), key=canonical_form)
        columns = sorted({key for row in normalized_rows for key in row})
        return NormalizedResult(columns=columns, rows=normalized_rows, row_count=len(normalized_rows))


# Global normalizer instance
result_normalizer = ResultNormalizer()
