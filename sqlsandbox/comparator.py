"""
Result comparison for grading.

Both sides arrive as NormalizedResult values; each expected-output kind has its
own check, and the first violation found becomes the mismatch reason.
"""
from dataclasses import dataclass
from typing import Any, Optional

from .normalizer import NormalizedResult, ValueKind, classify_value, column_sort_key
from .schemas import ExpectedOutputKind


@dataclass(frozen=True)
class ComparisonResult:
    passed: bool
    reason: Optional[str] = None


PASSED = ComparisonResult(passed=True)


def _fail(reason: str) -> ComparisonResult:
    return ComparisonResult(passed=False, reason=reason)


def values_equal(left: Any, right: Any) -> bool:
    """Deep equality where a boolean never equals a number"""
    left_kind, right_kind = classify_value(left), classify_value(right)
    if left_kind is not right_kind:
        return False
    if left_kind is not ValueKind.STRUCTURED:
        return left == right

    if isinstance(left, dict) and isinstance(right, dict):
        if sorted(map(str, left)) != sorted(map(str, right)):
            return False
        return all(values_equal(left[key], right[key]) for key in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    return type(left) is type(right) and left == right


def _single_value(result: NormalizedResult, preferred_column: str) -> Any:
    """The lone value of a one-row result, whatever its column is called"""
    if not result.rows:
        return None
    row = result.rows[0]
    if preferred_column in row:
        return row[preferred_column]
    if len(row) == 1:
        return next(iter(row.values()))
    return None


class ResultComparator:
    """Decides pass/fail for one expected-output kind"""

    def compare(self, actual: NormalizedResult, expected: NormalizedResult, kind: str) -> ComparisonResult:
        if kind == ExpectedOutputKind.TABLE.value:
            return self._compare_table(actual, expected)
        if kind == ExpectedOutputKind.SINGLE_VALUE.value:
            return self._compare_single_value(actual, expected)
        if kind == ExpectedOutputKind.COLUMN.value:
            return self._compare_column(actual, expected)
        if kind == ExpectedOutputKind.ROW.value:
            return self._compare_row(actual, expected)
        if kind == ExpectedOutputKind.COUNT.value:
            return self._compare_count(actual, expected)
        return _fail(f"Unsupported comparison type: {kind}")

    def _compare_columns(self, actual: NormalizedResult, expected: NormalizedResult) -> Optional[ComparisonResult]:
        expected_columns = sorted(expected.columns)
        actual_columns = sorted(actual.columns)
        if len(actual_columns) != len(expected_columns):
            return _fail(f"Expected {len(expected_columns)} columns but got {len(actual_columns)}")
        for expected_column, actual_column in zip(expected_columns, actual_columns):
            if expected_column != actual_column:
                return _fail(f"Column mismatch: expected column '{expected_column}' but got '{actual_column}'")
        return None

    def _compare_table(self, actual: NormalizedResult, expected: NormalizedResult) -> ComparisonResult:
        if actual.row_count != expected.row_count:
            return _fail(f"Expected {expected.row_count} rows but got {actual.row_count}")

        mismatch = self._compare_columns(actual, expected)
        if mismatch:
            return mismatch

        for position, (actual_row, expected_row) in enumerate(zip(actual.rows, expected.rows), start=1):
            if not values_equal(actual_row, expected_row):
                return _fail(f"Row {position} values do not match expected output")
        return PASSED

    def _compare_single_value(self, actual: NormalizedResult, expected: NormalizedResult) -> ComparisonResult:
        if actual.row_count != 1:
            return _fail(f"Expected exactly 1 row but got {actual.row_count}")
        if len(actual.columns) != 1:
            return _fail(f"Expected exactly 1 column but got {len(actual.columns)}")

        actual_value = _single_value(actual, "value")
        expected_value = _single_value(expected, "value")
        if not values_equal(actual_value, expected_value):
            return _fail(f"Value '{actual_value}' does not match expected '{expected_value}'")
        return PASSED

    def _compare_column(self, actual: NormalizedResult, expected: NormalizedResult) -> ComparisonResult:
        if len(actual.columns) != 1:
            return _fail(f"Expected exactly 1 column but got {len(actual.columns)}")
        if actual.row_count != expected.row_count:
            return _fail(f"Expected {expected.row_count} values but got {actual.row_count}")

        actual_values = sorted(actual.column_values(), key=column_sort_key)
        expected_values = sorted(expected.column_values(), key=column_sort_key)
        for position, (actual_value, expected_value) in enumerate(zip(actual_values, expected_values), start=1):
            if not values_equal(actual_value, expected_value):
                return _fail(
                    f"Value at position {position} '{actual_value}' does not match expected '{expected_value}'"
                )
        return PASSED

    def _compare_row(self, actual: NormalizedResult, expected: NormalizedResult) -> ComparisonResult:
        if actual.row_count != 1:
            return _fail(f"Expected exactly 1 row but got {actual.row_count}")

        mismatch = self._compare_columns(actual, expected)
        if mismatch:
            return mismatch

        if not values_equal(actual.rows[0], expected.rows[0] if expected.rows else {}):
            return _fail("Row values do not match expected output")
        return PASSED

    def _compare_count(self, actual: NormalizedResult, expected: NormalizedResult) -> ComparisonResult:
        if actual.row_count != 1:
            return _fail(f"Expected exactly 1 row but got {actual.row_count}")
        actual_count = _single_value(actual, "count")
        expected_count = _single_value(expected, "count")
        if not values_equal(actual_count, expected_count):
            return _fail(f"Expected count {expected_count} but got {actual_count}")
        return PASSED


# Global comparator instance
result_comparator = ResultComparator()
