"""
Unit tests for result normalization
"""

import math
import unittest
from decimal import Decimal

from sqlsandbox.exceptions import UnsupportedExpectedOutput
from sqlsandbox.normalizer import (NormalizedResult, ResultNormalizer, ValueKind,
                                   canonical_form, classify_value, normalize_row, normalize_value)
from sqlsandbox.schemas import ExpectedOutput
from sqlsandbox.secure_execution import QueryResult


def expected(kind, value):
    return ExpectedOutput.model_validate({"type": kind, "value": value})


class TestValueNormalization(unittest.TestCase):

    def test_classify_value(self):
        self.assertEqual(classify_value(None), ValueKind.NULL)
        self.assertEqual(classify_value(True), ValueKind.BOOLEAN)
        self.assertEqual(classify_value(0), ValueKind.NUMBER)
        self.assertEqual(classify_value(Decimal("1.5")), ValueKind.NUMBER)
        self.assertEqual(classify_value("x"), ValueKind.TEXT)
        self.assertEqual(classify_value({"a": 1}), ValueKind.STRUCTURED)
        self.assertEqual(classify_value([1, 2]), ValueKind.STRUCTURED)

    def test_rounds_half_up_at_sixth_digit(self):
        self.assertEqual(normalize_value(1.0000005), 1.000001)
        self.assertEqual(normalize_value(1.00000049), 1)
        self.assertEqual(normalize_value(-1.0000005), -1.000001)
        self.assertEqual(normalize_value("2.1234565"), 2.123457)
        self.assertEqual(normalize_value("2.12345649"), 2.123456)

    def test_absorbs_float_noise(self):
        self.assertEqual(normalize_value(0.1 + 0.2), 0.3)

    def test_integral_values_become_int(self):
        for value in (2, 2.0, Decimal("2.000"), "2", " 002 ", "2.0", "2e0"):
            normalized = normalize_value(value)
            self.assertEqual(normalized, 2, value)
            self.assertIsInstance(normalized, int, value)

    def test_numeric_text_is_parsed(self):
        self.assertEqual(normalize_value("3.14"), 3.14)
        self.assertEqual(normalize_value("-.5"), -0.5)
        self.assertEqual(normalize_value("1e3"), 1000)
        self.assertEqual(normalize_value(Decimal("19.99")), 19.99)

    def test_other_text_is_trimmed(self):
        self.assertEqual(normalize_value("  Ann \n"), "Ann")
        self.assertEqual(normalize_value("12abc"), "12abc")
        self.assertEqual(normalize_value("1.2.3"), "1.2.3")

    def test_booleans_stay_booleans(self):
        self.assertIs(normalize_value(True), True)
        self.assertIs(normalize_value(False), False)

    def test_null_and_structured_pass_through(self):
        self.assertIsNone(normalize_value(None))
        self.assertEqual(normalize_value({"a": 1}), {"a": 1})

    def test_idempotent(self):
        samples = [None, True, 7, 2.0, 1.0000005, 1.00000049, 0.1 + 0.2, "  x ", " 12.50 ",
                   Decimal("3.1415926535"), "2e0", {"k": [1, 2]}, -0.0000004]
        for value in samples:
            once = normalize_value(value)
            self.assertEqual(normalize_value(once), once, value)

    def test_huge_magnitudes_become_infinite_floats(self):
        for value in ("1e5000", " 1E9999999 ", Decimal("1e5000"), 10 ** 5000):
            normalized = normalize_value(value)
            self.assertIsInstance(normalized, float)
            self.assertTrue(math.isinf(normalized) and normalized > 0, value)
            self.assertEqual(normalize_value(normalized), normalized)

        self.assertEqual(normalize_value("-1e5000"), -math.inf)
        self.assertEqual(normalize_value(10 ** 25), 1e25)
        self.assertEqual(normalize_value(10 ** 18), 10 ** 18)

    def test_canonical_form_of_awkward_structures(self):
        self.assertIsInstance(canonical_form({"v": {"n": 10 ** 5000}}), str)
        self.assertIsInstance(canonical_form({1: "a", "b": 2}), str)

    def test_row_keys_lowercased_and_sorted(self):
        row = normalize_row({"Name": " Ann ", "ID": "1", "age": None})
        self.assertEqual(row, {"age": None, "id": 1, "name": "Ann"})
        self.assertEqual(list(row), ["age", "id", "name"])


class TestResultNormalizer(unittest.TestCase):

    def setUp(self):
        self.normalizer = ResultNormalizer()

    def test_row_order_does_not_matter(self):
        rows = [{"id": 2, "name": "Bo"}, {"id": 1, "name": "Ann"}, {"id": 3, "name": None}]
        forward = self.normalizer.normalize_result(QueryResult(columns=["id", "name"], rows=rows))
        backward = self.normalizer.normalize_result(QueryResult(columns=["id", "name"], rows=rows[::-1]))

        self.assertEqual(forward, backward)
        self.assertEqual(forward.columns, ["id", "name"])
        self.assertEqual(forward.row_count, 3)

    def test_result_normalization_is_idempotent(self):
        raw = QueryResult(columns=["Total"], rows=[{"Total": "10.50"}, {"Total": 3}])
        once = self.normalizer.normalize_result(raw)
        self.assertEqual(self.normalizer.normalize_result(once), once)

    def test_columns_are_union_of_row_keys(self):
        result = self.normalizer.normalize_result(QueryResult(columns=["B", "a"], rows=[{"B": 1, "a": 2}]))
        self.assertEqual(result.columns, ["a", "b"])

        empty = self.normalizer.normalize_result(QueryResult(columns=["id"], rows=[]))
        self.assertEqual(empty, NormalizedResult())

    def test_expected_single_value(self):
        result = self.normalizer.normalize_expected(expected("single_value", " Ann "))
        self.assertEqual(result.rows, [{"value": "Ann"}])
        self.assertEqual(result.columns, ["value"])
        self.assertEqual(result.row_count, 1)

    def test_expected_column_sorted_with_nulls_first(self):
        result = self.normalizer.normalize_expected(expected("column", ["b", 10, None, "2", "a", 1.5]))
        self.assertEqual(result.column_values(), [None, 1.5, 2, 10, "a", "b"])
        self.assertEqual(result.row_count, 6)

    def test_expected_row(self):
        result = self.normalizer.normalize_expected(expected("row", {"Name": "Ann", "ID": 1}))
        self.assertEqual(result.rows, [{"id": 1, "name": "Ann"}])
        self.assertEqual(result.columns, ["id", "name"])

    def test_expected_count(self):
        result = self.normalizer.normalize_expected(expected("count", "1"))
        self.assertEqual(result.rows, [{"count": 1}])

    def test_expected_table_matches_result_shape(self):
        table = [{"ID": 2, "Name": "Bo"}, {"ID": 1, "Name": "Ann"}]
        from_expected = self.normalizer.normalize_expected(expected("table", table))
        from_result = self.normalizer.normalize_result(
            QueryResult(columns=["id", "name"], rows=[{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bo"}])
        )
        self.assertEqual(from_expected, from_result)

    def test_expected_table_rows_must_be_objects(self):
        with self.assertRaises(UnsupportedExpectedOutput):
            self.normalizer.normalize_expected(expected("table", [1, 2]))

    def test_unknown_kind_raises(self):
        with self.assertRaises(UnsupportedExpectedOutput) as ctx:
            self.normalizer.normalize_expected(expected("histogram", []))
        self.assertIn("histogram", ctx.exception.message)


if __name__ == '__main__':
    unittest.main()
