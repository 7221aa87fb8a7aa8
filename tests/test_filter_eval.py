import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from filter_eval import (
    FilterDepthError,
    FilterSchemaError,
    UnknownOperatorError,
    eval_filter,
    validate_condition,
)


RECORD = {"status": "active", "amount": 120, "tags": ["vip"], "email": "ada@example.com", "region": None}


class TestFilterEval(unittest.TestCase):
    def test_leaf_operators(self) -> None:
        self.assertTrue(eval_filter({"field": "status", "operator": "eq", "value": "active"}, RECORD))
        self.assertTrue(eval_filter({"field": "amount", "operator": "gte", "value": 120}, RECORD))
        self.assertFalse(eval_filter({"field": "amount", "operator": "lt", "value": 100}, RECORD))
        self.assertTrue(eval_filter({"field": "tags", "operator": "contains", "value": "vip"}, RECORD))
        self.assertTrue(eval_filter({"field": "status", "operator": "in", "value": ["active", "trial"]}, RECORD))
        self.assertTrue(eval_filter({"field": "email", "operator": "ends_with", "value": "@example.com"}, RECORD))
        self.assertTrue(eval_filter({"field": "email", "operator": "matches", "value": r"^[a-z]+@"}, RECORD))

    def test_ordering_across_types_is_false(self) -> None:
        self.assertFalse(eval_filter({"field": "status", "operator": "gt", "value": 1}, RECORD))
        self.assertFalse(eval_filter({"field": "flag", "operator": "gt", "value": 0}, {"flag": True}))

    def test_exists_treats_none_as_absent(self) -> None:
        self.assertFalse(eval_filter({"field": "region", "operator": "exists"}, RECORD))
        self.assertTrue(eval_filter({"field": "region", "operator": "not_exists"}, RECORD))
        self.assertTrue(eval_filter({"field": "status", "operator": "exists"}, RECORD))

    def test_combinators(self) -> None:
        cond = {
            "all": [
                {"field": "status", "operator": "eq", "value": "active"},
                {"any": [
                    {"field": "amount", "operator": "gt", "value": 1000},
                    {"not": {"field": "tags", "operator": "contains", "value": "churned"}},
                ]},
            ]
        }
        self.assertTrue(eval_filter(cond, RECORD))

    def test_string_condition_rejected(self) -> None:
        with self.assertRaises(FilterSchemaError):
            validate_condition("record.amount > 100")

    def test_unknown_operator(self) -> None:
        with self.assertRaises(UnknownOperatorError):
            validate_condition({"field": "a", "operator": "like", "value": 1})

    def test_missing_value(self) -> None:
        with self.assertRaises(FilterSchemaError):
            validate_condition({"field": "a", "operator": "eq"})

    def test_depth_limit(self) -> None:
        cond = {"field": "a", "operator": "exists"}
        for _ in range(12):
            cond = {"not": cond}
        with self.assertRaises(FilterDepthError):
            validate_condition(cond)


if __name__ == "__main__":
    unittest.main()
