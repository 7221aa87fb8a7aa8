import copy
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from transform_ops import TransformRuleError, apply_rule, check_rule, group_key


ORDERS = [
    {"id": 1, "region": "north", "amount": 10, "customer": {"name": " ada ", "tier": "gold"}},
    {"id": 2, "region": "south", "amount": 30, "customer": {"name": "bob", "tier": "silver"}},
    {"id": 3, "region": "north", "amount": "20", "customer": {"name": "cy", "tier": "gold"}},
    {"id": 4, "region": None, "customer": {"name": "di", "tier": "bronze"}},
]


class TestTransformOps(unittest.TestCase):
    def setUp(self) -> None:
        self.data = copy.deepcopy(ORDERS)

    def test_inputs_not_mutated(self) -> None:
        for rule in (
            {"operation": "map", "source_field": "customer.name", "parameters": {"transform": "trim"}},
            {"operation": "sort", "parameters": {"field": "amount", "direction": "desc"}},
            {"operation": "normalize", "parameters": {"fields": ["amount"]}},
            {"operation": "flatten"},
        ):
            apply_rule(self.data, rule)
        self.assertEqual(self.data, ORDERS)

    def test_map_defaults_target_to_source(self) -> None:
        out = apply_rule(self.data, {"operation": "map", "source_field": "customer.name", "parameters": {"transform": "trim"}})
        self.assertEqual(out[0]["customer"]["name"], "ada")

    def test_map_to_new_field_with_condition(self) -> None:
        rule = {
            "operation": "map",
            "source_field": "customer.tier",
            "target_field": "tier_label",
            "parameters": {"transform": "uppercase"},
            "condition": {"field": "region", "operator": "eq", "value": "north"},
        }
        out = apply_rule(self.data, rule)
        self.assertEqual(out[0]["tier_label"], "GOLD")
        self.assertNotIn("tier_label", out[1])

    def test_round_is_half_up(self) -> None:
        rule = {"operation": "map", "source_field": "v", "parameters": {"transform": "round"}}
        self.assertEqual(apply_rule([{"v": 2.5}, {"v": "x"}], rule), [{"v": 3}, {"v": None}])

    def test_filter_without_criteria_is_identity(self) -> None:
        self.assertEqual(apply_rule(self.data, {"operation": "filter"}), ORDERS)

    def test_filter_by_field_and_condition(self) -> None:
        simple = {"operation": "filter", "parameters": {"field": "region", "operator": "eq", "value": "north"}}
        self.assertEqual([r["id"] for r in apply_rule(self.data, simple)], [1, 3])
        structured = {"operation": "filter", "parameters": {"condition": {"field": "amount", "operator": "gt", "value": 15}}}
        self.assertEqual([r["id"] for r in apply_rule(self.data, structured)], [2])

    def test_aggregate(self) -> None:
        total = apply_rule(self.data, {"operation": "aggregate", "parameters": {"operation": "sum", "field": "amount"}})
        self.assertEqual(total, 60)
        grouped = apply_rule(
            self.data,
            {"operation": "aggregate", "parameters": {"operation": "avg", "field": "amount", "group_by": "region"}},
        )
        self.assertEqual(grouped, {"north": 15, "south": 30, "null": None})

    def test_aggregate_count_and_unknown(self) -> None:
        self.assertEqual(apply_rule(self.data, {"operation": "aggregate", "parameters": {"operation": "count"}}), 4)
        with self.assertRaises(TransformRuleError):
            apply_rule(self.data, {"operation": "aggregate", "parameters": {"operation": "median", "field": "amount"}})

    def test_normalize_rescales_numeric_strings(self) -> None:
        out = apply_rule([{"v": 0}, {"v": "10"}, {"v": 5}], {"operation": "normalize", "parameters": {"fields": ["v"]}})
        self.assertEqual([r["v"] for r in out], [0.0, 1.0, 0.5])

    def test_unknown_aggregate_without_numbers(self) -> None:
        with self.assertRaises(TransformRuleError) as ctx:
            apply_rule([{"v": "x"}], {"operation": "aggregate", "parameters": {"operation": "median", "field": "v"}})
        self.assertEqual(ctx.exception.path, "parameters.operation")

    def test_enrich_from_list(self) -> None:
        rule = {
            "operation": "enrich",
            "parameters": {
                "enrichment_data": [{"region": "north", "manager": "Kim"}],
                "join_field": "region",
                "target_fields": ["manager"],
            },
        }
        out = apply_rule(self.data, rule)
        self.assertEqual(out[0]["manager"], "Kim")
        self.assertNotIn("manager", out[1])

    def test_normalize_minmax_and_constant(self) -> None:
        out = apply_rule([{"v": 0}, {"v": 5}, {"v": 10}], {"operation": "normalize", "parameters": {"fields": ["v"]}})
        self.assertEqual([r["v"] for r in out], [0.0, 0.5, 1.0])
        flat = apply_rule([{"v": 3}, {"v": 3}], {"operation": "normalize", "parameters": {"fields": ["v"]}})
        self.assertEqual([r["v"] for r in flat], [0.0, 0.0])

    def test_normalize_zscore(self) -> None:
        out = apply_rule([{"v": 2}, {"v": 4}], {"operation": "normalize", "parameters": {"fields": ["v"], "method": "zscore"}})
        self.assertEqual([r["v"] for r in out], [-1.0, 1.0])

    def test_sort_missing_last_both_directions(self) -> None:
        data = [{"id": "a", "n": 2}, {"id": "b"}, {"id": "c", "n": 1}, {"id": "d", "n": 2}]
        asc = apply_rule(data, {"operation": "sort", "parameters": {"field": "n"}})
        desc = apply_rule(data, {"operation": "sort", "parameters": {"field": "n", "direction": "desc"}})
        self.assertEqual([r["id"] for r in asc], ["c", "a", "d", "b"])
        self.assertEqual([r["id"] for r in desc], ["a", "d", "c", "b"])

    def test_group_keys(self) -> None:
        out = apply_rule(self.data, {"operation": "group", "parameters": {"field": "region"}})
        self.assertEqual(list(out.keys()), ["north", "south", "null"])
        self.assertEqual(group_key(True), "true")
        self.assertEqual(group_key(2.0), "2")

    def test_flatten(self) -> None:
        out = apply_rule([{"a": {"b": {"c": 1}, "d": [1, 2]}, "e": {}}], {"operation": "flatten", "parameters": {"separator": "_"}})
        self.assertEqual(out, [{"a_b_c": 1, "a_d": [1, 2]}])

    def test_pivot(self) -> None:
        data = [
            {"month": "jan", "metric": "visits", "value": 10},
            {"month": "jan", "metric": "sales", "value": 2},
            {"month": "feb", "metric": "visits", "value": 12},
        ]
        rule = {"operation": "pivot", "parameters": {"index_field": "month", "column_field": "metric", "value_field": "value"}}
        self.assertEqual(apply_rule(data, rule), {"jan": {"visits": 10, "sales": 2}, "feb": {"visits": 12}})

    def test_non_list_input_passes_through(self) -> None:
        self.assertEqual(apply_rule({"x": 1}, {"operation": "sort", "parameters": {"field": "x"}}), {"x": 1})

    def test_unknown_operation(self) -> None:
        with self.assertRaises(TransformRuleError):
            apply_rule(self.data, {"operation": "explode"})
        with self.assertRaises(TransformRuleError):
            check_rule({"operation": "map", "parameters": {"transform": "reverse"}}, "rules[0]")


if __name__ == "__main__":
    unittest.main()
