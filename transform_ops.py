"""Rule-based record operators used by the data-transform module.

Every operator takes the current dataset and one rule dict and returns a new
dataset. Inputs are never mutated. Operators that only make sense on a list
of records return any other input unchanged.
"""

from __future__ import annotations

import copy
import math
from functools import cmp_to_key
from typing import Any, Callable, Dict, List

from agentkit.field_path import FieldPathError, get_field, set_field, split_path
from filter_eval import compare, eval_filter, validate_condition
from module_errors import ModuleError


class TransformRuleError(ModuleError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("TRANSFORM_RULE_INVALID", message, path)


Rule = Dict[str, Any]


def _params(rule: Rule) -> dict:
    params = rule.get("parameters")
    return params if isinstance(params, dict) else {}


def _rule_path(rule: Rule) -> str:
    return f"rules.{rule.get('name') or rule.get('operation')}"


def _applies(record: Any, rule: Rule) -> bool:
    cond = rule.get("condition")
    if cond is None:
        return True
    return eval_filter(cond, record)


def _per_record(data: Any, rule: Rule, fn: Callable[[Any], Any]) -> Any:
    if isinstance(data, list):
        return [fn(copy.deepcopy(item)) if _applies(item, rule) else copy.deepcopy(item) for item in data]
    if _applies(data, rule):
        return fn(copy.deepcopy(data))
    return copy.deepcopy(data)


def to_number(value: Any) -> float | int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value if not (isinstance(value, float) and not math.isfinite(value)) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number
    return None


def group_key(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# field transforms


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _string_fn(fn: Callable[[str], str]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        if value is None:
            return None
        return fn(value if isinstance(value, str) else str(value))

    return apply


def _numeric_fn(fn: Callable[[float], Any]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        number = to_number(value)
        if number is None:
            return None
        return fn(number)

    return apply


FIELD_TRANSFORMS: Dict[str, Callable[[Any], Any]] = {
    "uppercase": _string_fn(str.upper),
    "lowercase": _string_fn(str.lower),
    "trim": _string_fn(str.strip),
    "title": _string_fn(str.title),
    "round": _numeric_fn(_round_half_up),
    "abs": _numeric_fn(abs),
    "to_number": _numeric_fn(lambda n: n),
    "to_string": lambda v: None if v is None else (v if isinstance(v, str) else str(v)),
}


def apply_field_transform(value: Any, transform: str | None) -> Any:
    if transform is None:
        return copy.deepcopy(value)
    fn = FIELD_TRANSFORMS.get(transform)
    if fn is None:
        raise TransformRuleError(f"Unknown field transform: {transform}", "parameters.transform")
    return fn(value)


# operators


def op_map(data: Any, rule: Rule) -> Any:
    source = rule.get("source_field")
    if not source:
        return copy.deepcopy(data)
    target = rule.get("target_field") or source
    transform = _params(rule).get("transform")

    def apply(record: Any) -> Any:
        if not isinstance(record, dict):
            return record
        value = apply_field_transform(get_field(record, source), transform)
        set_field(record, target, value)
        return record

    return _per_record(data, rule, apply)


def op_filter(data: Any, rule: Rule) -> Any:
    if not isinstance(data, list):
        return copy.deepcopy(data)
    params = _params(rule)
    condition = params.get("condition")
    field = params.get("field")
    operator = params.get("operator")
    has_value = "value" in params

    def keep(record: Any) -> bool:
        if condition is not None:
            return eval_filter(condition, record)
        if field and operator and has_value:
            return compare(get_field(record, field), operator, params.get("value"))
        return True

    return [copy.deepcopy(item) for item in data if keep(item)]


def _numbers(records: List[Any], field: str | None) -> List[float]:
    out = []
    for record in records:
        number = to_number(get_field(record, field)) if field else None
        if number is not None:
            out.append(number)
    return out


AGGREGATE_OPERATIONS = ("count", "sum", "avg", "min", "max")
NORMALIZE_METHODS = ("minmax", "zscore")
SORT_DIRECTIONS = ("asc", "desc")


def aggregate(records: List[Any], operation: str, field: str | None) -> Any:
    if operation not in AGGREGATE_OPERATIONS:
        raise TransformRuleError(f"Unknown aggregate operation: {operation}", "parameters.operation")
    if operation == "count":
        return len(records)
    if not field:
        raise TransformRuleError(f"{operation} requires a field", "parameters.field")
    values = _numbers(records, field)
    if operation == "sum":
        return sum(values)
    if not values:
        return None
    if operation == "avg":
        return sum(values) / len(values)
    if operation == "min":
        return min(values)
    return max(values)


def group_records(records: List[Any], field: str) -> Dict[str, List[Any]]:
    groups: Dict[str, List[Any]] = {}
    for record in records:
        groups.setdefault(group_key(get_field(record, field)), []).append(copy.deepcopy(record))
    return groups


def op_aggregate(data: Any, rule: Rule) -> Any:
    if not isinstance(data, list):
        return copy.deepcopy(data)
    params = _params(rule)
    operation = params.get("operation", "count")
    field = params.get("field")
    group_by = params.get("group_by")
    if group_by:
        return {key: aggregate(items, operation, field) for key, items in group_records(data, group_by).items()}
    return aggregate(data, operation, field)


def _find_enrichment(source: Any, join_field: str, join_value: Any) -> Any:
    if isinstance(source, list):
        for candidate in source:
            if get_field(candidate, join_field) == join_value:
                return candidate
        return None
    if isinstance(source, dict):
        return source.get(group_key(join_value))
    return None


def op_enrich(data: Any, rule: Rule) -> Any:
    params = _params(rule)
    source = params.get("enrichment_data")
    join_field = params.get("join_field")
    target_fields = params.get("target_fields") or []
    if not join_field:
        raise TransformRuleError("enrich requires join_field", "parameters.join_field")

    def apply(record: Any) -> Any:
        if not isinstance(record, dict):
            return record
        match = _find_enrichment(source, join_field, get_field(record, join_field))
        if match is None:
            return record
        for field in target_fields:
            set_field(record, field, copy.deepcopy(get_field(match, field)))
        return record

    return _per_record(data, rule, apply)


def _field_stats(records: List[Any], field: str) -> dict | None:
    values = _numbers(records, field)
    if not values:
        return None
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return {"min": min(values), "max": max(values), "mean": mean, "std": math.sqrt(variance)}


def normalize_value(value: float, stats: dict, method: str) -> float:
    if method == "minmax":
        span = stats["max"] - stats["min"]
        return 0.0 if span == 0 else (value - stats["min"]) / span
    if method == "zscore":
        return 0.0 if stats["std"] == 0 else (value - stats["mean"]) / stats["std"]
    raise TransformRuleError(f"Unknown normalize method: {method}", "parameters.method")


def op_normalize(data: Any, rule: Rule) -> Any:
    params = _params(rule)
    fields = params.get("fields")
    method = params.get("method", "minmax")
    if not isinstance(data, list) or not fields:
        return copy.deepcopy(data)
    stats = {field: _field_stats(data, field) for field in fields}
    out = []
    for record in data:
        item = copy.deepcopy(record)
        for field in fields:
            number = to_number(get_field(item, field))
            if stats[field] is None or number is None:
                continue
            set_field(item, field, normalize_value(number, stats[field], method))
        out.append(item)
    return out


def _sort_cmp(a: Any, b: Any) -> int:
    if _is_num(a) and _is_num(b) or isinstance(a, str) and isinstance(b, str):
        return -1 if a < b else 1 if a > b else 0
    # numbers before strings before anything else
    return _rank(a) - _rank(b)


def _is_num(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _rank(value: Any) -> int:
    if _is_num(value):
        return 0
    if isinstance(value, str):
        return 1
    return 2


def op_sort(data: Any, rule: Rule) -> Any:
    if not isinstance(data, list):
        return copy.deepcopy(data)
    params = _params(rule)
    field = params.get("field")
    direction = params.get("direction", "asc")
    if direction not in SORT_DIRECTIONS:
        raise TransformRuleError(f"Unknown sort direction: {direction}", "parameters.direction")
    if not field:
        raise TransformRuleError("sort requires field", "parameters.field")

    present = [item for item in data if get_field(item, field) is not None]
    missing = [item for item in data if get_field(item, field) is None]
    sign = -1 if direction == "desc" else 1
    ordered = sorted(
        present,
        key=cmp_to_key(lambda a, b: sign * _sort_cmp(get_field(a, field), get_field(b, field))),
    )
    return copy.deepcopy(ordered + missing)


def op_group(data: Any, rule: Rule) -> Any:
    if not isinstance(data, list):
        return copy.deepcopy(data)
    field = _params(rule).get("field")
    if not field:
        raise TransformRuleError("group requires field", "parameters.field")
    return group_records(data, field)


def flatten_record(record: Any, separator: str, prefix: str = "") -> Any:
    if not isinstance(record, dict):
        return record
    flat: dict = {}
    for key, value in record.items():
        name = f"{prefix}{separator}{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_record(value, separator, name))
        else:
            flat[name] = copy.deepcopy(value)
    return flat


def op_flatten(data: Any, rule: Rule) -> Any:
    separator = _params(rule).get("separator", ".")
    return _per_record(data, rule, lambda record: flatten_record(record, separator))


def op_pivot(data: Any, rule: Rule) -> Any:
    if not isinstance(data, list):
        return copy.deepcopy(data)
    params = _params(rule)
    index_field = params.get("index_field")
    column_field = params.get("column_field")
    value_field = params.get("value_field")
    if not (index_field and column_field and value_field):
        raise TransformRuleError("pivot requires index_field, column_field and value_field", "parameters")
    table: Dict[str, dict] = {}
    for record in data:
        row = table.setdefault(group_key(get_field(record, index_field)), {})
        row[group_key(get_field(record, column_field))] = copy.deepcopy(get_field(record, value_field))
    return table


OPERATIONS: Dict[str, Callable[[Any, Rule], Any]] = {
    "map": op_map,
    "filter": op_filter,
    "aggregate": op_aggregate,
    "enrich": op_enrich,
    "normalize": op_normalize,
    "sort": op_sort,
    "group": op_group,
    "flatten": op_flatten,
    "pivot": op_pivot,
}


_PARAM_FIELDS = ("field", "group_by", "join_field", "index_field", "column_field", "value_field")


def _rule_field_paths(rule: Rule):
    for key in ("source_field", "target_field"):
        if rule.get(key) is not None:
            yield key, rule[key]
    params = _params(rule)
    for key in _PARAM_FIELDS:
        if params.get(key) is not None:
            yield f"parameters.{key}", params[key]
    for key in ("fields", "target_fields"):
        if isinstance(params.get(key), list):
            for idx, value in enumerate(params[key]):
                yield f"parameters.{key}[{idx}]", value


def check_rule(rule: Any, path: str) -> None:
    """Static checks run when a transformation is configured."""
    if not isinstance(rule, dict):
        raise TransformRuleError("rule must be object", path)
    operation = rule.get("operation")
    if operation not in OPERATIONS:
        raise TransformRuleError(f"Unknown transformation operation: {operation}", f"{path}.operation")
    if rule.get("parameters") is not None and not isinstance(rule.get("parameters"), dict):
        raise TransformRuleError("parameters must be object", f"{path}.parameters")
    params = _params(rule)
    transform = params.get("transform")
    if operation == "map" and transform is not None and transform not in FIELD_TRANSFORMS:
        raise TransformRuleError(f"Unknown field transform: {transform}", f"{path}.parameters.transform")
    choices = {
        "aggregate": ("operation", AGGREGATE_OPERATIONS),
        "normalize": ("method", NORMALIZE_METHODS),
        "sort": ("direction", SORT_DIRECTIONS),
    }.get(operation)
    if choices is not None:
        key, allowed = choices
        if key in params and params[key] not in allowed:
            raise TransformRuleError(f"Unknown {operation} {key}: {params[key]}", f"{path}.parameters.{key}")
    for where, value in _rule_field_paths(rule):
        try:
            split_path(value)
        except FieldPathError as exc:
            raise TransformRuleError(exc.message, f"{path}.{where}") from exc
    if rule.get("condition") is not None:
        validate_condition(rule["condition"])
    if operation == "filter" and params.get("condition") is not None:
        validate_condition(params["condition"])


def apply_rule(data: Any, rule: Rule) -> Any:
    fn = OPERATIONS.get(rule.get("operation"))
    if fn is None:
        raise TransformRuleError(f"Unknown transformation operation: {rule.get('operation')}", _rule_path(rule))
    return fn(data, rule)
