"""Structured filter conditions evaluated against a single record."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict

from agentkit.field_path import FieldPathError, get_field, has_field


@dataclass
class FilterConditionError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


class FilterSchemaError(FilterConditionError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("FILTER_SCHEMA_ERROR", message, path)


class FilterDepthError(FilterConditionError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("FILTER_DEPTH_EXCEEDED", message, path)


class UnknownOperatorError(FilterConditionError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("FILTER_UNKNOWN_OPERATOR", message, path)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _ordered(left: Any, right: Any, cmp: Callable[[Any, Any], bool]) -> bool:
    if _is_number(left) and _is_number(right):
        return cmp(left, right)
    if isinstance(left, str) and isinstance(right, str):
        return cmp(left, right)
    return False


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, str):
        return right is not None and str(right) in left
    if isinstance(left, list):
        return right in left
    return False


def _in(left: Any, right: Any) -> bool:
    if not isinstance(right, list):
        return False
    return left in right


def _matches(left: Any, right: Any) -> bool:
    if not isinstance(left, str) or not isinstance(right, str):
        return False
    return re.search(right, left) is not None


def _starts(left: Any, right: Any) -> bool:
    return isinstance(left, str) and isinstance(right, str) and left.startswith(right)


def _ends(left: Any, right: Any) -> bool:
    return isinstance(left, str) and isinstance(right, str) and left.endswith(right)


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
    "gt": lambda a, b: _ordered(a, b, lambda x, y: x > y),
    "gte": lambda a, b: _ordered(a, b, lambda x, y: x >= y),
    "lt": lambda a, b: _ordered(a, b, lambda x, y: x < y),
    "lte": lambda a, b: _ordered(a, b, lambda x, y: x <= y),
    "contains": _contains,
    "in": _in,
    "not_in": lambda a, b: isinstance(b, list) and a not in b,
    "starts_with": _starts,
    "ends_with": _ends,
    "matches": _matches,
}

_PRESENCE = {"exists", "not_exists"}

OPERATORS = frozenset(_COMPARATORS) | _PRESENCE


def compare(left: Any, operator: str, right: Any) -> bool:
    fn = _COMPARATORS.get(operator)
    if fn is None:
        raise UnknownOperatorError(f"Unknown operator: {operator}")
    return fn(left, right)


def _check_leaf(cond: dict, path: str) -> None:
    field = cond.get("field")
    if not isinstance(field, str) or not field:
        raise FilterSchemaError("field must be a non-empty string", f"{path}.field")
    op = cond.get("operator")
    if not isinstance(op, str):
        raise FilterSchemaError("operator must be a string", f"{path}.operator")
    if op not in OPERATORS:
        raise UnknownOperatorError(f"Unknown operator: {op}", f"{path}.operator")
    if op not in _PRESENCE and "value" not in cond:
        raise FilterSchemaError("value is required", path)
    if op == "matches":
        try:
            re.compile(cond.get("value"))
        except (re.error, TypeError) as exc:
            raise FilterSchemaError(f"Invalid pattern: {exc}", f"{path}.value") from exc


def _walk(cond: Any, path: str, depth: int, limit: int, record: Any, evaluate: bool) -> bool:
    if depth > limit:
        raise FilterDepthError("Depth limit exceeded", path)
    if isinstance(cond, str):
        raise FilterSchemaError("String conditions are not supported; use a structured condition", path)
    if not isinstance(cond, dict):
        raise FilterSchemaError("Condition must be object", path)

    if "all" in cond or "any" in cond:
        key = "all" if "all" in cond else "any"
        children = cond.get(key)
        if not isinstance(children, list):
            raise FilterSchemaError(f"{key} must be list", f"{path}.{key}")
        results = [
            _walk(child, f"{path}.{key}[{idx}]", depth + 1, limit, record, evaluate)
            for idx, child in enumerate(children)
        ]
        if not evaluate:
            return True
        return all(results) if key == "all" else any(results)

    if "not" in cond:
        inner = _walk(cond.get("not"), f"{path}.not", depth + 1, limit, record, evaluate)
        return not inner if evaluate else True

    _check_leaf(cond, path)
    if not evaluate:
        return True

    field = cond["field"]
    op = cond["operator"]
    try:
        if op == "exists":
            return has_field(record, field) and get_field(record, field) is not None
        if op == "not_exists":
            return not has_field(record, field) or get_field(record, field) is None
        left = get_field(record, field)
    except FieldPathError as exc:
        raise FilterSchemaError(exc.message, f"{path}.field") from exc
    return compare(left, op, cond.get("value"))


def validate_condition(cond: Any, depth_limit: int = 10) -> None:
    """Raise FilterConditionError when ``cond`` is malformed."""
    _walk(cond, "$", 1, depth_limit, None, evaluate=False)


def eval_filter(cond: Any, record: Any, depth_limit: int = 10) -> bool:
    return _walk(cond, "$", 1, depth_limit, record, evaluate=True)
