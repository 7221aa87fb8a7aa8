"""Validation rules applied to transform input before any rule runs."""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Tuple

from agentkit.field_path import get_field
from filter_eval import FilterConditionError, eval_filter, validate_condition
from module_errors import Issue, ModuleError, issue

RULE_TYPES = {"required", "type", "range", "pattern", "enum", "custom"}
VALIDATION_LEVELS = {"strict", "lenient", "none"}

_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "null": lambda v: v is None,
}


class ValidationRuleError(ModuleError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("VALIDATION_RULE_INVALID", message, path)


def check_validation_rule(rule: Any, path: str) -> None:
    if not isinstance(rule, dict):
        raise ValidationRuleError("validation rule must be object", path)
    if not isinstance(rule.get("field"), str) or not rule.get("field"):
        raise ValidationRuleError("field is required", f"{path}.field")
    kind = rule.get("type")
    if kind not in RULE_TYPES:
        raise ValidationRuleError(f"unknown rule type: {kind}", f"{path}.type")
    params = rule.get("parameters") or {}
    if not isinstance(params, dict):
        raise ValidationRuleError("parameters must be object", f"{path}.parameters")
    if kind == "range":
        for bound in ("min", "max"):
            value = params.get(bound)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise ValidationRuleError(f"range {bound} must be a number", f"{path}.parameters.{bound}")
    if kind == "type" and params.get("type") not in _TYPE_CHECKS:
        raise ValidationRuleError(f"unknown value type: {params.get('type')}", f"{path}.parameters.type")
    if kind == "pattern":
        try:
            re.compile(params.get("pattern"))
        except (re.error, TypeError) as exc:
            raise ValidationRuleError(f"invalid pattern: {exc}", f"{path}.parameters.pattern") from exc
    if kind == "enum" and not isinstance(params.get("values"), list):
        raise ValidationRuleError("enum requires values list", f"{path}.parameters.values")
    if kind == "custom":
        fn = params.get("function")
        cond = params.get("condition")
        if fn is None and cond is None:
            raise ValidationRuleError("custom rule requires condition or function", f"{path}.parameters")
        if fn is not None and not callable(fn):
            raise ValidationRuleError("function must be callable", f"{path}.parameters.function")
        if cond is not None:
            try:
                validate_condition(cond)
            except FilterConditionError as exc:
                raise ValidationRuleError(exc.message, f"{path}.parameters.condition") from exc


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _passes(rule: dict, record: Any) -> bool:
    kind = rule["type"]
    params = rule.get("parameters") or {}
    value = get_field(record, rule["field"])
    if kind == "required":
        return value is not None and value != ""
    if kind == "type":
        return _TYPE_CHECKS[params["type"]](value)
    if kind == "range":
        number = _coerce_number(value)
        if number is None:
            return False
        if params.get("min") is not None and number < params["min"]:
            return False
        if params.get("max") is not None and number > params["max"]:
            return False
        return True
    if kind == "pattern":
        if value is None:
            return False
        return re.search(params["pattern"], str(value)) is not None
    if kind == "enum":
        return value in params["values"]
    if kind == "custom":
        fn = params.get("function")
        if fn is not None:
            return bool(fn(value, record))
        return eval_filter(params["condition"], record)
    return False


def _failure(rule: dict, path: str) -> Issue:
    message = rule.get("error_message") or f"{rule['field']} failed {rule['type']} validation"
    return issue("VALIDATION_FAILED", message, path, {"rule": rule["type"]})


def validate_data(data: Any, rules: List[dict], level: str = "lenient") -> Tuple[List[Issue], List[Issue]]:
    """Return ``(errors, warnings)`` for ``data`` under ``level``.

    Lists are checked record by record with paths like ``[2].email``. Strict
    mode stops at the first failure and reports it as an error; lenient mode
    reports every failure as a warning.
    """
    if level == "none" or not rules:
        return [], []
    records = list(enumerate(data)) if isinstance(data, list) else [(None, data)]
    found: List[Issue] = []
    for idx, record in records:
        for rule in rules:
            if _passes(rule, record):
                continue
            path = rule["field"] if idx is None else f"[{idx}].{rule['field']}"
            failure = _failure(rule, path)
            if level == "strict":
                return [failure], []
            found.append(failure)
    return [], found
