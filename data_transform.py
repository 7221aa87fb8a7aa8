"""Data transform module: named rule pipelines with validation, caching and output formats."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Dict, List

import jsonschema

from agentkit.canonical_json import CanonicalJsonTypeError, fingerprint
from agentkit.field_path import FieldPathError
from filter_eval import FilterConditionError
from module_errors import Issue, ModuleError, issue
from output_format import FORMATS, format_output
from result_cache import ResultCache
from transform_ops import apply_rule, check_rule
from transform_validate import VALIDATION_LEVELS, check_validation_rule, validate_data

logger = logging.getLogger("agentkit.transform")

TRANSFORMATION_TYPES = {"mapping", "aggregation", "filtering", "enrichment", "normalization"}

DEFAULT_CONFIG = {
    "transformations": {},
    "validation_rules": [],
    "output_formats": ["json"],
    "enable_caching": True,
    "cache_timeout": 300,
    "max_batch_size": 1000,
}

REQUEST_SCHEMA = {
    "type": "object",
    "required": ["data", "transformation"],
    "properties": {
        "data": {},
        "transformation": {"type": "string", "minLength": 1},
        "output_format": {"type": "string", "enum": list(FORMATS), "default": "json"},
        "validation_level": {"type": "string", "enum": sorted(VALIDATION_LEVELS), "default": "lenient"},
        "batch_mode": {"type": "boolean", "default": False},
    },
    "additionalProperties": False,
}


class TransformConfigError(ModuleError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("TRANSFORM_CONFIG_INVALID", message, path)


def _check_config(config: dict) -> None:
    transformations = config.get("transformations")
    if not isinstance(transformations, dict):
        raise TransformConfigError("transformations must be object", "transformations")
    for name, definition in transformations.items():
        base = f"transformations.{name}"
        if not isinstance(definition, dict):
            raise TransformConfigError("transformation must be object", base)
        if definition.get("type") not in TRANSFORMATION_TYPES:
            raise TransformConfigError(f"unknown transformation type: {definition.get('type')}", f"{base}.type")
        rules = definition.get("rules")
        if not isinstance(rules, list):
            raise TransformConfigError("rules must be list", f"{base}.rules")
        for idx, rule in enumerate(rules):
            try:
                check_rule(rule, f"{base}.rules[{idx}]")
            except FilterConditionError as exc:
                raise TransformConfigError(exc.message, f"{base}.rules[{idx}].condition") from exc
            except ModuleError as exc:
                raise TransformConfigError(exc.message, exc.path) from exc
        schema = definition.get("output_schema")
        if schema is not None:
            try:
                jsonschema.Draft7Validator.check_schema(schema)
            except jsonschema.SchemaError as exc:
                raise TransformConfigError(f"invalid output_schema: {exc.message}", f"{base}.output_schema") from exc
    for fmt in config.get("output_formats") or []:
        if fmt not in FORMATS:
            raise TransformConfigError(f"unknown output format: {fmt}", "output_formats")
    rules = config.get("validation_rules")
    if not isinstance(rules, list):
        raise TransformConfigError("validation_rules must be list", "validation_rules")
    for idx, rule in enumerate(rules):
        try:
            check_validation_rule(rule, f"validation_rules[{idx}]")
        except ModuleError as exc:
            raise TransformConfigError(exc.message, exc.path) from exc


def _record_count(data: Any) -> int:
    if isinstance(data, list):
        return len(data)
    return 0 if data is None else 1


class DataTransformModule:
    module_id = "data-transform"

    def __init__(self, config: dict | None = None) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        merged.update(copy.deepcopy(config or {}))
        _check_config(merged)
        self.config = merged
        self.cache = ResultCache(ttl_seconds=merged.get("cache_timeout") or 300)

    def get_schema(self) -> dict:
        return copy.deepcopy(REQUEST_SCHEMA)

    def _fail(self, errors: List[Issue], warnings: List[Issue], meta: dict) -> dict:
        return {"ok": False, "data": None, "errors": errors, "warnings": warnings, "metadata": meta}

    def _transform_one(self, data: Any, definition: dict) -> Any:
        out = copy.deepcopy(data)
        for rule in definition.get("rules") or []:
            out = apply_rule(out, rule)
        return out

    def invoke(self, request: dict) -> dict:
        started = time.perf_counter()
        request = request or {}
        name = request.get("transformation")
        data = request.get("data")
        output_format = request.get("output_format") or "json"
        level = request.get("validation_level") or "lenient"
        batch_mode = bool(request.get("batch_mode"))
        meta: Dict[str, Any] = {
            "records_processed": 0,
            "transformation_time_ms": 0.0,
            "validation_errors": 0,
            "cached": False,
            "transformation": name,
            "output_format": output_format,
        }

        def elapsed() -> float:
            return round((time.perf_counter() - started) * 1000, 3)

        cache_key = None
        if self.config.get("enable_caching"):
            try:
                cache_key = fingerprint(name, data, output_format, batch_mode, level)
            except (CanonicalJsonTypeError, ValueError):
                cache_key = None
            if cache_key is not None:
                hit = self.cache.get(cache_key)
                if hit is not None:
                    hit["metadata"]["cached"] = True
                    hit["metadata"]["transformation_time_ms"] = elapsed()
                    logger.info("transform_cache_hit transformation=%s", name)
                    return hit

        definition = self.config["transformations"].get(name)
        if definition is None:
            meta["transformation_time_ms"] = elapsed()
            return self._fail([issue("TRANSFORMATION_NOT_FOUND", f"Transformation '{name}' not found", "transformation")], [], meta)
        if output_format not in (self.config.get("output_formats") or ["json"]):
            meta["transformation_time_ms"] = elapsed()
            return self._fail([issue("FORMAT_NOT_ALLOWED", f"Output format '{output_format}' not allowed", "output_format")], [], meta)
        if level not in VALIDATION_LEVELS:
            meta["transformation_time_ms"] = elapsed()
            return self._fail([issue("MODULE_INPUT_INVALID", f"Unknown validation level: {level}", "validation_level")], [], meta)

        if batch_mode:
            if not isinstance(data, list):
                meta["transformation_time_ms"] = elapsed()
                return self._fail([issue("MODULE_INPUT_INVALID", "batch_mode requires a list of datasets", "data")], [], meta)
            datasets = data
        else:
            datasets = [data]
        total = sum(_record_count(item) for item in datasets)
        if total > self.config.get("max_batch_size", 1000):
            meta["transformation_time_ms"] = elapsed()
            return self._fail(
                [issue("BATCH_TOO_LARGE", f"Batch size {total} exceeds maximum {self.config['max_batch_size']}", "data")],
                [],
                meta,
            )

        warnings: List[Issue] = []
        rules = self.config.get("validation_rules") or []
        for idx, dataset in enumerate(datasets):
            errors, found = validate_data(dataset, rules, level)
            if batch_mode:
                for item in errors + found:
                    sep = "" if item["path"].startswith("[") else "."
                    item["path"] = f"data[{idx}]{sep}{item['path']}"
            meta["validation_errors"] += len(errors) + len(found)
            if errors:
                meta["transformation_time_ms"] = elapsed()
                return self._fail(errors, warnings, meta)
            warnings.extend(found)

        try:
            outputs = [self._transform_one(dataset, definition) for dataset in datasets]
        except (ModuleError, FilterConditionError) as exc:
            meta["transformation_time_ms"] = elapsed()
            logger.warning("transform_failed transformation=%s code=%s error=%s", name, exc.code, exc.message)
            return self._fail([issue(exc.code, exc.message, exc.path)], warnings, meta)
        except FieldPathError as exc:
            meta["transformation_time_ms"] = elapsed()
            logger.warning("transform_failed transformation=%s path=%s error=%s", name, exc.path, exc.message)
            return self._fail([issue("TRANSFORM_RULE_INVALID", exc.message, exc.path, {"segment": exc.segment})], warnings, meta)

        schema = definition.get("output_schema")
        if schema:
            validator = jsonschema.Draft7Validator(schema)
            schema_errors = []
            for idx, output in enumerate(outputs):
                for err in sorted(validator.iter_errors(output), key=lambda e: [str(p) for p in e.path]):
                    where = ".".join(str(part) for part in err.path) or None
                    if batch_mode:
                        where = f"[{idx}]" + (f".{where}" if where else "")
                    schema_errors.append(issue("OUTPUT_SCHEMA_INVALID", err.message, where))
            if schema_errors:
                meta["transformation_time_ms"] = elapsed()
                return self._fail(schema_errors, warnings, meta)

        result_data = outputs if batch_mode else outputs[0]
        try:
            if batch_mode:
                formatted = [format_output(output, output_format) for output in outputs]
            else:
                formatted = format_output(result_data, output_format)
        except ModuleError as exc:
            meta["transformation_time_ms"] = elapsed()
            return self._fail([exc.to_issue()], warnings, meta)

        meta["records_processed"] = total
        meta["transformation_time_ms"] = elapsed()
        if definition.get("preserve_metadata"):
            meta["lineage"] = {
                "transformation_type": definition.get("type"),
                "rules_applied": [rule.get("name") or rule.get("operation") for rule in definition.get("rules") or []],
                "input_fingerprint": fingerprint(data) if cache_key else None,
            }
        result = {"ok": True, "data": formatted, "errors": [], "warnings": warnings, "metadata": meta}
        if cache_key is not None:
            self.cache.set(cache_key, result)
        logger.info(
            "transform_done transformation=%s records=%s format=%s ms=%s",
            name,
            total,
            output_format,
            meta["transformation_time_ms"],
        )
        return result
