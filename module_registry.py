"""In-memory module catalog: descriptors, configured instances and invocation audit."""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import jsonschema

from api_connector import AUTH_TYPES, METHODS as API_METHODS, ApiConnectorModule
from code_generator import CodeGeneratorModule
from data_transform import DataTransformModule
from document_generation import FORMATS as DOCUMENT_FORMATS, SECTION_TYPES, DocumentGenerationModule
from filter_eval import FilterConditionError
from google_trends import GoogleTrendsModule
from module_errors import Issue, ModuleError, issue
from prompt_module import PromptModule
from recommendation import ALGORITHMS, RecommendationModule
from workflow_automation import ACTION_TYPES, CONDITION_TYPES, STEP_TYPES, STRATEGIES, WorkflowAutomationModule

logger = logging.getLogger("agentkit.modules")

CATEGORIES = ("data", "integration", "automation", "processing", "communication")

Factory = Callable[[dict], Any]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _fill_defaults(schema: dict, config: dict) -> dict:
    out = copy.deepcopy(config)
    for key, prop in (schema.get("properties") or {}).items():
        if not isinstance(prop, dict):
            continue
        if key not in out and "default" in prop:
            out[key] = copy.deepcopy(prop["default"])
        if isinstance(out.get(key), dict) and prop.get("type") == "object":
            out[key] = _fill_defaults(prop, out[key])
    return out


BUILTIN_MODULES: List[dict] = [
    {
        "id": "data-transform",
        "name": "Data Transform",
        "description": "Rule-based map, filter, aggregate, enrich, normalize, sort, group, flatten and pivot pipelines",
        "category": "data",
        "version": "1.0.0",
        "capabilities": ["map", "filter", "aggregate", "enrich", "normalize", "sort", "group", "flatten", "pivot"],
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "transformations": {"type": "object", "default": {}},
                "validation_rules": {"type": "array", "default": []},
                "output_formats": {
                    "type": "array",
                    "items": {"type": "string", "enum": ["json", "csv", "xml", "yaml"]},
                    "default": ["json"],
                },
                "enable_caching": {"type": "boolean", "default": True},
                "cache_timeout": {"type": "number", "minimum": 0, "default": 300},
                "max_batch_size": {"type": "integer", "minimum": 1, "default": 1000},
            },
        },
    },
    {
        "id": "recommendation",
        "name": "Recommendation Engine",
        "description": "Collaborative, content based and hybrid recommendations over a catalog",
        "category": "processing",
        "version": "1.0.0",
        "capabilities": list(ALGORITHMS),
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "algorithm": {"type": "string", "enum": list(ALGORITHMS), "default": "hybrid"},
                "max_recommendations": {"type": "integer", "minimum": 1, "default": 5},
                "confidence_threshold": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.0},
                "data_source": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": ["database", "api", "file"], "default": "database"},
                        "connection": {},
                    },
                    "default": {},
                },
                "catalog": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["id", "title"],
                        "properties": {
                            "score": {"type": "number", "minimum": 0, "maximum": 1},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                        },
                    },
                },
                "topic_keywords": {"type": "object", "additionalProperties": {"type": "array", "items": {"type": "string"}}},
            },
        },
    },
    {
        "id": "code-generator",
        "name": "Code Generator",
        "description": "Template-based code, test and documentation generation",
        "category": "automation",
        "version": "1.0.0",
        "capabilities": ["javascript", "typescript", "python", "java", "sql"],
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "supported_languages": {
                    "type": "array",
                    "items": {"type": "string"},
                    "default": ["javascript", "typescript", "python", "java", "sql"],
                },
                "max_output_length": {"type": "integer", "minimum": 1, "default": 20000},
                "include_comments": {"type": "boolean", "default": True},
                "include_tests": {"type": "boolean", "default": True},
                "code_style": {
                    "type": "object",
                    "properties": {
                        "indentation": {"type": "string", "enum": ["spaces", "tabs"], "default": "spaces"},
                        "indent_size": {"type": "integer", "minimum": 1, "maximum": 8, "default": 2},
                        "max_line_length": {"type": "integer", "minimum": 20, "default": 100},
                    },
                    "default": {},
                },
            },
        },
    },
    {
        "id": "google-trends",
        "name": "Google Trends",
        "description": "Search-trend analysis aligned with hotel supplier inventory",
        "category": "integration",
        "version": "1.0.0",
        "capabilities": ["keyword_trends", "supplier_alignment", "trending_hotels"],
        "required_secrets": ["GOOGLE_TRENDS_API_KEY"],
        "config_schema": {
            "type": "object",
            "properties": {
                "api_key": {"type": ["string", "null"]},
                "region": {"type": "string", "default": "US"},
                "language": {"type": "string", "default": "en"},
                "timeframe": {"type": "string", "default": "today 12-m"},
                "category": {"type": "integer", "default": 0},
                "hotel_supplier_apis": {
                    "type": "object",
                    "propertyNames": {"enum": ["booking", "expedia", "hotels"]},
                    "additionalProperties": {
                        "type": "object",
                        "required": ["endpoint"],
                        "properties": {"endpoint": {"type": "string"}, "api_key": {"type": "string"}},
                    },
                    "default": {},
                },
                "cache_timeout": {"type": "number", "minimum": 0, "default": 3600},
                "base_url": {"type": "string"},
            },
        },
    },
    {
        "id": "prompt",
        "name": "Prompt Templates",
        "description": "Prompt templating with variables and conversation history",
        "category": "communication",
        "version": "1.0.0",
        "capabilities": ["templates", "variables", "history"],
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "templates": {"type": "object", "additionalProperties": {"type": "string"}, "default": {}},
                "variables": {"type": "object", "default": {}},
                "context_settings": {
                    "type": "object",
                    "properties": {
                        "max_tokens": {"type": "integer", "minimum": 1, "default": 4000},
                        "include_history": {"type": "boolean", "default": False},
                        "history_length": {"type": "integer", "minimum": 0, "default": 5},
                    },
                    "default": {},
                },
            },
        },
    },
    {
        "id": "api-connector",
        "name": "API Connector",
        "description": "Configured HTTP endpoints with auth, response mapping, rate limiting, caching and retries",
        "category": "integration",
        "version": "1.0.0",
        "capabilities": ["http", "auth", "response_mapping", "rate_limit", "cache", "retry"],
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "endpoints": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "object",
                        "required": ["url"],
                        "properties": {
                            "url": {"type": "string", "minLength": 1},
                            "method": {"type": "string", "enum": list(API_METHODS)},
                            "headers": {"type": "object", "additionalProperties": {"type": "string"}},
                            "query_params": {"type": "object"},
                            "body_template": {"type": "string"},
                            "response_mapping": {"type": "object", "additionalProperties": {"type": "string"}},
                            "cache_ttl": {"type": "number", "minimum": 0},
                        },
                    },
                    "default": {},
                },
                "authentication": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": list(AUTH_TYPES), "default": "none"},
                        "credentials": {"type": "object", "additionalProperties": {"type": "string"}},
                    },
                    "default": {},
                },
                "rate_limiting": {
                    "type": "object",
                    "properties": {"requests_per_minute": {"type": "integer", "minimum": 0, "default": 60}},
                    "default": {},
                },
                "retry_policy": {
                    "type": "object",
                    "properties": {
                        "max_retries": {"type": "integer", "minimum": 0, "maximum": 10, "default": 3},
                        "backoff_multiplier": {"type": "number", "minimum": 1, "default": 2},
                        "initial_delay": {"type": "number", "minimum": 0, "default": 1000},
                    },
                    "default": {},
                },
                "timeout": {"type": "number", "minimum": 1000, "maximum": 60000, "default": 30000},
                "validate_responses": {"type": "boolean", "default": False},
            },
        },
    },
    {
        "id": "document-generation",
        "name": "Document Generation",
        "description": "Sectioned documents rendered to markdown, html, confluence, text or json",
        "category": "processing",
        "version": "1.0.0",
        "capabilities": list(DOCUMENT_FORMATS),
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "supported_formats": {
                    "type": "array",
                    "items": {"type": "string", "enum": list(DOCUMENT_FORMATS)},
                    "default": list(DOCUMENT_FORMATS),
                },
                "templates": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "object",
                        "required": ["sections"],
                        "properties": {
                            "name": {"type": "string"},
                            "variables": {"type": "object"},
                            "sections": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "required": ["id"],
                                    "properties": {
                                        "id": {"type": "string", "minLength": 1},
                                        "title": {"type": "string"},
                                        "type": {"type": "string", "enum": list(SECTION_TYPES)},
                                        "required": {"type": "boolean"},
                                        "template": {"type": "string"},
                                        "placeholder": {"type": "string"},
                                    },
                                },
                            },
                        },
                    },
                    "default": {},
                },
                "max_document_length": {"type": "integer", "minimum": 1, "default": 100000},
                "include_metadata": {"type": "boolean", "default": True},
            },
        },
    },
    {
        "id": "workflow-automation",
        "name": "Workflow Automation",
        "description": "Step graphs of actions, conditions, loops, parallel branches and delays with error handling",
        "category": "automation",
        "version": "1.0.0",
        "capabilities": list(STEP_TYPES),
        "required_secrets": [],
        "config_schema": {
            "type": "object",
            "properties": {
                "workflows": {
                    "type": "object",
                    "additionalProperties": {
                        "type": "object",
                        "required": ["steps"],
                        "properties": {
                            "name": {"type": "string"},
                            "description": {"type": "string"},
                            "steps": {
                                "type": "array",
                                "minItems": 1,
                                "items": {
                                    "type": "object",
                                    "required": ["id", "type"],
                                    "properties": {
                                        "id": {"type": "string", "minLength": 1},
                                        "type": {"type": "string", "enum": list(STEP_TYPES)},
                                        "config": {"type": "object"},
                                        "next_steps": {"type": "array", "items": {"type": "string"}},
                                        "error_handling": {"$ref": "#/definitions/error_handling"},
                                    },
                                },
                            },
                            "error_handling": {"$ref": "#/definitions/error_handling"},
                        },
                    },
                    "default": {},
                },
                "actions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["id", "type"],
                        "properties": {
                            "id": {"type": "string"},
                            "type": {"type": "string", "enum": list(ACTION_TYPES)},
                            "config": {"type": "object"},
                        },
                    },
                    "default": [],
                },
                "conditions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["id", "type"],
                        "properties": {"id": {"type": "string"}, "type": {"type": "string", "enum": list(CONDITION_TYPES)}},
                    },
                    "default": [],
                },
                "max_execution_time": {"type": "number", "minimum": 1, "default": 300000},
                "max_steps": {"type": "integer", "minimum": 1, "default": 1000},
                "history_limit": {"type": "integer", "minimum": 1, "default": 100},
                "retry_policy": {
                    "type": "object",
                    "properties": {
                        "max_retries": {"type": "integer", "minimum": 0, "maximum": 10, "default": 3},
                        "backoff_multiplier": {"type": "number", "minimum": 1, "default": 2},
                        "initial_delay": {"type": "number", "minimum": 0, "default": 1000},
                    },
                    "default": {},
                },
            },
            "definitions": {
                "error_handling": {
                    "type": "object",
                    "required": ["strategy"],
                    "properties": {
                        "strategy": {"type": "string", "enum": list(STRATEGIES)},
                        "max_retries": {"type": "integer", "minimum": 0},
                        "fallback_step": {"type": "string"},
                    },
                },
            },
        },
    },
]

BUILTIN_FACTORIES: Dict[str, Factory] = {
    "api-connector": ApiConnectorModule,
    "document-generation": DocumentGenerationModule,
    "data-transform": DataTransformModule,
    "recommendation": RecommendationModule,
    "code-generator": CodeGeneratorModule,
    "google-trends": GoogleTrendsModule,
    "prompt": PromptModule,
    "workflow-automation": WorkflowAutomationModule,
}


class ModuleRegistry:
    def __init__(self, include_builtins: bool = True) -> None:
        self._modules: Dict[str, dict] = {}
        self._factories: Dict[str, Factory] = {}
        self._instances: Dict[str, dict] = {}
        self._objects: Dict[str, Any] = {}
        self._defaults: Dict[str, Any] = {}
        self._audit: Dict[str, List[dict]] = {}
        self._lock = threading.RLock()
        if include_builtins:
            for info in BUILTIN_MODULES:
                self.register(info, BUILTIN_FACTORIES[info["id"]])

    def get(self, module_id: str) -> dict | None:
        record = self._modules.get(module_id)
        return copy.deepcopy(record) if record else None

    def list(self, category: str | None = None) -> list[dict]:
        return [
            copy.deepcopy(self._modules[mid])
            for mid in sorted(self._modules)
            if category is None or self._modules[mid].get("category") == category
        ]

    def history(self, module_id: str) -> list[dict]:
        return copy.deepcopy(self._audit.get(module_id, []))

    def _record_audit(self, module_id: str, action: str, actor: dict | None, **extra: Any) -> str:
        audit_id = str(uuid.uuid4())
        entry = {"audit_id": audit_id, "module_id": module_id, "action": action, "actor": actor, "at": _now()}
        entry.update(extra)
        self._audit.setdefault(module_id, []).insert(0, entry)
        return audit_id

    def register(self, info: dict, factory: Factory) -> dict:
        errors: List[Issue] = []
        module_id = info.get("id") if isinstance(info, dict) else None
        if not isinstance(module_id, str) or not module_id:
            errors.append(issue("MODULE_INFO_INVALID", "module id is required", "id"))
        elif module_id in self._modules:
            errors.append(issue("MODULE_ALREADY_REGISTERED", "module already registered", "id"))
        elif info.get("category") not in CATEGORIES:
            errors.append(issue("MODULE_INFO_INVALID", f"unknown category: {info.get('category')}", "category"))
        if errors:
            return {"ok": False, "errors": errors, "warnings": [], "module": None}

        record = {
            "id": module_id,
            "name": info.get("name") or module_id,
            "description": info.get("description") or "",
            "category": info["category"],
            "version": info.get("version") or "1.0.0",
            "capabilities": list(info.get("capabilities") or []),
            "required_secrets": list(info.get("required_secrets") or []),
            "config_schema": copy.deepcopy(info.get("config_schema") or {"type": "object"}),
            "enabled": bool(info.get("enabled", True)),
            "registered_at": _now(),
            "updated_at": _now(),
        }
        with self._lock:
            self._modules[module_id] = record
            self._factories[module_id] = factory
        return {"ok": True, "errors": [], "warnings": [], "module": copy.deepcopy(record)}

    def set_enabled(self, module_id: str, enabled: bool, actor: dict | None = None, reason: str = "") -> dict:
        errors: List[Issue] = []
        warnings: List[Issue] = []
        record = self._modules.get(module_id)
        if record is None:
            errors.append(issue("MODULE_NOT_FOUND", "module not found", "module_id"))
            return {"ok": False, "errors": errors, "warnings": warnings, "module": None, "audit_id": None}
        if record.get("enabled") == enabled:
            warnings.append(issue("MODULE_ENABLED_NOOP", "no change", "enabled"))
        with self._lock:
            record["enabled"] = enabled
            record["updated_at"] = _now()
        audit_id = self._record_audit(module_id, "enable" if enabled else "disable", actor, reason=reason)
        return {"ok": True, "errors": errors, "warnings": warnings, "module": copy.deepcopy(record), "audit_id": audit_id}

    def request_schema(self, module_id: str) -> dict | None:
        if module_id not in self._modules:
            return None
        return self._default_object(module_id).get_schema()

    def _build(self, module_id: str, config: dict) -> Any:
        return self._factories[module_id](config)

    def _default_object(self, module_id: str) -> Any:
        with self._lock:
            obj = self._defaults.get(module_id)
            if obj is None:
                schema = self._modules[module_id]["config_schema"]
                obj = self._build(module_id, _fill_defaults(schema, {}))
                self._defaults[module_id] = obj
            return obj

    def _check_config(self, module_id: str, config: Any) -> List[Issue]:
        if not isinstance(config, dict):
            return [issue("MODULE_CONFIG_INVALID", "config must be object", "config")]
        validator = jsonschema.Draft7Validator(self._modules[module_id]["config_schema"])
        out = []
        for err in sorted(validator.iter_errors(config), key=lambda e: [str(p) for p in e.path]):
            where = ".".join(str(part) for part in err.path)
            out.append(issue("MODULE_CONFIG_INVALID", err.message, f"config.{where}" if where else "config"))
        return out

    def create_instance(self, module_id: str, config: dict | None = None, agent_id: str | None = None) -> dict:
        record = self._modules.get(module_id)
        if record is None:
            return {"ok": False, "errors": [issue("MODULE_NOT_FOUND", "module not found", "module_id")], "warnings": [], "instance": None}
        if not record.get("enabled"):
            return {"ok": False, "errors": [issue("MODULE_DISABLED", "module is disabled", "module_id")], "warnings": [], "instance": None}
        config = {} if config is None else config
        errors = self._check_config(module_id, config)
        if errors:
            return {"ok": False, "errors": errors, "warnings": [], "instance": None}
        filled = _fill_defaults(record["config_schema"], config)
        try:
            obj = self._build(module_id, filled)
        except (ModuleError, FilterConditionError) as exc:
            return {
                "ok": False,
                "errors": [issue("MODULE_CONFIG_INVALID", exc.message, exc.path, {"code": exc.code})],
                "warnings": [],
                "instance": None,
            }
        instance = {
            "instance_id": str(uuid.uuid4()),
            "module_id": module_id,
            "config": filled,
            "agent_id": agent_id,
            "created_at": _now(),
        }
        with self._lock:
            self._instances[instance["instance_id"]] = instance
            self._objects[instance["instance_id"]] = obj
        logger.info("module_instance_created module_id=%s instance_id=%s agent_id=%s", module_id, instance["instance_id"], agent_id)
        return {"ok": True, "errors": [], "warnings": [], "instance": copy.deepcopy(instance)}

    def get_instance(self, instance_id: str) -> dict | None:
        instance = self._instances.get(instance_id)
        return copy.deepcopy(instance) if instance else None

    def list_instances(self, module_id: str | None = None, agent_id: str | None = None) -> list[dict]:
        return [
            copy.deepcopy(inst)
            for inst in self._instances.values()
            if (module_id is None or inst["module_id"] == module_id) and (agent_id is None or inst["agent_id"] == agent_id)
        ]

    def delete_instance(self, instance_id: str) -> bool:
        with self._lock:
            self._objects.pop(instance_id, None)
            return self._instances.pop(instance_id, None) is not None

    def invoke(self, module_id: str, payload: dict | None, instance_id: str | None = None, actor: dict | None = None) -> dict:
        record = self._modules.get(module_id)
        if record is None:
            return {"ok": False, "errors": [issue("MODULE_NOT_FOUND", "module not found", "module_id")], "warnings": [], "result": None}
        if not record.get("enabled"):
            return {"ok": False, "errors": [issue("MODULE_DISABLED", "module is disabled", "module_id")], "warnings": [], "result": None}
        if instance_id:
            instance = self._instances.get(instance_id)
            if instance is None or instance["module_id"] != module_id:
                return {
                    "ok": False,
                    "errors": [issue("MODULE_INSTANCE_NOT_FOUND", "instance not found", "instance_id")],
                    "warnings": [],
                    "result": None,
                }
            obj = self._objects[instance_id]
        else:
            obj = self._default_object(module_id)

        started = time.perf_counter()
        errors: List[Issue] = []
        warnings: List[Issue] = []
        result = None
        try:
            result = obj.invoke(payload or {})
        except (ModuleError, FilterConditionError) as exc:
            errors.append(issue(exc.code, exc.message, exc.path))
        except Exception as exc:
            logger.exception("module_invoke_crashed module_id=%s instance_id=%s", module_id, instance_id)
            errors.append(issue("MODULE_INTERNAL_ERROR", str(exc) or type(exc).__name__, None, {"exception": type(exc).__name__}))
        if isinstance(result, dict) and result.get("ok") is False:
            errors.extend(result.get("errors") or [])
        if isinstance(result, dict):
            warnings.extend(result.get("warnings") or [])
        elapsed = round((time.perf_counter() - started) * 1000, 3)
        ok = not errors
        audit_id = self._record_audit(
            module_id,
            "invoke",
            actor,
            instance_id=instance_id,
            ok=ok,
            duration_ms=elapsed,
            error_codes=[err["code"] for err in errors],
        )
        logger.info("module_invoke module_id=%s instance_id=%s ok=%s ms=%s", module_id, instance_id, ok, elapsed)
        return {"ok": ok, "errors": errors, "warnings": warnings, "result": result, "audit_id": audit_id}
