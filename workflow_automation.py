"""Workflow runtime: a graph of action, condition, loop, parallel and delay
steps run to completion per invoke, with per-step records and error handling."""

from __future__ import annotations

import copy
import logging
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import httpx
from jinja2 import TemplateError

from agentkit.field_path import FieldPathError, get_field, has_field, set_field
from agentkit.templates import render_template
from filter_eval import FilterConditionError, compare, eval_filter, validate_condition
from module_errors import ModuleError, issue
from transform_ops import FIELD_TRANSFORMS, apply_field_transform, apply_rule, check_rule

logger = logging.getLogger("agentkit.workflows")

STEP_TYPES = ("action", "condition", "loop", "parallel", "delay")
ACTION_TYPES = ("api_call", "email", "slack", "transform")
CONDITION_TYPES = ("comparison", "exists", "regex", "filter")
STRATEGIES = ("stop", "continue", "retry", "fallback")

_SKIPPED = object()

DEFAULT_CONFIG = {
    "workflows": {},
    "actions": [],
    "conditions": [],
    "max_execution_time": 300000,
    "max_steps": 1000,
    "history_limit": 100,
    "retry_policy": {"max_retries": 3, "backoff_multiplier": 2, "initial_delay": 1000},
}


class WorkflowError(ModuleError):
    pass


class _StepFailed(Exception):
    pass


class _Aborted(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _config_error(message: str, path: str) -> WorkflowError:
    return WorkflowError("WORKFLOW_CONFIG_INVALID", message, path)


def _referenced(step: dict) -> List[str]:
    cfg = step.get("config") or {}
    refs = list(step.get("next_steps") or [])
    refs.extend(cfg.get("loop_steps") or [])
    refs.extend(cfg.get("parallel_steps") or [])
    fallback = (step.get("error_handling") or {}).get("fallback_step")
    if fallback:
        refs.append(fallback)
    return refs


def entry_steps(workflow: dict) -> List[dict]:
    """Steps no other step points at, in declaration order."""
    steps = workflow.get("steps") or []
    pointed = {ref for step in steps for ref in _referenced(step)}
    return [step for step in steps if step["id"] not in pointed]


def _check_acyclic(workflow_id: str, steps: Dict[str, dict]) -> None:
    state: Dict[str, int] = {}

    def visit(step_id: str) -> None:
        if state.get(step_id) == 2:
            return
        if state.get(step_id) == 1:
            raise _config_error(f"step graph has a cycle through {step_id}", f"workflows.{workflow_id}.steps")
        state[step_id] = 1
        for ref in _referenced(steps[step_id]):
            visit(ref)
        state[step_id] = 2

    for step_id in steps:
        visit(step_id)


def _check_workflow(workflow_id: str, workflow: Any, actions: dict, conditions: dict) -> None:
    base = f"workflows.{workflow_id}"
    if not isinstance(workflow, dict) or not isinstance(workflow.get("steps"), list) or not workflow["steps"]:
        raise _config_error("workflow needs a non-empty steps list", f"{base}.steps")
    steps: Dict[str, dict] = {}
    for idx, step in enumerate(workflow["steps"]):
        path = f"{base}.steps[{idx}]"
        if not isinstance(step, dict) or not isinstance(step.get("id"), str) or not step["id"]:
            raise _config_error("step id is required", f"{path}.id")
        if step["id"] in steps:
            raise _config_error(f"duplicate step id: {step['id']}", f"{path}.id")
        if step.get("type") not in STEP_TYPES:
            raise _config_error(f"unknown step type: {step.get('type')}", f"{path}.type")
        steps[step["id"]] = step
    for idx, step in enumerate(workflow["steps"]):
        path = f"{base}.steps[{idx}]"
        cfg = step.get("config") or {}
        handling = step.get("error_handling")
        if handling is not None and (not isinstance(handling, dict) or handling.get("strategy") not in STRATEGIES):
            raise _config_error("error_handling needs a known strategy", f"{path}.error_handling.strategy")
        for ref in _referenced(step):
            if ref not in steps:
                raise _config_error(f"unknown step reference: {ref}", path)
        if step["type"] == "action" and cfg.get("action_id") not in actions:
            raise _config_error(f"unknown action: {cfg.get('action_id')}", f"{path}.config.action_id")
        if step["type"] == "condition" and cfg.get("condition_id") not in conditions:
            raise _config_error(f"unknown condition: {cfg.get('condition_id')}", f"{path}.config.condition_id")
        if step["type"] == "loop" and not cfg.get("loop_steps"):
            raise _config_error("loop needs loop_steps", f"{path}.config.loop_steps")
        if step["type"] == "parallel" and not cfg.get("parallel_steps"):
            raise _config_error("parallel needs parallel_steps", f"{path}.config.parallel_steps")
        _check_step_params(step, actions, conditions, path)
    handling = workflow.get("error_handling") or {}
    if handling.get("strategy", "stop") not in STRATEGIES:
        raise _config_error(f"unknown error strategy: {handling.get('strategy')}", f"{base}.error_handling.strategy")
    if handling.get("fallback_step") and handling["fallback_step"] not in steps:
        raise _config_error(f"unknown step reference: {handling['fallback_step']}", f"{base}.error_handling.fallback_step")
    _check_acyclic(workflow_id, steps)
    if not entry_steps(workflow):
        raise _config_error("no entry step", f"{base}.steps")


def _check_step_params(step: dict, actions: dict, conditions: dict, path: str) -> None:
    cfg = step.get("config") or {}
    try:
        if step["type"] == "action" and actions[cfg["action_id"]]["type"] == "transform":
            if cfg.get("transform") is not None and cfg["transform"] not in FIELD_TRANSFORMS:
                raise _config_error(f"unknown field transform: {cfg['transform']}", f"{path}.config.transform")
            for idx, rule in enumerate(cfg.get("rules") or []):
                check_rule(rule, f"{path}.config.rules[{idx}]")
        if step["type"] == "condition":
            kind = conditions[cfg["condition_id"]]["type"]
            if kind == "filter":
                validate_condition(cfg.get("condition"))
            elif kind == "regex":
                re.compile(cfg.get("pattern") or "")
    except ModuleError as exc:
        raise _config_error(exc.message, exc.path or path) from exc
    except FilterConditionError as exc:
        raise _config_error(exc.message, f"{path}.config.condition") from exc
    except re.error as exc:
        raise _config_error(f"invalid pattern: {exc}", f"{path}.config.pattern") from exc


def _lookup(data: Any, path: str | None) -> Any:
    if not path:
        return data
    try:
        return get_field(data, path)
    except FieldPathError as exc:
        raise _StepFailed(f"{exc.message}: {path}") from exc


def resolve_value(value: Any, scope: dict) -> Any:
    """``{"var": "data.x"}`` reads from the scope, ``{{ }}`` strings render against it."""
    if isinstance(value, dict) and set(value) == {"var"} and isinstance(value["var"], str):
        return _lookup(scope, value["var"])
    if isinstance(value, list):
        return [resolve_value(item, scope) for item in value]
    if isinstance(value, dict):
        return {key: resolve_value(val, scope) for key, val in value.items()}
    if isinstance(value, str) and "{{" in value:
        try:
            return render_template(value, scope, strict=True)
        except TemplateError as exc:
            raise _StepFailed(f"template error: {exc}") from exc
    return value


class WorkflowAutomationModule:
    module_id = "workflow-automation"

    def __init__(
        self,
        config: dict | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in (config or {}).items():
            if key == "retry_policy" and isinstance(value, dict):
                merged["retry_policy"].update(value)
            else:
                merged[key] = copy.deepcopy(value)
        self.actions = self._index(merged.get("actions"), "actions", ACTION_TYPES)
        self.conditions = self._index(merged.get("conditions"), "conditions", CONDITION_TYPES)
        workflows = merged.get("workflows")
        if not isinstance(workflows, dict):
            raise _config_error("workflows must be object", "workflows")
        for workflow_id, workflow in workflows.items():
            _check_workflow(workflow_id, workflow, self.actions, self.conditions)
        self.config = merged
        self.outbox: List[dict] = []
        self._transport = transport
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._executions: Dict[str, dict] = {}
        self._cancelled: set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def _index(items: Any, key: str, allowed: tuple) -> Dict[str, dict]:
        if not isinstance(items, list):
            raise _config_error(f"{key} must be list", key)
        out: Dict[str, dict] = {}
        for idx, item in enumerate(items):
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                raise _config_error("id is required", f"{key}[{idx}].id")
            if item.get("type") not in allowed:
                raise _config_error(f"unknown type: {item.get('type')}", f"{key}[{idx}].type")
            out[item["id"]] = item
        return out

    def get_schema(self) -> dict:
        return {
            "type": "object",
            "required": ["workflow_id"],
            "properties": {
                "workflow_id": {"type": "string", "enum": sorted(self.config["workflows"])},
                "input": {"description": "Input data for the workflow"},
                "context": {"type": "object", "additionalProperties": True},
                "priority": {"type": "string", "enum": ["low", "normal", "high"], "default": "normal"},
            },
        }

    # executions

    def get_execution(self, execution_id: str) -> dict | None:
        with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution else None

    def list_executions(self, status: str | None = None) -> List[dict]:
        with self._lock:
            items = [copy.deepcopy(e) for e in self._executions.values() if status is None or e["status"] == status]
        items.reverse()
        return items

    def cancel_execution(self, execution_id: str) -> bool:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution["status"] != "running":
                return False
            self._cancelled.add(execution_id)
            return True

    def _remember(self, execution: dict) -> None:
        with self._lock:
            self._executions[execution["execution_id"]] = execution
            limit = int(self.config.get("history_limit") or 0)
            finished = [key for key, e in self._executions.items() if e["status"] != "running"]
            while limit and len(self._executions) > limit and finished:
                self._executions.pop(finished.pop(0), None)

    # runtime

    def _guard(self, run: dict) -> None:
        if run["execution_id"] in self._cancelled:
            raise _Aborted("WORKFLOW_CANCELLED", "execution cancelled")
        if self._clock() > run["deadline"]:
            raise _Aborted("WORKFLOW_TIMEOUT", "maximum execution time exceeded")
        with self._lock:
            run["count"] += 1
            if run["count"] > int(self.config.get("max_steps") or 0):
                raise _Aborted("WORKFLOW_STEP_LIMIT", "maximum number of executed steps exceeded")

    def _record(self, run: dict, step: dict, data: Any) -> dict:
        entry = {
            "step_id": step["id"],
            "type": step["type"],
            "status": "running",
            "started_at": _now(),
            "ended_at": None,
            "input": copy.deepcopy(data),
            "output": None,
            "error": None,
            "retries": 0,
        }
        with self._lock:
            run["execution"]["steps"].append(entry)
        return entry

    def _run_step(self, run: dict, step_id: str, data: Any, context: dict, retries: int = 0) -> Any:
        step = run["steps"][step_id]
        self._guard(run)
        entry = self._record(run, step, data)
        entry["retries"] = retries
        try:
            result = self._execute(run, step, data, context)
        except _Aborted:
            entry.update(status="failed", ended_at=_now(), error="aborted")
            raise
        except _StepFailed as exc:
            entry.update(status="failed", ended_at=_now(), error=str(exc))
            logger.warning("workflow_step_failed execution_id=%s step=%s error=%s", run["execution_id"], step_id, exc)
            return self._on_error(run, step, exc, data, context, retries)
        if result is _SKIPPED:
            entry.update(status="skipped", ended_at=_now(), output=copy.deepcopy(data))
            return data
        entry.update(status="completed", ended_at=_now(), output=copy.deepcopy(result))
        for next_id in step.get("next_steps") or []:
            result = self._run_step(run, next_id, result, context)
        return result

    def _on_error(self, run: dict, step: dict, exc: Exception, data: Any, context: dict, retries: int) -> Any:
        handling = step.get("error_handling") or run["workflow"].get("error_handling") or {}
        strategy = handling.get("strategy") or "stop"
        if strategy == "retry":
            policy = self.config["retry_policy"]
            limit = int(handling.get("max_retries") or policy.get("max_retries") or 0)
            if retries < limit:
                delay_ms = float(policy.get("initial_delay") or 0) * float(policy.get("backoff_multiplier") or 1) ** retries
                self._sleep(delay_ms / 1000)
                return self._run_step(run, step["id"], data, context, retries + 1)
        elif strategy == "continue":
            for next_id in step.get("next_steps") or []:
                data = self._run_step(run, next_id, data, context)
            return data
        elif strategy == "fallback":
            if handling.get("fallback_step"):
                return self._run_step(run, handling["fallback_step"], data, context)
            return data
        raise _Aborted("WORKFLOW_STEP_FAILED", f"step {step['id']} failed: {exc}")

    def _execute(self, run: dict, step: dict, data: Any, context: dict) -> Any:
        cfg = step.get("config") or {}
        kind = step["type"]
        if kind == "action":
            return self._action(self.actions[cfg["action_id"]], cfg, data, context)
        if kind == "condition":
            return data if self._condition(self.conditions[cfg["condition_id"]], cfg, data) else _SKIPPED
        if kind == "loop":
            return self._loop(run, cfg, data, context)
        if kind == "parallel":
            return self._parallel(run, cfg, data, context)
        duration = cfg.get("duration", 1000)
        if not isinstance(duration, (int, float)) or isinstance(duration, bool) or duration < 0:
            raise _StepFailed("delay duration must be a non-negative number of milliseconds")
        if self._clock() + duration / 1000 > run["deadline"]:
            raise _Aborted("WORKFLOW_TIMEOUT", "delay would exceed maximum execution time")
        self._sleep(duration / 1000)
        return data

    def _loop(self, run: dict, cfg: dict, data: Any, context: dict) -> Any:
        items = _lookup(data, cfg.get("iterate_over"))
        if items is None:
            items = []
        if not isinstance(items, list):
            raise _StepFailed("loop iteration target must be an array")
        limit = int(cfg.get("max_iterations") or 100)
        results = []
        for index, item in enumerate(items[:limit]):
            scope = {**context, "loop_item": item, "loop_index": index}
            value = item
            for step_id in cfg["loop_steps"]:
                value = self._run_step(run, step_id, value, scope)
            results.append(value)
        if isinstance(data, dict):
            return {**data, "loop_results": results}
        return {"input": data, "loop_results": results}

    def _parallel(self, run: dict, cfg: dict, data: Any, context: dict) -> Any:
        branches = list(cfg["parallel_steps"])
        with ThreadPoolExecutor(max_workers=len(branches)) as pool:
            futures = [pool.submit(self._run_step, run, step_id, copy.deepcopy(data), context) for step_id in branches]
            results = [future.result() for future in futures]
        if isinstance(data, dict):
            return {**data, "parallel_results": results}
        return {"input": data, "parallel_results": results}

    # actions and conditions

    def _action(self, action: dict, cfg: dict, data: Any, context: dict) -> Any:
        scope = {"data": data, "context": context}
        kind = action["type"]
        if kind == "transform":
            return self._transform(cfg, data)
        merged = {**(action.get("config") or {}), **{k: v for k, v in cfg.items() if k != "action_id"}}
        params = resolve_value(merged, scope)
        if kind == "api_call":
            return self._api_call(params)
        if kind == "email":
            if not params.get("to"):
                raise _StepFailed("email needs a recipient")
            message = {"channel": "email", "to": params["to"], "subject": params.get("subject"), "body": params.get("body")}
        else:
            if not params.get("channel"):
                raise _StepFailed("slack needs a channel")
            message = {"channel": "slack", "to": params["channel"], "subject": None, "body": params.get("message")}
        with self._lock:
            self.outbox.append(message)
        logger.info("workflow_message_queued channel=%s to=%s", message["channel"], message["to"])
        return {"queued": True, **message}

    def _transform(self, cfg: dict, data: Any) -> Any:
        out = copy.deepcopy(data)
        try:
            if cfg.get("transform") and cfg.get("field"):
                if not isinstance(out, dict):
                    raise _StepFailed("field transform needs object data")
                set_field(out, cfg["field"], apply_field_transform(get_field(out, cfg["field"]), cfg["transform"]))
            elif cfg.get("transform"):
                out = apply_field_transform(out, cfg["transform"])
            for rule in cfg.get("rules") or []:
                out = apply_rule(out, rule)
        except (ModuleError, FilterConditionError, FieldPathError) as exc:
            raise _StepFailed(exc.message) from exc
        return out

    def _api_call(self, params: dict) -> Any:
        url = params.get("url")
        if not url:
            raise _StepFailed("api_call needs a url")
        method = (params.get("method") or "GET").upper()
        headers = {"Content-Type": "application/json", **(params.get("headers") or {})}
        timeout = float(params.get("timeout") or 30000) / 1000
        try:
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                resp = client.request(method, url, headers=headers, params=params.get("query"), json=params.get("body"))
        except httpx.HTTPError as exc:
            raise _StepFailed(f"API call failed: {exc}") from exc
        if resp.status_code >= 400:
            raise _StepFailed(f"API call failed: HTTP {resp.status_code} {resp.reason_phrase}")
        try:
            return resp.json()
        except ValueError:
            return resp.text

    def _condition(self, condition: dict, cfg: dict, data: Any) -> bool:
        kind = condition["type"]
        try:
            if kind == "filter":
                return eval_filter(cfg.get("condition"), data)
            field = cfg.get("field")
            if kind == "exists":
                return has_field(data, field) and get_field(data, field) is not None
            value = get_field(data, field) if field else data
            if kind == "regex":
                return value is not None and re.search(cfg.get("pattern") or "", str(value)) is not None
            return compare(value, cfg.get("operator") or "eq", cfg.get("value"))
        except FieldPathError as exc:
            raise _StepFailed(f"{exc.message}: {exc.path}") from exc
        except FilterConditionError as exc:
            raise _StepFailed(exc.message) from exc

    def invoke(self, request: dict) -> dict:
        request = request or {}
        workflow_id = request.get("workflow_id")
        workflow = self.config["workflows"].get(workflow_id) if isinstance(workflow_id, str) else None
        if workflow is None:
            raise WorkflowError("WORKFLOW_NOT_FOUND", f"Workflow '{workflow_id}' not found", "workflow_id")
        context = request.get("context") or {}
        if not isinstance(context, dict):
            raise WorkflowError("MODULE_INPUT_INVALID", "context must be object", "context")

        execution_id = f"exec_{uuid.uuid4().hex[:12]}"
        execution = {
            "execution_id": execution_id,
            "workflow_id": workflow_id,
            "status": "running",
            "priority": request.get("priority") or "normal",
            "started_at": _now(),
            "ended_at": None,
            "steps": [],
            "output": None,
            "error": None,
        }
        self._remember(execution)
        run = {
            "execution_id": execution_id,
            "execution": execution,
            "workflow": workflow,
            "steps": {step["id"]: step for step in workflow["steps"]},
            "deadline": self._clock() + float(self.config.get("max_execution_time") or 0) / 1000,
            "count": 0,
        }
        started = time.perf_counter()
        errors = []
        data = copy.deepcopy(request.get("input"))
        scope = {**context, "workflow_id": workflow_id}
        try:
            for step in entry_steps(workflow):
                data = self._run_step(run, step["id"], data, scope)
            status = "completed"
            execution["output"] = data
        except _Aborted as exc:
            status = "cancelled" if exc.code == "WORKFLOW_CANCELLED" else "failed"
            execution["error"] = exc.message
            errors.append(issue(exc.code, exc.message, "workflow_id", {"execution_id": execution_id}))
        with self._lock:
            execution["status"] = status
            execution["ended_at"] = _now()
            self._cancelled.discard(execution_id)
            result = copy.deepcopy(execution)
        elapsed = round((time.perf_counter() - started) * 1000, 3)
        logger.info("workflow_done workflow=%s execution_id=%s status=%s ms=%s", workflow_id, execution_id, status, elapsed)
        result.update(
            {
                "ok": not errors,
                "errors": errors,
                "warnings": [],
                "metadata": {"duration_ms": elapsed, "steps_executed": run["count"]},
            }
        )
        return result

