"""Configured HTTP endpoints callable as a module: auth headers, body templates,
response mapping, a per-minute rate limit, per-endpoint caching and retries."""

from __future__ import annotations

import base64
import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List

import httpx
from jinja2 import TemplateError

from agentkit.canonical_json import CanonicalJsonTypeError, fingerprint
from agentkit.field_path import FieldPathError, get_field, split_path
from agentkit.templates import render_template, undeclared_variables
from module_errors import ModuleError, issue
from result_cache import ResultCache

logger = logging.getLogger("agentkit.api")

METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
AUTH_TYPES = ("none", "bearer", "basic", "apikey")

DEFAULT_CONFIG = {
    "endpoints": {},
    "authentication": {"type": "none", "credentials": {}},
    "rate_limiting": {"requests_per_minute": 60},
    "retry_policy": {"max_retries": 3, "backoff_multiplier": 2, "initial_delay": 1000},
    "timeout": 30000,
    "validate_responses": False,
}


class ApiConnectorError(ModuleError):
    pass


class _RequestFailed(Exception):
    pass


def _check_config(config: dict) -> None:
    endpoints = config.get("endpoints")
    if not isinstance(endpoints, dict):
        raise ApiConnectorError("API_CONFIG_INVALID", "endpoints must be object", "endpoints")
    for name, endpoint in endpoints.items():
        base = f"endpoints.{name}"
        if not isinstance(endpoint, dict) or not endpoint.get("url"):
            raise ApiConnectorError("API_CONFIG_INVALID", "endpoint url is required", f"{base}.url")
        if (endpoint.get("method") or "GET") not in METHODS:
            raise ApiConnectorError("API_CONFIG_INVALID", f"unknown method: {endpoint.get('method')}", f"{base}.method")
        try:
            undeclared_variables(endpoint.get("body_template"))
        except TemplateError as exc:
            raise ApiConnectorError("API_CONFIG_INVALID", f"invalid body_template: {exc}", f"{base}.body_template") from exc
        for target, source in (endpoint.get("response_mapping") or {}).items():
            try:
                split_path(source)
            except FieldPathError as exc:
                raise ApiConnectorError("API_CONFIG_INVALID", exc.message, f"{base}.response_mapping.{target}") from exc
    auth_type = (config.get("authentication") or {}).get("type") or "none"
    if auth_type not in AUTH_TYPES:
        raise ApiConnectorError("API_CONFIG_INVALID", f"unknown authentication type: {auth_type}", "authentication.type")


def auth_headers(auth: dict | None) -> Dict[str, str]:
    auth = auth or {}
    creds = auth.get("credentials") or {}
    kind = auth.get("type") or "none"
    if kind == "bearer" and creds.get("token"):
        return {"Authorization": f"Bearer {creds['token']}"}
    if kind == "basic" and creds.get("username") and creds.get("password"):
        raw = f"{creds['username']}:{creds['password']}".encode("utf-8")
        return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}
    if kind == "apikey" and creds.get("api_key") and creds.get("key_header"):
        return {creds["key_header"]: creds["api_key"]}
    return {}


def map_response(data: Any, mapping: Dict[str, str]) -> dict:
    return {target: get_field(data, source) for target, source in mapping.items()}


class ApiConnectorModule:
    module_id = "api-connector"

    def __init__(
        self,
        config: dict | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in (config or {}).items():
            if isinstance(merged.get(key), dict) and isinstance(value, dict) and key != "endpoints":
                merged[key].update(copy.deepcopy(value))
            else:
                merged[key] = copy.deepcopy(value)
        _check_config(merged)
        self.config = merged
        self._transport = transport
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._caches: Dict[str, ResultCache] = {}
        self._lock = threading.Lock()
        self._window = -1
        self._window_count = 0

    def get_schema(self) -> dict:
        return {
            "type": "object",
            "required": ["endpoint"],
            "properties": {
                "endpoint": {"type": "string", "enum": sorted(self.config["endpoints"])},
                "parameters": {"type": "object"},
                "custom_headers": {"type": "object", "additionalProperties": {"type": "string"}},
                "override_auth": {"type": "object"},
                "timeout": {"type": "number", "minimum": 1000, "maximum": 60000},
            },
        }

    def _take_slot(self) -> bool:
        limit = int(self.config["rate_limiting"].get("requests_per_minute") or 0)
        window = int(self._clock() // 60)
        with self._lock:
            if window != self._window:
                self._window = window
                self._window_count = 0
            if limit and self._window_count >= limit:
                return False
            self._window_count += 1
            return True

    def _cache_for(self, endpoint_name: str, ttl: Any) -> ResultCache | None:
        if not isinstance(ttl, (int, float)) or isinstance(ttl, bool) or ttl <= 0:
            return None
        with self._lock:
            cache = self._caches.get(endpoint_name)
            if cache is None:
                cache = ResultCache(ttl_seconds=ttl, clock=self._clock)
                self._caches[endpoint_name] = cache
            return cache

    def _execute(self, endpoint: dict, request: dict) -> Any:
        params = request.get("parameters") or {}
        query = {**(endpoint.get("query_params") or {}), **params}
        query = {key: str(value) for key, value in query.items() if value is not None}
        headers = {"Content-Type": "application/json", **(endpoint.get("headers") or {}), **(request.get("custom_headers") or {})}
        headers.update(auth_headers(request.get("override_auth") or self.config["authentication"]))
        method = endpoint.get("method") or "GET"
        body = None
        if method != "GET" and endpoint.get("body_template"):
            body = render_template(endpoint["body_template"], params, strict=False)
        timeout_ms = request.get("timeout") or self.config.get("timeout") or 30000
        try:
            with httpx.Client(timeout=float(timeout_ms) / 1000, transport=self._transport) as client:
                resp = client.request(method, endpoint["url"], params=query, headers=headers, content=body)
            if resp.status_code >= 400:
                raise _RequestFailed(f"HTTP {resp.status_code}: {resp.reason_phrase}")
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise _RequestFailed(str(exc) or type(exc).__name__) from exc
        mapping = endpoint.get("response_mapping")
        if mapping:
            return map_response(data, mapping)
        if self.config.get("validate_responses") and not isinstance(data, (dict, list)):
            raise _RequestFailed("Invalid response format")
        return data

    def _result(self, name: Any, started: float, data: Any = None, errors: List[dict] | None = None, **meta: Any) -> dict:
        metadata = {"endpoint": name, "response_time_ms": 0.0, "cached": False, "rate_limited": False, "retries": 0}
        metadata.update(meta)
        metadata["response_time_ms"] = round((time.perf_counter() - started) * 1000, 3)
        return {
            "ok": not errors,
            "success": not errors,
            "data": data,
            "errors": errors or [],
            "warnings": [],
            "metadata": metadata,
        }

    def invoke(self, request: dict) -> dict:
        started = time.perf_counter()
        request = request or {}
        name = request.get("endpoint")
        if not self._take_slot():
            logger.warning("api_rate_limited endpoint=%s", name)
            return self._result(name, started, errors=[issue("API_RATE_LIMITED", "Rate limit exceeded", "endpoint")], rate_limited=True)
        endpoint = self.config["endpoints"].get(name) if isinstance(name, str) else None
        if endpoint is None:
            return self._result(name, started, errors=[issue("API_ENDPOINT_NOT_FOUND", f"Endpoint '{name}' not configured", "endpoint")])

        cache = self._cache_for(name, endpoint.get("cache_ttl"))
        cache_key = None
        if cache is not None:
            try:
                cache_key = fingerprint(name, request.get("parameters") or {})
            except (CanonicalJsonTypeError, ValueError):
                cache_key = None
            if cache_key is not None:
                hit = cache.get(cache_key)
                if hit is not None:
                    return self._result(name, started, data=hit, cached=True)

        policy = self.config["retry_policy"]
        max_retries = int(policy.get("max_retries") or 0)
        retries = 0
        while True:
            try:
                data = self._execute(endpoint, request)
                break
            except TemplateError as exc:
                return self._result(name, started, errors=[issue("API_BODY_TEMPLATE_INVALID", str(exc), f"endpoints.{name}.body_template")])
            except _RequestFailed as exc:
                retries += 1
                logger.warning("api_request_failed endpoint=%s attempt=%s error=%s", name, retries, exc)
                if retries > max_retries:
                    return self._result(
                        name,
                        started,
                        errors=[issue("API_REQUEST_FAILED", str(exc), "endpoint", {"retries": max_retries})],
                        retries=max_retries,
                    )
                delay_ms = float(policy.get("initial_delay") or 0) * float(policy.get("backoff_multiplier") or 1) ** (retries - 1)
                self._sleep(delay_ms / 1000)

        if cache is not None and cache_key is not None:
            cache.set(cache_key, data)
        logger.info("api_request_done endpoint=%s retries=%s", name, retries)
        return self._result(name, started, data=data, retries=retries)

